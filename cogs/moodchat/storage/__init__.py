"""Storage module - Persistence layer."""

from .settings_storage import SETTINGS_FIELDS, IdentitySettings, SettingsStorage

__all__ = [
    'SETTINGS_FIELDS',
    'IdentitySettings',
    'SettingsStorage',
]
