"""Cogs module - Discord command handlers."""

from .chat_cog import ChatCog
from .admin_cog import AdminCog

__all__ = [
    "ChatCog",
    "AdminCog",
]
