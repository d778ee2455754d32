"""
Configuration Management for Moodchat
=====================================

Handles loading and managing chat configuration from INI files and
environment variables.
"""

import os
import configparser
from pathlib import Path
from typing import Dict, List, Optional
from dataclasses import dataclass, field
import logging


logger = logging.getLogger(__name__)


@dataclass
class ProviderConfig:
    """Configuration for a single upstream LLM provider."""
    name: str
    display_name: str
    api_key: str
    url: str
    model: str
    api_key_env: str = ""
    fallback_models: List[str] = field(default_factory=list)

    def is_valid(self) -> bool:
        """Check if the provider configuration is usable."""
        return bool(self.api_key and self.model)


@dataclass
class RateLimitConfig:
    """Daily quota and upstream timeout configuration."""
    daily_limit: int = 10
    reap_interval: float = 3600.0
    request_timeout: float = 180.0


@dataclass
class GatewayConfig:
    """HTTP gateway configuration."""
    url: str = ""
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass
class FeatureConfig:
    """Feature flags configuration."""
    allow_dm: bool = True
    show_usage: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration."""
    log_level: str = "INFO"
    log_api_calls: bool = True


DEFAULT_PROVIDER_URLS = {
    "deepseek": "https://api.deepseek.com/v1/chat/completions",
    "huggingface": "https://router.huggingface.co/v1/chat/completions",
    "groq": "https://api.groq.com/openai/v1/chat/completions",
}


class ChatConfig:
    """
    Main configuration class for the chat module.

    Loads configuration from INI file and environment variables.
    Provides typed access to all configuration values.
    """

    DEFAULT_CONFIG_PATH = "config/chat_config.ini"

    def __init__(self, config_path: str = None):
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self._config = configparser.ConfigParser()

        self.locale: str = "en"
        self.default_temperature: float = 0.7
        self.default_provider: str = "deepseek"
        self.default_system_prompt: str = ""
        self.settings_dir: str = "data/moodchat"
        self.session_idle_timeout: float = 86400.0

        self.providers: Dict[str, ProviderConfig] = {}

        self.rate_limit = RateLimitConfig()
        self.gateway = GatewayConfig()
        self.features = FeatureConfig()
        self.logging = LoggingConfig()

        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file and environment."""
        self._config = configparser.ConfigParser()
        config_file = Path(self.config_path)

        if config_file.exists():
            self._config.read(config_file, encoding='utf-8')
            logger.info(f"Loaded configuration from {self.config_path}")
        else:
            logger.warning(f"Configuration file not found: {self.config_path}. Using defaults.")

        self._load_general_config()
        self._load_provider_configs()
        self._load_rate_limit_config()
        self._load_gateway_config()
        self._load_storage_config()
        self._load_feature_config()
        self._load_logging_config()

    def _load_general_config(self) -> None:
        """Load general configuration."""
        section = 'general'

        self.locale = self._get(section, 'locale', 'en')
        self.default_temperature = self._getfloat(section, 'default_temperature', 0.7)
        self.default_provider = (
            os.getenv('DEFAULT_PROVIDER') or self._get(section, 'default_provider', 'deepseek')
        )
        self.default_system_prompt = self._get(section, 'system_prompt', '')

    def _load_provider_configs(self) -> None:
        """Load upstream provider configurations (keys come from the environment)."""
        self.providers = {
            "deepseek": ProviderConfig(
                name="deepseek",
                display_name="DeepSeek",
                api_key=os.getenv('DEEPSEEK_API_KEY', ''),
                api_key_env='DEEPSEEK_API_KEY',
                url=self._get('deepseek', 'url', DEFAULT_PROVIDER_URLS["deepseek"]),
                model=os.getenv('DEEPSEEK_MODEL') or self._get('deepseek', 'model', 'deepseek-chat'),
            ),
            "huggingface": ProviderConfig(
                name="huggingface",
                display_name="Hugging Face",
                api_key=os.getenv('HUGGINGFACE_API_KEY', ''),
                api_key_env='HUGGINGFACE_API_KEY',
                url=self._get('huggingface', 'url', DEFAULT_PROVIDER_URLS["huggingface"]),
                model=(
                    os.getenv('HUGGINGFACE_MODEL')
                    or self._get('huggingface', 'model', 'Qwen/Qwen2.5-7B-Instruct')
                ),
            ),
            "groq": ProviderConfig(
                name="groq",
                display_name="Groq",
                api_key=os.getenv('GROQ_API_KEY', ''),
                api_key_env='GROQ_API_KEY',
                url=self._get('groq', 'url', DEFAULT_PROVIDER_URLS["groq"]),
                model=self._get('groq', 'model', 'llama-3.3-70b-versatile'),
                fallback_models=self._getlist('groq', 'fallback_models'),
            ),
        }

        configured = [name for name, provider in self.providers.items() if provider.is_valid()]
        if not configured:
            logger.warning("No provider API keys found in environment")
        logger.info(f"Loaded {len(configured)} configured providers: {configured}")

    def _load_rate_limit_config(self) -> None:
        """Load daily quota configuration."""
        section = 'rate_limiting'

        daily_limit = self._getint(section, 'daily_limit', 10)
        env_limit = os.getenv('DAILY_MESSAGE_LIMIT')
        if env_limit:
            try:
                daily_limit = int(env_limit)
            except ValueError:
                logger.error(f"Invalid DAILY_MESSAGE_LIMIT: {env_limit!r}")

        self.rate_limit = RateLimitConfig(
            daily_limit=daily_limit,
            reap_interval=self._getfloat(section, 'reap_interval', 3600.0),
            request_timeout=self._getfloat(section, 'request_timeout', 180.0)
        )

    def _load_gateway_config(self) -> None:
        """Load HTTP gateway configuration."""
        section = 'gateway'

        port = self._getint(section, 'port', 3000)
        env_port = os.getenv('PORT')
        if env_port and env_port.isdigit():
            port = int(env_port)

        self.gateway = GatewayConfig(
            url=os.getenv('MOODCHAT_GATEWAY_URL') or self._get(section, 'url', ''),
            host=self._get(section, 'host', '0.0.0.0'),
            port=port
        )

    def _load_storage_config(self) -> None:
        """Load storage configuration."""
        self.settings_dir = self._get('storage', 'settings_dir', 'data/moodchat')
        self.session_idle_timeout = self._getfloat('storage', 'session_idle_timeout', 86400.0)

    def _load_feature_config(self) -> None:
        """Load feature flags configuration."""
        section = 'features'

        self.features = FeatureConfig(
            allow_dm=self._getboolean(section, 'allow_dm', True),
            show_usage=self._getboolean(section, 'show_usage', True)
        )

    def _load_logging_config(self) -> None:
        """Load logging configuration."""
        section = 'logging'

        self.logging = LoggingConfig(
            log_level=self._get(section, 'log_level', 'INFO').upper(),
            log_api_calls=self._getboolean(section, 'log_api_calls', True)
        )

    # Helper methods for config parsing
    def _get(self, section: str, key: str, fallback: str = None) -> str:
        """Get a string value from config."""
        try:
            return self._config.get(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return fallback

    def _getint(self, section: str, key: str, fallback: int = 0) -> int:
        """Get an integer value from config."""
        try:
            return self._config.getint(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    def _getfloat(self, section: str, key: str, fallback: float = 0.0) -> float:
        """Get a float value from config."""
        try:
            return self._config.getfloat(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    def _getboolean(self, section: str, key: str, fallback: bool = False) -> bool:
        """Get a boolean value from config."""
        try:
            return self._config.getboolean(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    def _getlist(self, section: str, key: str, separator: str = ',') -> List[str]:
        """Get a comma-separated list from config."""
        value = self._get(section, key, '')
        return [item.strip() for item in value.split(separator) if item.strip()]

    def get_provider(self, name: Optional[str]) -> ProviderConfig:
        """Get a provider configuration by name, falling back to the default provider."""
        provider = self.providers.get((name or '').lower())
        if provider is None:
            provider = self.providers.get(self.default_provider, self.providers["deepseek"])
        return provider

    def get_enabled_providers(self) -> List[ProviderConfig]:
        """Get list of providers that have credentials."""
        return [p for p in self.providers.values() if p.is_valid()]

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()
        logger.info("Configuration reloaded")
