"""
Configuration Module
====================
Bot-level settings from config/settings.ini and the environment, and the
logging setup shared by the bot and the gateway.

Chat settings (providers, quotas, gateway) live in config/chat_config.ini and
are read by ``cogs.moodchat.core.config.ChatConfig``.
"""

import configparser
import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger('moodchat.config')

CONFIG_DIR = Path(__file__).parent
CONFIG_FILE = CONFIG_DIR / 'settings.ini'

LOG_FORMAT = '[{asctime}] [{levelname:<8}] {name}: {message}'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


@dataclass
class DiscordSettings:
    """Discord connection settings."""
    token: str = ''
    prefix: str = '!'
    owner_id: int = 0
    test_guild_id: int = 0


@dataclass
class LogSettings:
    """Log level and files of the two entry points."""
    level: str = 'INFO'
    bot_file: str = 'bot.log'
    gateway_file: str = 'gateway.log'


class Config:
    """Bot settings. DISCORD_TOKEN takes precedence over the token in the file."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = Path(config_file) if config_file else CONFIG_FILE
        self._parser = configparser.ConfigParser()
        self._loaded = False

        self.discord = DiscordSettings()
        self.logging = LogSettings()

        self._load_config()

    def _load_config(self) -> None:
        self._parser = configparser.ConfigParser()
        self._loaded = False

        if not self.config_file.exists():
            logger.warning(f"Config file not found: {self.config_file}. Using defaults.")
        else:
            try:
                self._parser.read(self.config_file, encoding='utf-8')
                self._loaded = True
                logger.info(f"✅ Loaded configuration from {self.config_file}")
            except configparser.Error as e:
                logger.error(f"❌ Failed to parse {self.config_file}: {e}")

        self.discord = DiscordSettings(
            token=os.getenv('DISCORD_TOKEN') or self._get('discord', 'token', ''),
            prefix=self._get('discord', 'prefix', '!') or '!',
            owner_id=self._getint('discord', 'owner_id', 0),
            test_guild_id=self._getint('discord', 'test_guild_id', 0),
        )
        self.logging = LogSettings(
            level=self._get('logging', 'log_level', 'INFO').upper(),
            bot_file=self._get('logging', 'log_file', 'bot.log'),
            gateway_file=self._get('logging', 'gateway_log_file', 'gateway.log'),
        )

    def _get(self, section: str, key: str, fallback: str) -> str:
        try:
            return self._parser.get(section, key).strip()
        except (configparser.NoSectionError, configparser.NoOptionError):
            return fallback

    def _getint(self, section: str, key: str, fallback: int) -> int:
        try:
            return self._parser.getint(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    @property
    def is_loaded(self) -> bool:
        """Check if the settings file was read."""
        return self._loaded


def configure_logging(log_file: str, level: str = 'INFO') -> None:
    """
    Log to a file and to the console.

    Args:
        log_file: Path of the log file (appended to)
        level: Level name such as INFO or DEBUG
    """
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        style='{',
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8', mode='a'),
            logging.StreamHandler()
        ]
    )


# Global config instance
_config: Optional[Config] = None


def get_config(config_file: Optional[Path] = None) -> Config:
    """
    Get the global configuration instance.

    Args:
        config_file: Optional path to config file

    Returns:
        Config instance
    """
    global _config
    if _config is None:
        _config = Config(config_file)
    return _config


def reload_config(config_file: Optional[Path] = None) -> Config:
    """Re-read the settings file into a fresh global instance."""
    global _config
    _config = Config(config_file)
    return _config
