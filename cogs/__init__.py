"""
Cogs Package - Discord Bot Feature Modules
=========================================

Every cog package in this directory is loaded by bot.py. Each one is
organized in layers:
- Commands layer (cogs/)
- Business logic layer (services/)
- Configuration and exceptions layer (core/)
- Data and persistence layers (models/, storage/)

Available Cogs:
- moodchat: mood-aware AI chat with daily quotas and token accounting
"""

__all__ = [
    'moodchat',
]

__version__ = '1.0.0'
