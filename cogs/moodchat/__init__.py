"""
Mood Chat Module
===============================

Main module initialization with setup() function for Discord bot extension loading.
Coordinates all layers: cogs, core, models, services and storage. The HTTP
gateway shares the same core, models, services and storage.
"""

from discord.ext import commands

import logging

from .cogs import ChatCog, AdminCog

logger = logging.getLogger(__name__)


async def setup(bot: commands.Bot) -> None:
    """
    Initialize the mood chat module and register its cogs with the bot.

    Called by ``bot.load_extension("cogs.moodchat")`` in bot.py.

    Args:
        bot: The Discord bot instance
    """
    chat_cog = ChatCog(bot)
    await bot.add_cog(chat_cog)
    logger.info("✅ ChatCog loaded")

    admin_cog = AdminCog(bot, chat_cog.governor, chat_cog.config, chat_cog.sessions)
    await bot.add_cog(admin_cog)
    logger.info("✅ AdminCog loaded")

    logger.info("=" * 50)
    logger.info("🤖 Mood chat module fully initialized!")
    logger.info("=" * 50)
