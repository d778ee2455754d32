import discord
from discord.ext import commands
import os
from dotenv import load_dotenv
import logging
import asyncio
from typing import List, Optional

load_dotenv()

from config import configure_logging, get_config  # noqa: E402

config = get_config()

configure_logging(config.logging.bot_file, config.logging.level)
logger = logging.getLogger('discord')

# Reduce gateway verbosity
logging.getLogger('discord.gateway').setLevel(logging.WARNING)

intents = discord.Intents.default()
intents.message_content = True
intents.guilds = True
intents.guild_messages = True


class DiscordBot(commands.Bot):
    """Mood chat bot; every feature lives in a cog package under cogs/."""

    def __init__(self):
        super().__init__(
            command_prefix=config.discord.prefix,
            intents=intents,
            owner_id=config.discord.owner_id or None,
            heartbeat_timeout=60,
        )
        self.cogs_dir = 'cogs'
        self.loaded_cogs: List[str] = []

    async def setup_hook(self):
        """Called after the bot is initialized but before login"""
        logger.info("Setting up bot...")
        await self.load_all_cogs()

    async def load_all_cogs(self):
        """Load every cog package (directory with __init__.py) in the cogs directory"""
        self.loaded_cogs = []

        if not os.path.exists(self.cogs_dir):
            logger.warning(f"Cogs directory '{self.cogs_dir}' not found")
            return

        for item in sorted(os.listdir(self.cogs_dir)):
            item_path = os.path.join(self.cogs_dir, item)
            if item.startswith('_') or not os.path.isdir(item_path):
                continue
            if not os.path.exists(os.path.join(item_path, '__init__.py')):
                continue
            await self.load_cog(item)

        logger.info(f"Loaded {len(self.loaded_cogs)} cogs successfully")

    async def load_cog(self, cog_name: str) -> bool:
        """Load a specific cog by name"""
        try:
            await self.load_extension(f'cogs.{cog_name}')
        except Exception as e:
            logger.error(f"❌ Failed to load cog {cog_name}: {e}", exc_info=e)
            return False
        self.loaded_cogs.append(cog_name)
        logger.info(f"✅ Loaded cog: {cog_name}")
        return True

    async def reload_cog(self, cog_name: str) -> bool:
        """Reload a loaded cog, or load it if it is not loaded yet"""
        if cog_name not in self.loaded_cogs:
            return await self.load_cog(cog_name)
        try:
            await self.reload_extension(f'cogs.{cog_name}')
        except Exception as e:
            logger.error(f"❌ Failed to reload cog {cog_name}: {e}", exc_info=e)
            return False
        logger.info(f"✅ Reloaded cog: {cog_name}")
        return True

    async def sync_commands(self, guild_id: Optional[int] = None) -> int:
        """Sync slash commands to one guild, or globally"""
        if guild_id:
            guild = discord.Object(id=guild_id)
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
        else:
            synced = await self.tree.sync()
        return len(synced)


bot = DiscordBot()


@bot.event
async def on_ready():
    logger.info(f'{bot.user} is online!')
    logger.info(f'Connected to {len(bot.guilds)} guilds')
    logger.info(f'Loaded cogs: {", ".join(bot.loaded_cogs)}')

    try:
        # A test guild gets the commands instantly, global sync takes a while
        count = await bot.sync_commands(config.discord.test_guild_id or None)
        logger.info(f"✅ Synced {count} commands")
    except discord.HTTPException as e:
        logger.error(f"❌ Failed to sync commands: {e}")


@bot.event
async def on_disconnect():
    logger.warning("Bot disconnected from Discord Gateway")


@bot.command()
@commands.is_owner()
async def sync(ctx, guild_id: Optional[int] = None):
    """Sync slash commands (owner only)"""
    try:
        count = await bot.sync_commands(guild_id)
        await ctx.send(f"✅ Synced {count} commands" + (f" to guild {guild_id}" if guild_id else " globally"))
    except discord.HTTPException as e:
        await ctx.send(f"❌ Error: {e}")


@bot.command()
@commands.is_owner()
async def reload(ctx, cog_name: str = 'moodchat'):
    """Reload a cog package (owner only)"""
    if await bot.reload_cog(cog_name):
        await ctx.send(f"✅ Reloaded cog: {cog_name}")
    else:
        await ctx.send(f"❌ Failed to reload cog: {cog_name}")


async def main():
    """Main function with reconnection handling"""
    if not config.discord.token:
        logger.error("DISCORD_TOKEN is not set")
        return

    max_retries = 5
    retry_count = 0

    async with bot:
        while retry_count < max_retries:
            try:
                logger.info("Starting bot...")
                await bot.start(config.discord.token)
                break
            except discord.LoginFailure:
                logger.error("Invalid token - cannot reconnect")
                break
            except (discord.GatewayNotFound, discord.ConnectionClosed, OSError) as e:
                retry_count += 1
                logger.error(f"Error (attempt {retry_count}/{max_retries}): {e}")
                if retry_count < max_retries:
                    wait_time = min(5 * retry_count, 30)
                    logger.info(f"Reconnecting in {wait_time}s...")
                    await asyncio.sleep(wait_time)
                else:
                    logger.error("Max retries reached. Exiting.")


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by keyboard interrupt")
