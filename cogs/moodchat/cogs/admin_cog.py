"""
Admin Commands Cog
===============================

Discord-specific implementation for admin-related commands.
"""

import discord
from discord.ext import commands

import logging

logger = logging.getLogger(__name__)


class AdminCog(commands.Cog):
    """Admin command handler for the chat system."""

    def __init__(self, bot: commands.Bot, governor, config, sessions):
        self.bot = bot
        self.governor = governor
        self.config = config
        self.sessions = sessions

    @commands.group(name="chatadmin", invoke_without_command=True)
    @commands.is_owner()
    async def chat_admin(self, ctx: commands.Context) -> None:
        await ctx.send_help(ctx.command)

    @chat_admin.command(name="reload")
    @commands.is_owner()
    async def reload_config(self, ctx: commands.Context) -> None:
        self.config.reload()
        self.governor.update_config(daily_limit=self.config.rate_limit.daily_limit)
        await ctx.send(
            f"✅ Chat configuration reloaded. Daily limit: {self.governor.daily_limit}."
        )

    @chat_admin.command(name="resetuser")
    @commands.is_owner()
    async def reset_user(self, ctx: commands.Context, user_id: int) -> None:
        self.governor.reset_user(str(user_id))
        await ctx.send(f"✅ Reset daily quota for user {user_id}.")

    @chat_admin.command(name="resetall")
    @commands.is_owner()
    async def reset_all(self, ctx: commands.Context) -> None:
        self.governor.reset_all()
        await ctx.send("✅ All daily quotas have been reset.")

    @chat_admin.command(name="reap")
    @commands.is_owner()
    async def force_reap(self, ctx: commands.Context) -> None:
        removed = self.governor.reap()
        await ctx.send(f"✅ Removed {removed} stale quota records.")

    @chat_admin.command(name="stats")
    @commands.is_owner()
    async def stats(self, ctx: commands.Context) -> None:
        stats = self.governor.get_stats()
        embed = discord.Embed(title="📊 Chat Statistics", color=discord.Color.blue())
        embed.add_field(name="Active Sessions", value=str(len(self.sessions.identities())), inline=True)
        embed.add_field(name="Tracked Users", value=str(stats["tracked_identities"]), inline=True)
        embed.add_field(name="Daily Limit", value=str(stats["daily_limit"]), inline=True)
        embed.add_field(name="Allowed", value=str(stats["total_allowed"]), inline=True)
        embed.add_field(name="Blocked", value=str(stats["total_blocked"]), inline=True)
        await ctx.send(embed=embed)
