"""
Chat Cog - Main Chat Command Handler
====================================

Discord-specific implementation for the mood chat commands. Every command
maps to one session controller operation of the invoking user's session.
"""

import discord
from discord.ext import commands, tasks
from discord import app_commands
from typing import Optional, List
import logging

from ..core import ChatConfig, ChatException, RateGovernor
from ..models import Emotion, Failed, Idle, Pending, Ready, SessionState
from ..services import GatewayClient, ModelCatalog, ProviderRouter, SessionManager
from ..storage import SettingsStorage

logger = logging.getLogger(__name__)

EMOTION_COLORS = {
    Emotion.GREEN: discord.Color.green(),
    Emotion.BLUE: discord.Color.blue(),
    Emotion.RED: discord.Color.red(),
}

EMBED_DESCRIPTION_LIMIT = 4096


class ChatCog(commands.Cog):
    """Mood-aware AI chat for Discord."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

        self.config = ChatConfig()
        logging.getLogger(__name__).setLevel(
            getattr(logging, self.config.logging.log_level, logging.INFO)
        )

        self.storage = SettingsStorage(self.config.settings_dir)
        self.governor = RateGovernor(
            daily_limit=self.config.rate_limit.daily_limit,
            reap_interval=self.config.rate_limit.reap_interval
        )

        if self.config.gateway.url:
            # The gateway holds the provider keys and serves the catalog
            self.gateway_client = GatewayClient(
                self.config.gateway.url,
                chat_timeout=self.config.rate_limit.request_timeout
            )
            self.provider_router = None
            self.catalog = self.gateway_client
            send = self.gateway_client.send
            logger.info(f"Routing exchanges through gateway {self.config.gateway.url}")
        else:
            self.gateway_client = None
            self.provider_router = ProviderRouter(self.config)
            self.catalog = ModelCatalog(self.config)
            send = self.provider_router.send

        self.sessions = SessionManager(
            send,
            storage=self.storage,
            catalog=self.catalog,
            governor=self.governor,
            locale=self.config.locale,
            defaults=SessionManager.defaults_from_config(self.config)
        )

        self._reap_task.start()

    async def cog_unload(self) -> None:
        self._reap_task.cancel()
        self.sessions.drop_all()
        if self.gateway_client is not None:
            await self.gateway_client.aclose()
        else:
            await self.provider_router.aclose()
            await self.catalog.aclose()
        logger.info("ChatCog unloaded")

    # ==================== Background Tasks ====================

    @tasks.loop(hours=1)
    async def _reap_task(self) -> None:
        removed = self.governor.reap()
        if removed > 0:
            logger.info(f"Reaped {removed} stale quota records")
        self.sessions.evict_idle(self.config.session_idle_timeout)

    @_reap_task.before_loop
    async def _before_reap(self) -> None:
        await self.bot.wait_until_ready()

    # ==================== Helper: Send Response ====================

    def _usage_footer(self, state: Ready) -> Optional[str]:
        usage = state.conversation[-1].usage
        if not self.config.features.show_usage or usage is None:
            return None
        footer = (
            f"Tokens: {usage.total_tokens} "
            f"({usage.context_usage_percent}% of {usage.max_context_tokens})"
        )
        if usage.estimated:
            footer += " · estimated"
        return footer

    async def _send_state(self, ctx: commands.Context, state: SessionState) -> None:
        """Render the outcome of an exchange."""
        match state:
            case Ready(conversation=conversation, current_topic=topic):
                reply = conversation[-1]
                chunks = self._split_message(reply.display_text, EMBED_DESCRIPTION_LIMIT)
                embed = discord.Embed(
                    title=topic[:256] if topic else None,
                    description=chunks[0],
                    color=EMOTION_COLORS.get(reply.emotion, discord.Color.blurple())
                )
                footer = self._usage_footer(state)
                if footer:
                    embed.set_footer(text=footer)
                await ctx.send(embed=embed)
                for chunk in chunks[1:]:
                    await ctx.send(chunk)
            case Failed(error=error):
                message = error.message if error else "Something went wrong."
                await ctx.send(f"❌ {message}")
            case Idle() | Pending():
                await ctx.send("ℹ️ The conversation was cleared before the reply arrived.")

    # ==================== Commands ====================

    @commands.hybrid_command(name="ask", description="Ask the AI a question")
    @app_commands.describe(question="Your question for the AI")
    async def ask(self, ctx: commands.Context, *, question: str) -> None:
        if isinstance(ctx.channel, discord.DMChannel) and not self.config.features.allow_dm:
            await ctx.send("❌ Chat commands are not allowed in DMs.")
            return

        await ctx.defer()

        try:
            session = await self.sessions.get(ctx.author.id)
            state = await session.submit(question)
        except ChatException as e:
            await ctx.send(f"❌ {e.message}")
            return

        await self._send_state(ctx, state)

    @commands.hybrid_command(name="chat", description="Send a message to the AI")
    @app_commands.describe(message="Your message to the AI")
    async def chat(self, ctx: commands.Context, *, message: str) -> None:
        await self.ask(ctx, question=message)

    @commands.hybrid_command(name="clearchat", description="Clear your conversation history")
    async def clear_history(self, ctx: commands.Context) -> None:
        session = await self.sessions.get(ctx.author.id)
        session.clear()
        await ctx.send("✅ Your conversation has been cleared. Your settings are kept.")

    @commands.hybrid_command(name="settemperature", description="Set the response temperature (0-2)")
    @app_commands.describe(value="Temperature between 0 and 2")
    async def set_temperature(self, ctx: commands.Context, value: float) -> None:
        session = await self.sessions.get(ctx.author.id)
        session.set_temperature(value)
        await ctx.send(f"✅ Temperature set to **{session.config.temperature}**.")

    @commands.hybrid_command(name="setprompt", description="Set your system prompt (empty to reset)")
    @app_commands.describe(prompt="Instructions for the AI")
    async def set_prompt(self, ctx: commands.Context, *, prompt: str = "") -> None:
        session = await self.sessions.get(ctx.author.id)
        session.set_system_prompt(prompt)
        if prompt:
            await ctx.send("✅ System prompt updated.")
        else:
            await ctx.send("✅ System prompt cleared.")

    @commands.hybrid_command(name="setprovider", description="Set your AI provider")
    @app_commands.describe(provider="deepseek, huggingface or groq")
    async def set_provider(self, ctx: commands.Context, provider: str) -> None:
        provider = provider.lower()
        if provider not in self.config.providers:
            available = ", ".join(f"`{name}`" for name in self.config.providers)
            await ctx.send(f"❌ Unknown provider. Available: {available}")
            return
        session = await self.sessions.get(ctx.author.id)
        session.set_provider(provider)
        await ctx.send(f"✅ Your provider has been set to **{provider}**.")

    @commands.hybrid_command(name="setmodel", description="Set your model (empty for the provider default)")
    @app_commands.describe(model="Model id, see /models")
    async def set_model(self, ctx: commands.Context, model: str = "") -> None:
        session = await self.sessions.get(ctx.author.id)
        session.set_model(model)
        if model:
            await ctx.send(f"✅ Your model has been set to `{model}`.")
        else:
            await ctx.send("✅ Using the provider's default model.")

    @commands.hybrid_command(name="models", description="List the available models")
    async def list_models(self, ctx: commands.Context) -> None:
        await ctx.defer()
        session = await self.sessions.get(ctx.author.id)
        await session.load_models()

        catalog = session.config.available_models
        if not catalog:
            await ctx.send("❌ Could not load the model list. Please try again later.")
            return

        embed = discord.Embed(title="🤖 Available Models", color=discord.Color.blue())
        for provider_id, provider in catalog.get("providers", {}).items():
            models = provider.get("models", [])
            presets = provider.get("presets", {})
            lines = [f"`{model}`" for model in models[:10]]
            if len(models) > 10:
                lines.append(f"... and {len(models) - 10} more")
            if presets:
                lines.append(" · ".join(f"{tier}: `{model}`" for tier, model in presets.items()))
            embed.add_field(
                name=f"{provider.get('name', provider_id)} (`{provider_id}`)",
                value="\n".join(lines)[:1024] or "No models",
                inline=False
            )
        embed.set_footer(text=f"Default provider: {catalog.get('defaultProvider', '?')}")
        await ctx.send(embed=embed)

    @commands.hybrid_command(name="history", description="Show your recent messages")
    async def history(self, ctx: commands.Context) -> None:
        session = await self.sessions.get(ctx.author.id)
        conversation = session.state.conversation
        if not conversation:
            await ctx.send("ℹ️ Your conversation is empty.")
            return

        start = max(0, len(conversation) - 10)
        lines = []
        for index, message in enumerate(conversation[start:], start=start + 1):
            author = "You" if message.is_user else "AI"
            text = message.display_text.replace("\n", " ")
            lines.append(f"`{index}` **{author}:** {text[:80]}")
        await ctx.send("\n".join(lines))

    @commands.hybrid_command(name="deletemessage", description="Delete one message from your conversation")
    @app_commands.describe(index="Message number as shown by /history")
    async def delete_message(self, ctx: commands.Context, index: int) -> None:
        session = await self.sessions.get(ctx.author.id)
        before = len(session.state.conversation)
        session.delete_message_at(index - 1)
        if len(session.state.conversation) < before:
            await ctx.send(f"✅ Message {index} deleted.")
        else:
            await ctx.send(f"❌ There is no message {index}.")

    @commands.hybrid_command(name="topic", description="Show the current conversation topic")
    async def topic(self, ctx: commands.Context) -> None:
        session = await self.sessions.get(ctx.author.id)
        topic = session.current_topic()
        if topic:
            await ctx.send(f"💬 Current topic: **{topic}**")
        else:
            await ctx.send("ℹ️ No topic yet.")

    @commands.hybrid_command(name="quota", description="Show how many messages you have left today")
    async def quota(self, ctx: commands.Context) -> None:
        status = self.governor.check(str(ctx.author.id))
        await ctx.send(
            f"📊 You have **{status.remaining}/{status.limit}** messages left today."
        )

    @commands.hybrid_command(name="chatsettings", description="Show your chat settings")
    async def chat_settings(self, ctx: commands.Context) -> None:
        session = await self.sessions.get(ctx.author.id)
        config = session.config
        embed = discord.Embed(title="⚙️ Chat Settings", color=discord.Color.blurple())
        embed.add_field(name="Provider", value=f"`{config.provider}`", inline=True)
        embed.add_field(name="Model", value=f"`{config.model or 'default'}`", inline=True)
        embed.add_field(name="Temperature", value=f"`{config.temperature}`", inline=True)
        embed.add_field(
            name="System Prompt",
            value=(config.system_prompt[:1000] if config.system_prompt else "*none*"),
            inline=False
        )
        embed.add_field(name="Messages", value=str(len(session.state.conversation)), inline=True)
        await ctx.send(embed=embed)

    # ==================== Status Listeners ====================

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        enabled = [provider.name for provider in self.config.get_enabled_providers()]
        logger.info("=" * 50)
        logger.info("🤖 ChatCog is READY!")
        logger.info(f"✅ Providers with keys: {enabled}")
        logger.info(f"✅ Default provider: {self.config.default_provider}")
        logger.info(f"✅ Daily limit: {self.governor.daily_limit} messages")
        logger.info("=" * 50)

    @commands.Cog.listener()
    async def on_command_error(self, ctx: commands.Context, error: commands.CommandError) -> None:
        if isinstance(error, commands.CommandNotFound):
            return
        elif isinstance(error, commands.MissingRequiredArgument):
            await ctx.send(f"❌ Missing required argument: `{error.param.name}`")
        elif isinstance(error, commands.BadArgument):
            await ctx.send("❌ Invalid argument provided.")
        elif isinstance(error, commands.NotOwner):
            await ctx.send("❌ This command is only available to the bot owner.")
        elif isinstance(error, commands.CommandOnCooldown):
            await ctx.send(f"⏳ Command on cooldown. Try again in {error.retry_after:.1f}s")
        else:
            logger.error(f"Command error in {ctx.command}: {error}", exc_info=error)
            await ctx.send("❌ An error occurred while processing the command.")

    # ==================== Helper Methods ====================

    @staticmethod
    def _split_message(text: str, max_length: int) -> List[str]:
        """Split a long message into Discord-compliant chunks."""
        if len(text) <= max_length:
            return [text]

        chunks = []
        remaining = text

        while remaining:
            if len(remaining) <= max_length:
                chunks.append(remaining)
                break

            break_point = max_length
            para_break = remaining.rfind('\n\n', 0, max_length)
            if para_break > max_length // 2:
                break_point = para_break + 2
            else:
                line_break = remaining.rfind('\n', 0, max_length)
                if line_break > max_length // 2:
                    break_point = line_break + 1
                else:
                    space_break = remaining.rfind(' ', 0, max_length)
                    if space_break > max_length // 2:
                        break_point = space_break + 1

            chunks.append(remaining[:break_point])
            remaining = remaining[break_point:]

        return chunks
