"""Discord surface for the AI responder: message listener and /mina-ai commands."""

from __future__ import annotations

import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from mina_ai.services.ai_responder import AiResponder, InboundMessage, ResponseOutcome
from mina_ai.services.free_will import MAX_FREE_WILL_CHANNELS, FreeWillManager
from mina_ai.utils.access_control import is_exempt_guild

logger = logging.getLogger(__name__)

DISCORD_MESSAGE_LIMIT = 2000
GUILD_ONLY_REPLY = "This command can only be used in a server."


def _split_reply(text: str, limit: int = DISCORD_MESSAGE_LIMIT) -> list[str]:
    chunks = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(text[:cut])
        text = text[cut:].lstrip("\n")
    if text:
        chunks.append(text)
    return chunks


def to_inbound(message: discord.Message, bot_user: Optional[discord.abc.User]) -> InboundMessage:
    """Flatten a gateway message into the fields the responder decides on."""
    mentions_bot = bool(bot_user and any(u.id == bot_user.id for u in message.mentions))

    is_reply_to_bot = False
    ref = message.reference
    if bot_user and ref is not None and isinstance(ref.resolved, discord.Message):
        is_reply_to_bot = ref.resolved.author.id == bot_user.id

    perms: frozenset[str] = frozenset()
    if isinstance(message.author, discord.Member):
        perms = frozenset(name for name, value in message.author.guild_permissions if value)

    return InboundMessage(
        message_id=str(message.id),
        author_id=str(message.author.id),
        channel_id=str(message.channel.id),
        guild_id=str(message.guild.id) if message.guild else None,
        content=message.content or "",
        mentions_bot=mentions_bot,
        is_reply_to_bot=is_reply_to_bot,
        author_is_bot=message.author.bot,
        is_system=message.is_system(),
        is_webhook=message.webhook_id is not None,
        member_permissions=perms,
    )


class AiResponderCog(commands.Cog):
    """Answers messages with the AI responder and manages its per-guild settings."""

    def __init__(self, bot: commands.Bot, responder: AiResponder, free_will: FreeWillManager) -> None:
        self.bot = bot
        self.responder = responder
        self.free_will = free_will

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return

        inbound = to_inbound(message, self.bot.user)
        gated = await self.responder.gate(inbound)
        if gated[0] is None:
            return

        async with message.channel.typing():
            outcome = await self.responder.handle_message(inbound, gated=gated)
        await self._deliver(message, outcome)

    async def _deliver(self, message: discord.Message, outcome: ResponseOutcome) -> None:
        if outcome.state == "suppressed":
            return

        try:
            if outcome.tip:
                await message.channel.send(outcome.tip)
            if outcome.reply:
                for chunk in _split_reply(outcome.reply):
                    await message.reply(chunk, mention_author=False)
        except discord.HTTPException as exc:
            logger.warning("Failed to deliver AI reply in channel %s: %s", message.channel.id, exc)

    mina_group = app_commands.Group(
        name="mina-ai",
        description="Mina AI responder settings",
        guild_only=True,
        default_permissions=discord.Permissions(manage_guild=True),
    )

    @mina_group.command(name="freewill", description="Toggle a channel where Mina answers without a mention.")
    @app_commands.describe(channel="Channel to add or remove")
    async def freewill(self, interaction: discord.Interaction, channel: discord.TextChannel) -> None:
        if interaction.guild_id is None:
            await interaction.response.send_message(GUILD_ONLY_REPLY, ephemeral=True)
            return
        result = await self.free_will.toggle(interaction.guild_id, channel.id, updated_by=interaction.user.id)

        if result.action == "limit_reached":
            listed = ", ".join(f"<#{cid}>" for cid in result.channels)
            await interaction.response.send_message(
                f"⛔ You can have at most {MAX_FREE_WILL_CHANNELS} free-will channels ({listed}). "
                "Remove one first.",
                ephemeral=True,
            )
            return

        remaining = ", ".join(f"<#{cid}>" for cid in result.channels) or "none"
        verb = "now answers freely in" if result.action == "added" else "no longer answers freely in"
        await interaction.response.send_message(
            f"✅ Mina {verb} {channel.mention}.\nFree-will channels: {remaining}",
            ephemeral=True,
        )

    @mina_group.command(name="mention-only", description="Only answer when mentioned or replied to.")
    @app_commands.describe(enabled="Turn mention-only mode on or off")
    async def mention_only(self, interaction: discord.Interaction, enabled: bool) -> None:
        if interaction.guild_id is None:
            await interaction.response.send_message(GUILD_ONLY_REPLY, ephemeral=True)
            return
        settings = await self.free_will.set_mention_only(
            interaction.guild_id, enabled, updated_by=interaction.user.id
        )
        state = "on" if settings.mention_only else "off"
        await interaction.response.send_message(f"Mention-only mode is {state}.", ephemeral=True)

    @mina_group.command(name="status", description="Show the AI responder settings and model routing.")
    async def status(self, interaction: discord.Interaction) -> None:
        if interaction.guild_id is None:
            await interaction.response.send_message(GUILD_ONLY_REPLY, ephemeral=True)
            return
        gid = str(interaction.guild_id)
        settings = await self.responder.store.get_ai_responder_settings(gid)

        embed = discord.Embed(title="Mina AI", color=discord.Color.blurple())
        embed.add_field(name="Enabled", value="yes" if settings.enabled else "no", inline=True)
        embed.add_field(name="Mention-only", value="yes" if settings.mention_only else "no", inline=True)
        cap = "unlimited" if is_exempt_guild(self.responder.config, gid) else str(MAX_FREE_WILL_CHANNELS)
        channels = ", ".join(f"<#{cid}>" for cid in settings.free_will_channels) or "none"
        embed.add_field(name=f"Free-will channels (max {cap})", value=channels, inline=False)
        if self.responder.is_guild_disabled(gid):
            embed.add_field(name="Paused", value="Too many recent failures; retrying later.", inline=False)

        routing = self.responder.router.get_routing_summary()
        embed.add_field(
            name="Model routing",
            value="\n".join(f"`{task}` → {model}" for task, model in routing.items()),
            inline=False,
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)
