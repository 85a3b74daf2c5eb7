"""Entry point for the Mina AI Discord bot."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Optional

import aiohttp
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

import discord
from discord import app_commands
from discord.ext import commands

from mina_ai.cogs.ai_responder import AiResponderCog
from mina_ai.cogs.tools.registry import NativeToolRegistry
from mina_ai.config import Config, ConfigError
from mina_ai.logging_conf import setup_logging
from mina_ai.services.ai_responder import AiResponder
from mina_ai.services.free_will import FreeWillManager
from mina_ai.skills.memory_tools import MemorySkill
from mina_ai.storage import Store
from mina_ai.utils.llm_client import LLMClient
from mina_ai.utils.model_router import ModelRouter

logger = logging.getLogger(__name__)


class MinaBot(commands.Bot):
    """Discord bot hosting the Mina AI responder."""

    def __init__(
        self,
        config: Config,
        store: Store,
        llm_client: LLMClient,
        router: ModelRouter,
        intents: discord.Intents,
        session: aiohttp.ClientSession,
    ) -> None:
        super().__init__(
            command_prefix=commands.when_mentioned_or("!"),
            intents=intents,
            application_id=config.app_id or None,
        )
        self.config = config
        self.store = store
        self.llm_client = llm_client
        self.router = router
        self.session = session
        self.tool_registry = NativeToolRegistry()

    async def setup_hook(self) -> None:
        MemorySkill(self.store).register(self.tool_registry)

        responder = AiResponder(
            config=self.config,
            router=self.router,
            registry=self.tool_registry,
            llm=self.llm_client,
            store=self.store,
        )
        free_will = FreeWillManager(self.store, self.config)
        await self.add_cog(AiResponderCog(self, responder, free_will))

        self.tree.on_error = self.on_app_command_error
        await self._sync_commands()

    async def _sync_commands(self) -> None:
        if self.config.test_guild_id:
            guild = discord.Object(id=self.config.test_guild_id)
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synchronized %d commands to guild %s", len(synced), self.config.test_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synchronized %d commands globally", len(synced))

    async def on_ready(self) -> None:
        assert self.user is not None
        logger.info(
            "Logged in as %s (%s); application_id=%s; guilds=%d",
            self.user.name,
            self.user.id,
            self.application_id,
            len(self.guilds),
        )

    async def on_disconnect(self) -> None:
        logger.warning("Disconnected from Discord gateway. Reconnection will be attempted automatically.")

    async def on_error(self, event_method: str, *args: object, **kwargs: object) -> None:
        logger.exception("Unhandled error in event %s", event_method)

    async def on_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            command_name = interaction.command.qualified_name if interaction.command else "unknown"
            logger.info("Command check failed", extra={"command": command_name, "user": str(interaction.user)})
            message = "You don't have permission to use this command."
        else:
            logger.exception("Application command error", exc_info=error)
            message = "Something went wrong while running that command."

        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)


def _configure_signals(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            logger.warning("Signal handlers are not supported on this platform.")
            break


async def run_bot() -> None:
    try:
        config = Config.load()
        config.validate()
        # Fail at startup, not on the first message.
        router = ModelRouter(config.router_config())
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        raise SystemExit(1) from exc

    setup_logging(config.log_level)
    logger.info("Starting Mina AI bot", extra={"app_id": config.app_id})
    logger.info("Model routing: %s", router.get_routing_summary())

    intents = discord.Intents.none()
    intents.guilds = True
    intents.guild_messages = True
    intents.dm_messages = config.dm_enabled
    intents.message_content = True

    async with aiohttp.ClientSession() as session:
        llm_client = LLMClient(
            config.llm_base_url,
            config.llm_api_key,
            anthropic_base_url=config.anthropic_base_url,
            anthropic_api_key=config.anthropic_api_key,
            session=session,
        )
        store = Store(config.db_path)
        await store.init()

        bot = MinaBot(
            config=config,
            store=store,
            llm_client=llm_client,
            router=router,
            intents=intents,
            session=session,
        )

        stop_event = asyncio.Event()
        _configure_signals(stop_event)

        async with bot:
            bot_task = asyncio.create_task(bot.start(config.token))
            stop_task = asyncio.create_task(stop_event.wait())

            done, pending = await asyncio.wait({bot_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

            if stop_task in done:
                logger.info("Shutdown signal received. Closing bot...")
                await bot.close()

            if bot_task in done:
                exc: Optional[BaseException] = bot_task.exception()
                if exc:
                    logger.exception("Bot stopped due to an error.")
                    raise exc
            else:
                await bot.close()
                await bot_task

            for task in pending:
                task.cancel()

            if pending:
                await asyncio.gather(*pending, return_exceptions=True)


async def main() -> None:
    try:
        await run_bot()
    except asyncio.CancelledError:
        pass
    except KeyboardInterrupt:
        logger.info("Interrupted by user. Exiting.")


def cli() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
