"""Free-will channel toggling (channels where Mina answers without a mention)."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import List, Literal, Sequence

from mina_ai.storage import AiResponderSettings, Store
from mina_ai.utils.access_control import is_exempt_guild
from mina_ai.utils.keyed_lock import KeyedLocks

logger = logging.getLogger(__name__)

MAX_FREE_WILL_CHANNELS = 2

ToggleAction = Literal["added", "removed", "limit_reached"]


@dataclass(frozen=True)
class FreeWillToggle:
    channels: List[str]
    action: ToggleAction


def toggle_free_will_channel(current: Sequence[str], channel_id: str, *, exempt: bool) -> FreeWillToggle:
    """Remove if present, otherwise add unless a non-exempt guild is at the cap."""
    channels = [str(c) for c in current]
    channel_id = str(channel_id)

    if channel_id in channels:
        return FreeWillToggle([c for c in channels if c != channel_id], "removed")

    if not exempt and len(channels) >= MAX_FREE_WILL_CHANNELS:
        return FreeWillToggle(channels, "limit_reached")

    return FreeWillToggle(channels + [channel_id], "added")


class FreeWillManager:
    """
    Applies toggles against the persisted guild settings.
    One lock per guild: two concurrent toggles can't both pass the cap check.
    """

    def __init__(self, store: Store, config: object) -> None:
        self._store = store
        self._config = config
        self._locks = KeyedLocks()

    async def toggle(self, guild_id: int | str, channel_id: int | str, *, updated_by: int | str) -> FreeWillToggle:
        gid = str(guild_id)
        async with self._locks.hold(gid):
            settings = await self._store.get_ai_responder_settings(gid)
            result = toggle_free_will_channel(
                settings.free_will_channels,
                str(channel_id),
                exempt=is_exempt_guild(self._config, gid),
            )
            if result.action == "limit_reached":
                logger.info("Free-will limit reached for guild %s (channels=%s)", gid, result.channels)
                return result

            updated: AiResponderSettings = replace(
                settings,
                free_will_channels=result.channels,
                # Adding a free-will channel switches the guild out of mention-only mode.
                mention_only=False if result.action == "added" else settings.mention_only,
                updated_by=str(updated_by),
                updated_at=int(time.time()),
            )
            await self._store.update_ai_responder_settings(gid, updated)
            logger.info("Free-will channel %s %s in guild %s", channel_id, result.action, gid)
            return result

    async def set_mention_only(self, guild_id: int | str, enabled: bool, *, updated_by: int | str) -> AiResponderSettings:
        gid = str(guild_id)
        async with self._locks.hold(gid):
            settings = await self._store.get_ai_responder_settings(gid)
            updated = replace(
                settings,
                mention_only=bool(enabled),
                updated_by=str(updated_by),
                updated_at=int(time.time()),
            )
            await self._store.update_ai_responder_settings(gid, updated)
            return updated
