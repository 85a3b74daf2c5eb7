"""
Access control helpers for the AI responder.

- The exempt (test/staging) guild is identified by an explicit predicate so the
  free-will cap logic never hard-codes a guild id.
- Tool permission classes can be tightened per deployment via env CSVs; this
  only ever escalates what a tool registered itself as.
"""

from __future__ import annotations

import os
from typing import Dict, List, Optional, Set

from mina_ai.cogs.tools.registry import ToolMetadata
from mina_ai.utils.policy_engine import DEFAULT_PRIVILEGED_PERMISSION


def _parse_csv_env(name: str) -> Set[str]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return set()
    return {x.strip() for x in raw.split(",") if x.strip()}


def privileged_tools() -> Dict[str, List[str]]:
    """Entries are `name` or `name:perm1|perm2`; the listed permissions are required to run the tool."""
    out: Dict[str, List[str]] = {}
    for entry in _parse_csv_env("MINA_AI_PRIVILEGED_TOOLS"):
        name, _, perms = entry.partition(":")
        out[name.strip()] = [p.strip() for p in perms.split("|") if p.strip()]
    return out


def user_request_tools() -> Set[str]:
    return _parse_csv_env("MINA_AI_USER_REQUEST_TOOLS")


def free_will_exceptions() -> Set[str]:
    # Privileged tools the assistant may still use on its own (e.g. timeout for self-defence).
    return _parse_csv_env("MINA_AI_FREE_WILL_EXCEPTIONS")


def is_exempt_guild(config: object, guild_id: Optional[int | str]) -> bool:
    """True for the test/staging guild, which has no free-will channel cap."""
    if guild_id is None or not config:
        return False
    exempt = getattr(config, "test_guild_id", None)
    return bool(exempt) and str(guild_id) == str(exempt)


def effective_metadata(metadata: ToolMetadata) -> ToolMetadata:
    """Apply env overrides on top of the metadata a tool was registered with."""
    name = metadata.name
    privileged = privileged_tools()
    if name in privileged:
        required = privileged[name] or list(metadata.user_permissions) or [DEFAULT_PRIVILEGED_PERMISSION]
        return metadata.model_copy(
            update={
                "permission_model": "privileged",
                "user_permissions": required,
                "free_will_allowed": name in free_will_exceptions(),
            }
        )
    if metadata.permission_model == "open" and name in user_request_tools():
        return metadata.model_copy(update={"permission_model": "userRequest", "free_will_allowed": False})
    return metadata
