from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from mina_ai.cogs.tools.registry import ToolMetadata


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    reason: str
    is_free_will: bool


# Words that show the user asked for a tool themselves.
ACTION_WORDS: Dict[str, tuple[str, ...]] = {
    "timeout": ("timeout", "mute", "silence", "quiet"),
    "ban": ("ban", "remove permanently", "get rid of"),
    "kick": ("kick", "remove", "boot"),
    "warn": ("warn", "warning"),
    "purge": ("purge", "delete messages", "clear messages", "clean"),
    "gamble": ("gamble", "bet", "wager"),
    "slots": ("slots", "slot machine"),
    "coinflip": ("coinflip", "flip a coin", "coin flip"),
    "blackjack": ("blackjack", "play blackjack", "21"),
    "remember_fact": ("remember", "don't forget", "keep in mind"),
    "update_memory": ("update", "change", "actually"),
    "forget_memory": ("forget", "delete", "remove"),
    "recall_memories": ("remember", "recall", "what do you know"),
}

# Caps applied to arguments when the assistant acts on its own.
FREE_WILL_LIMITS: Dict[str, Dict[str, int]] = {
    "timeout": {"max_duration_seconds": 300, "default_duration_seconds": 60},
    "purge": {"max_messages": 10, "default_messages": 5},
}

FREE_WILL_WARN_REASON = "Automated warning by Mina AI"

# Required of the member when a privileged tool lists no permissions of its own.
DEFAULT_PRIVILEGED_PERMISSION = "manage_guild"


def is_likely_user_request(content: str, tool_name: str) -> bool:
    lower = (content or "").lower()
    if tool_name.lower() in lower:
        return True
    return any(word in lower for word in ACTION_WORDS.get(tool_name, ()))


def decide_tool_permission(
    *,
    tool_name: str,
    metadata: ToolMetadata,
    message_content: str,
    injection_detected: bool,
    in_guild: bool,
    member_permissions: Optional[Iterable[str]] = None,
) -> PolicyDecision:
    """
    Decide whether the assistant may run `tool_name` for this message.

    - open: always allowed.
    - userRequest: only when the user's message asks for it.
    - privileged: free-will exceptions may run on their own; otherwise the
      member must hold every permission in metadata.user_permissions
      (manage_guild when the tool lists none).
    - any injection finding blocks privileged tools outright.
    """
    is_free_will = not is_likely_user_request(message_content, tool_name)
    model = metadata.permission_model

    if injection_detected and model == "privileged":
        return PolicyDecision(
            allowed=False,
            reason=f"Tool {tool_name} blocked: suspicious request pattern detected.",
            is_free_will=is_free_will,
        )

    if model == "open":
        return PolicyDecision(allowed=True, reason="", is_free_will=is_free_will)

    if model == "userRequest":
        if is_free_will:
            return PolicyDecision(
                allowed=False,
                reason=f"I can only run {tool_name} if you ask me to! This affects your account.",
                is_free_will=is_free_will,
            )
        return PolicyDecision(allowed=True, reason="", is_free_will=is_free_will)

    if model == "privileged":
        if is_free_will and metadata.free_will_allowed:
            return PolicyDecision(allowed=True, reason="", is_free_will=is_free_will)

        if not in_guild:
            return PolicyDecision(
                allowed=False,
                reason=f"Tool {tool_name} requires server permissions and must be used in a server.",
                is_free_will=is_free_will,
            )

        required = list(metadata.user_permissions) or [DEFAULT_PRIVILEGED_PERMISSION]
        held = set(member_permissions or ())
        if not set(required).issubset(held):
            return PolicyDecision(
                allowed=False,
                reason=f"You need [{', '.join(required)}] permission(s) to use {tool_name}.",
                is_free_will=is_free_will,
            )
        return PolicyDecision(allowed=True, reason="", is_free_will=is_free_will)

    return PolicyDecision(
        allowed=False,
        reason=f"Tool {tool_name} has an unknown permission model.",
        is_free_will=is_free_will,
    )


def apply_free_will_limits(tool_name: str, args: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of `args` clamped for an action the assistant chose on its own."""
    out = dict(args)

    if tool_name == "timeout":
        limits = FREE_WILL_LIMITS["timeout"]
        duration = out.get("duration")
        if not duration:
            out["duration"] = limits["default_duration_seconds"]
        elif isinstance(duration, (int, float)) and duration > limits["max_duration_seconds"]:
            out["duration"] = limits["max_duration_seconds"]

    elif tool_name == "purge":
        limits = FREE_WILL_LIMITS["purge"]
        amount = out.get("amount")
        if not amount:
            out["amount"] = limits["default_messages"]
        elif isinstance(amount, (int, float)) and amount > limits["max_messages"]:
            out["amount"] = limits["max_messages"]

    elif tool_name == "warn":
        if not out.get("reason"):
            out["reason"] = FREE_WILL_WARN_REASON

    return out
