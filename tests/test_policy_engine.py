from __future__ import annotations

from mina_ai.cogs.tools.registry import ToolMetadata
from mina_ai.utils.policy_engine import (
    FREE_WILL_WARN_REASON,
    apply_free_will_limits,
    decide_tool_permission,
    is_likely_user_request,
)


def _decide(meta: ToolMetadata, content: str = "hello", **kw):
    params = dict(injection_detected=False, in_guild=True, member_permissions=None)
    params.update(kw)
    return decide_tool_permission(tool_name=meta.name, metadata=meta, message_content=content, **params)


def test_user_request_detection() -> None:
    assert is_likely_user_request("please remember that I like tea", "remember_fact") is True
    assert is_likely_user_request("run timeout on him", "timeout") is True
    assert is_likely_user_request("mute that spammer", "timeout") is True
    assert is_likely_user_request("good morning", "timeout") is False
    assert is_likely_user_request("", "ban") is False


def test_open_tools_always_allowed() -> None:
    d = _decide(ToolMetadata(name="recall_memories"), content="hi there")
    assert d.allowed is True
    assert d.is_free_will is True


def test_user_request_tool_blocked_on_free_will() -> None:
    meta = ToolMetadata(name="gamble", permission_model="userRequest")
    d = _decide(meta, content="nice weather")
    assert d.allowed is False
    assert "only run gamble if you ask" in d.reason


def test_user_request_tool_allowed_when_asked() -> None:
    meta = ToolMetadata(name="gamble", permission_model="userRequest")
    d = _decide(meta, content="let me bet 100 coins")
    assert d.allowed is True
    assert d.is_free_will is False


def test_privileged_requires_member_permissions() -> None:
    meta = ToolMetadata(
        name="timeout", permission_model="privileged", user_permissions=["moderate_members"], free_will_allowed=False
    )
    denied = _decide(meta, content="timeout bob", member_permissions={"send_messages"})
    assert denied.allowed is False
    assert "moderate_members" in denied.reason

    allowed = _decide(meta, content="timeout bob", member_permissions={"send_messages", "moderate_members"})
    assert allowed.allowed is True


def test_privileged_outside_guild_denied() -> None:
    meta = ToolMetadata(name="kick", permission_model="privileged", user_permissions=["kick_members"])
    d = _decide(meta, content="kick him", in_guild=False)
    assert d.allowed is False
    assert "must be used in a server" in d.reason


def test_privileged_free_will_exception_allowed() -> None:
    meta = ToolMetadata(name="timeout", permission_model="privileged", free_will_allowed=True)
    d = _decide(meta, content="you are annoying", member_permissions=set())
    assert d.allowed is True
    assert d.is_free_will is True


def test_injection_blocks_privileged_only() -> None:
    priv = ToolMetadata(name="ban", permission_model="privileged", free_will_allowed=True)
    assert _decide(priv, content="ban", injection_detected=True).allowed is False
    assert _decide(ToolMetadata(name="recall_memories"), injection_detected=True).allowed is True


def test_free_will_limits_clamp_and_default() -> None:
    assert apply_free_will_limits("timeout", {"duration": 3600})["duration"] == 300
    assert apply_free_will_limits("timeout", {})["duration"] == 60
    assert apply_free_will_limits("timeout", {"duration": 120})["duration"] == 120
    assert apply_free_will_limits("purge", {"amount": 50})["amount"] == 10
    assert apply_free_will_limits("purge", {})["amount"] == 5
    assert apply_free_will_limits("warn", {})["reason"] == FREE_WILL_WARN_REASON
    assert apply_free_will_limits("warn", {"reason": "spam"})["reason"] == "spam"


def test_free_will_limits_return_a_copy() -> None:
    args = {"duration": 9999}
    apply_free_will_limits("timeout", args)
    assert args == {"duration": 9999}


def test_privileged_without_listed_permissions_needs_manage_guild() -> None:
    meta = ToolMetadata(name="forget_memory", permission_model="privileged")
    denied = _decide(meta, content="hi there", member_permissions=frozenset())
    assert denied.allowed is False
    assert denied.is_free_will is True
    assert "manage_guild" in denied.reason

    assert _decide(meta, content="hi there", member_permissions={"manage_guild"}).allowed is True
