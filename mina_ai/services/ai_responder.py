"""
AI responder: decides whether a message gets an answer, screens it, routes it
to a model and runs the tool loop.

The Discord layer converts a `discord.Message` into an `InboundMessage` and
renders the returned `ResponseOutcome`; nothing here touches the gateway.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, FrozenSet, List, Literal, Optional, Tuple

from mina_ai.cogs.tools.registry import (
    NativeToolContext,
    NativeToolRegistry,
    ToolArgumentError,
    ToolMetadata,
    ToolNotFoundError,
)
from mina_ai.logging_conf import preview
from mina_ai.storage import AiResponderSettings, Store
from mina_ai.utils.access_control import effective_metadata, is_exempt_guild
from mina_ai.utils.injection_guard import check_injection
from mina_ai.utils.keyed_lock import KeyedLocks
from mina_ai.utils.llm_client import FunctionCall, ModelResponse
from mina_ai.utils.model_router import ModelRouter, TaskType
from mina_ai.utils.policy_engine import apply_free_will_limits, decide_tool_permission

logger = logging.getLogger(__name__)

ResponseMode = Literal["mention", "free_will", "dm"]
ResponseState = Literal["responded", "suppressed", "refused"]
Gate = Tuple[Optional[ResponseMode], Optional[AiResponderSettings]]

SYSTEM_FEEDBACK_HEADER = "[System Feedback]"
EXECUTING_PLACEHOLDER = "[Executing requested commands...]"

INJECTION_REPLY = "I can't help with that request. Try asking me in your own words."
TIMEOUT_REPLY = "That took me too long to think through. Please try again in a moment."
FALLBACK_REPLY = "I'm having trouble thinking right now. Please try again in a moment."

_REASONING_CUES = re.compile(
    r"\b(explain\s+why|step[\s-]+by[\s-]+step|prove|analy[sz]e|compare|reason\s+through|think\s+through|pros\s+and\s+cons)\b",
    re.IGNORECASE,
)


def classify_task(content: Optional[str]) -> TaskType:
    """`reasoning` for analytic requests, `chat` for everything else."""
    if content and _REASONING_CUES.search(content):
        return "reasoning"
    return "chat"


@dataclass(frozen=True)
class InboundMessage:
    message_id: str
    author_id: str
    channel_id: str
    content: str
    guild_id: Optional[str] = None
    mentions_bot: bool = False
    is_reply_to_bot: bool = False
    author_is_bot: bool = False
    is_system: bool = False
    is_webhook: bool = False
    member_permissions: FrozenSet[str] = frozenset()

    @property
    def conversation_key(self) -> str:
        return f"{self.guild_id or 'dm'}:{self.channel_id}"


@dataclass(frozen=True)
class ResponseOutcome:
    state: ResponseState
    reply: Optional[str] = None
    reason: str = ""
    mode: Optional[ResponseMode] = None
    task_type: Optional[TaskType] = None
    model: Optional[str] = None
    tool_calls: Tuple[str, ...] = ()
    tip: Optional[str] = None


def mention_tip(channel_ids: List[str]) -> str:
    channels = " or ".join(f"<#{cid}>" for cid in channel_ids)
    return (
        f"💡 **Tip:** I'm also active in {channels}! You don't need to @mention me there, "
        "just send a message and I'll respond."
    )


@dataclass
class _RateLimits:
    user_cooldown: float
    channel_cooldown: float
    seen: Dict[str, float] = field(default_factory=dict)
    last_prune: float = 0.0

    def prune(self, now: float) -> None:
        horizon = max(self.user_cooldown, self.channel_cooldown)
        self.seen = {key: ts for key, ts in self.seen.items() if now - ts < horizon}
        self.last_prune = now

    def hit(self, msg: InboundMessage, mode: ResponseMode, now: float) -> bool:
        if now - self.last_prune >= self.user_cooldown:
            self.prune(now)

        user_key = f"{msg.channel_id}:{msg.author_id}"
        channel_key = f"channel:{msg.channel_id}"

        last = self.seen.get(user_key)
        if last is not None and now - last < self.user_cooldown:
            return True

        if mode == "free_will":
            last = self.seen.get(channel_key)
            if last is not None and now - last < self.channel_cooldown:
                return True
            self.seen[channel_key] = now

        self.seen[user_key] = now
        return False


class AiResponder:
    USER_COOLDOWN_SEC = 3.0
    CHANNEL_COOLDOWN_SEC = 1.0
    FAILURE_THRESHOLD = 5
    FAILURE_WINDOW_SEC = 10 * 60
    HISTORY_LIMIT = 20
    MAX_CONVERSATIONS = 1000

    def __init__(
        self,
        *,
        config: Any,
        router: ModelRouter,
        registry: NativeToolRegistry,
        llm: Any,
        store: Store,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.router = router
        self.registry = registry
        self.llm = llm
        self.store = store
        self._clock = clock

        self._locks = KeyedLocks()
        # Least recently answered conversation first.
        self._history: "OrderedDict[str, List[Dict[str, str]]]" = OrderedDict()
        self._failures: Dict[str, Deque[float]] = {}
        self._rate_limits = _RateLimits(self.USER_COOLDOWN_SEC, self.CHANNEL_COOLDOWN_SEC)

    # ---- gate ----

    async def gate(self, msg: InboundMessage) -> Gate:
        """Response mode for `msg` (None when it should be ignored) and the guild settings read for it."""
        if msg.author_is_bot or msg.is_system or msg.is_webhook:
            return None, None

        if msg.guild_id is None:
            return ("dm" if self.config.dm_enabled else None), None

        settings = await self.store.get_ai_responder_settings(msg.guild_id)
        if not settings.enabled:
            return None, settings
        if self.is_guild_disabled(msg.guild_id):
            return None, settings

        in_free_will = msg.channel_id in settings.free_will_channels
        mentioned = msg.mentions_bot or msg.is_reply_to_bot

        if is_exempt_guild(self.config, msg.guild_id):
            # Exempt guild: free-will channels and mentions both work at once.
            if in_free_will:
                return "free_will", settings
            return ("mention" if mentioned else None), settings

        if in_free_will and not settings.mention_only:
            return "free_will", settings
        if mentioned:
            return "mention", settings
        return None, settings

    async def should_respond(self, msg: InboundMessage) -> Optional[ResponseMode]:
        mode, _ = await self.gate(msg)
        return mode

    # ---- guild failure tracking ----

    def _recent_failures(self, guild_id: str) -> Deque[float]:
        failures = self._failures.get(guild_id)
        if failures is None:
            return deque()
        cutoff = self._clock() - self.FAILURE_WINDOW_SEC
        while failures and failures[0] <= cutoff:
            failures.popleft()
        if not failures:
            del self._failures[guild_id]
        return failures

    def is_guild_disabled(self, guild_id: str) -> bool:
        return len(self._recent_failures(guild_id)) >= self.FAILURE_THRESHOLD

    def record_failure(self, guild_id: Optional[str]) -> None:
        if guild_id is None:
            return
        failures = self._recent_failures(guild_id)
        failures.append(self._clock())
        self._failures[guild_id] = failures
        if len(failures) >= self.FAILURE_THRESHOLD:
            logger.error("AI auto-disabled for guild %s after %d failures", guild_id, len(failures))

    def clear_failures(self, guild_id: Optional[str]) -> None:
        if guild_id is not None:
            self._failures.pop(guild_id, None)

    # ---- turn ----

    async def handle_message(self, msg: InboundMessage, *, gated: Optional[Gate] = None) -> ResponseOutcome:
        """Answer `msg`. Pass `gated` when the caller already ran `gate` for it."""
        mode, settings = gated if gated is not None else await self.gate(msg)
        if mode is None:
            return ResponseOutcome("suppressed", reason="not_addressed")

        if self._rate_limits.hit(msg, mode, self._clock()):
            logger.debug("Rate limited: user=%s channel=%s", msg.author_id, msg.channel_id)
            return ResponseOutcome("suppressed", reason="rate_limited", mode=mode)

        tip = None
        if mode == "mention" and settings and settings.free_will_channels:
            tip = mention_tip(settings.free_will_channels)

        async with self._locks.hold(msg.conversation_key):
            return await self._run_turn(msg, mode, tip)

    async def _run_turn(self, msg: InboundMessage, mode: ResponseMode, tip: Optional[str]) -> ResponseOutcome:
        screen = check_injection(msg.content)
        if screen.detected:
            logger.warning(
                "Prompt injection refused: user=%s guild=%s patterns=%s",
                msg.author_id,
                msg.guild_id,
                ",".join(screen.patterns),
            )
            return ResponseOutcome("refused", reply=INJECTION_REPLY, reason="injection", mode=mode, tip=tip)

        task_type = classify_task(msg.content)
        model = self.router.get_model(task_type).model
        logger.info("AI turn: mode=%s task=%s model=%s msg=%s", mode, task_type, model, preview(msg.content))

        tools = self.registry.get_tool_schemas()
        history = list(self._history.get(msg.conversation_key, ()))
        calls_made: List[str] = []

        try:
            response = await self._generate(model, history, msg.content, tools)
            history.append({"role": "user", "text": msg.content})

            iteration = 0
            while response.function_calls and iteration < self.config.max_tool_iterations:
                iteration += 1
                results = []
                for call in response.function_calls:
                    calls_made.append(call.name)
                    results.append(await self._run_tool(call, msg))

                feedback = SYSTEM_FEEDBACK_HEADER + "\n" + "\n\n".join(results)
                history.append({"role": "model", "text": response.text.strip() or EXECUTING_PLACEHOLDER})
                response = await self._generate(model, history, feedback, tools)
                history.append({"role": "user", "text": feedback})

            if response.function_calls:
                logger.warning(
                    "Tool loop hit max iterations (%d) for message %s",
                    self.config.max_tool_iterations,
                    msg.message_id,
                )
        except asyncio.TimeoutError:
            logger.warning("AI turn timed out: guild=%s channel=%s", msg.guild_id, msg.channel_id)
            self.record_failure(msg.guild_id)
            return ResponseOutcome(
                "refused",
                reply=TIMEOUT_REPLY,
                reason="timeout",
                mode=mode,
                task_type=task_type,
                model=model,
                tool_calls=tuple(calls_made),
                tip=tip,
            )
        except Exception as exc:
            logger.warning("AI response failed: %s (guild=%s channel=%s)", exc, msg.guild_id, msg.channel_id)
            self.record_failure(msg.guild_id)
            return ResponseOutcome(
                "refused",
                reply=FALLBACK_REPLY,
                reason="error",
                mode=mode,
                task_type=task_type,
                model=model,
                tool_calls=tuple(calls_made),
                tip=tip,
            )

        reply = response.text.strip() or None
        if reply:
            history.append({"role": "model", "text": reply})
        self._remember(msg.conversation_key, history)
        self.clear_failures(msg.guild_id)

        return ResponseOutcome(
            "responded",
            reply=reply,
            mode=mode,
            task_type=task_type,
            model=model,
            tool_calls=tuple(calls_made),
            tip=tip,
        )

    def _remember(self, key: str, history: List[Dict[str, str]]) -> None:
        self._history[key] = history[-self.HISTORY_LIMIT:]
        self._history.move_to_end(key)
        while len(self._history) > self.MAX_CONVERSATIONS:
            self._history.popitem(last=False)

    async def _generate(
        self,
        model: str,
        history: List[Dict[str, str]],
        message: str,
        tools: List[Dict[str, Any]],
    ) -> ModelResponse:
        return await asyncio.wait_for(
            self.llm.generate(
                model=model,
                system_prompt=self.config.system_prompt,
                history=list(history),
                message=message,
                tools=tools,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            ),
            timeout=self.config.timeout_sec,
        )

    async def _run_tool(self, call: FunctionCall, msg: InboundMessage) -> str:
        """Run one requested tool call; every failure comes back as feedback text."""
        name = call.name
        if not self.registry.is_native_tool(name):
            logger.info("Model requested unknown tool %s", name)
            return f"Tool {name} not found. Available tools may be limited."

        metadata = effective_metadata(self.registry.get_metadata(name) or ToolMetadata(name=name))
        # The arguments are model-written text too; screen them like the message.
        arg_text = " ".join(str(v) for v in call.args.values() if isinstance(v, str))
        decision = decide_tool_permission(
            tool_name=name,
            metadata=metadata,
            message_content=msg.content,
            injection_detected=check_injection(arg_text).detected,
            in_guild=msg.guild_id is not None,
            member_permissions=msg.member_permissions,
        )
        if not decision.allowed:
            logger.info("Tool %s denied for user %s: %s", name, msg.author_id, decision.reason)
            return decision.reason

        args = apply_free_will_limits(name, call.args) if decision.is_free_will else dict(call.args)
        context = NativeToolContext(user_id=msg.author_id, guild_id=msg.guild_id, channel_id=msg.channel_id)

        deadline = asyncio.timeout(self.config.timeout_sec)
        try:
            async with deadline:
                return await self.registry.execute_native_tool(name, args, context)
        except (ToolNotFoundError, ToolArgumentError) as exc:
            logger.info("Tool %s rejected: %s", name, exc)
            return str(exc)
        except Exception as exc:
            # Only our own deadline ends the turn; a handler's TimeoutError is a tool failure.
            if deadline.expired():
                raise
            logger.error("Failed to execute native tool %s: %s", name, exc)
            return f"Tool {name} failed: {exc}"
