"""Async model client: OpenAI-compatible chat completions and Anthropic messages."""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from mina_ai.utils.model_router import ModelRouter

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class TransientHTTPError(RuntimeError):
    pass


class RetryBudgetExceededError(TransientHTTPError):
    pass


# Global semaphore for rate limiting
_SEM = asyncio.Semaphore(10)


async def robust_json_request(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    json_data: Any = None,
    total_retry_budget: float = 60.0,
    max_attempts: int = 4,
    # Injectables for testing
    _sleep_func=asyncio.sleep,
    _time_func=time.monotonic,
) -> Any:
    deadline = _time_func() + total_retry_budget
    backoff = 1.0
    last_err: Optional[BaseException] = None

    for attempt in range(1, max_attempts + 1):
        remaining = deadline - _time_func()
        if remaining <= 0:
            raise asyncio.TimeoutError(f"Total retry budget ({total_retry_budget}s) exceeded")

        try:
            async with _SEM:
                timeout = aiohttp.ClientTimeout(total=min(120.0, remaining), connect=5.0)
                try:
                    async with session.request(method, url, headers=headers, json=json_data, timeout=timeout) as resp:
                        status = resp.status

                        if status == 429 or 500 <= status < 600:
                            retry_after = float(resp.headers.get("Retry-After", 0) or 0)
                            if retry_after > 0:
                                current_remaining = deadline - _time_func()
                                if retry_after > current_remaining:
                                    logger.warning(
                                        "Retry-After (%ss) > remaining (%.2fs). Aborting.", retry_after, current_remaining
                                    )
                                    raise RetryBudgetExceededError(f"Retry-After {retry_after}s exceeds budget")
                                await _sleep_func(retry_after)
                                continue
                            raise TransientHTTPError(f"Transient status {status}")

                        if 400 <= status < 500:
                            text = await resp.text()
                            raise RuntimeError(f"Non-retryable status {status}: {text[:200]}")

                        return await resp.json(content_type=None)

                except asyncio.CancelledError:
                    raise
                except RetryBudgetExceededError:
                    raise
                except TransientHTTPError as e:
                    last_err = e
                    logger.warning("Request failed (attempt %d/%d): %s", attempt, max_attempts, e)
                except aiohttp.ClientError as e:
                    last_err = e
                    logger.warning("Request failed (attempt %d/%d): %s", attempt, max_attempts, e)

        except asyncio.CancelledError:
            raise

        if attempt < max_attempts:
            sleep_time = min(backoff + random.random() * 0.5, 8.0)
            if _time_func() + sleep_time > deadline:
                logger.warning("Backoff sleep would exceed budget. Aborting.")
                break
            await _sleep_func(sleep_time)
            backoff *= 2.0

    raise last_err or RuntimeError("Max attempts reached")


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None


@dataclass(frozen=True)
class ModelResponse:
    text: str = ""
    function_calls: List[FunctionCall] = field(default_factory=list)


def to_json_schema(schema: Any) -> Any:
    """Lower-case provider type names ("OBJECT" -> "object") throughout a schema."""
    if isinstance(schema, dict):
        out: Dict[str, Any] = {}
        for key, value in schema.items():
            if key == "type" and isinstance(value, str):
                out[key] = value.lower()
            else:
                out[key] = to_json_schema(value)
        return out
    if isinstance(schema, list):
        return [to_json_schema(v) for v in schema]
    return schema


def _parameters_for(tool: Dict[str, Any]) -> Dict[str, Any]:
    params = tool.get("parameters") or {"type": "object", "properties": {}}
    params = to_json_schema(params)
    if not params.get("required"):
        params.pop("required", None)
    return params


def openai_tools(tools: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters": _parameters_for(t),
            },
        }
        for t in tools
    ]


def anthropic_tools(tools: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {"name": t["name"], "description": t.get("description", ""), "input_schema": _parameters_for(t)}
        for t in tools
    ]


def _role(role: str) -> str:
    return "assistant" if role in {"model", "assistant"} else "user"


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Tool call arguments were not valid JSON: %r", str(raw)[:120])
        return {}
    return parsed if isinstance(parsed, dict) else {}


def parse_openai_response(data: Dict[str, Any]) -> ModelResponse:
    try:
        message = data["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as exc:
        raise RuntimeError("LLM response has an unexpected shape") from exc

    calls = [
        FunctionCall(
            name=tc["function"]["name"],
            args=_parse_arguments(tc["function"].get("arguments")),
            call_id=tc.get("id"),
        )
        for tc in (message.get("tool_calls") or [])
        if tc.get("function", {}).get("name")
    ]
    return ModelResponse(text=str(message.get("content") or ""), function_calls=calls)


def parse_anthropic_response(data: Dict[str, Any]) -> ModelResponse:
    blocks = data.get("content") if isinstance(data, dict) else None
    if not isinstance(blocks, list):
        raise RuntimeError("LLM response has an unexpected shape")

    texts: List[str] = []
    calls: List[FunctionCall] = []
    for block in blocks:
        kind = block.get("type")
        if kind == "text":
            texts.append(block.get("text", ""))
        elif kind == "tool_use" and block.get("name"):
            calls.append(FunctionCall(name=block["name"], args=_parse_arguments(block.get("input")), call_id=block.get("id")))
    return ModelResponse(text="".join(texts), function_calls=calls)


class LLMClient:
    """
    Minimal async client. The request shape is chosen per model family:
    Claude models go to the Anthropic messages API, everything else to an
    OpenAI-compatible chat-completions endpoint.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        anthropic_base_url: str = "https://api.anthropic.com/v1",
        anthropic_api_key: str = "",
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._anthropic_base_url = anthropic_base_url.rstrip("/")
        self._anthropic_api_key = anthropic_api_key
        self._session = session

    def build_request(
        self,
        *,
        model: str,
        system_prompt: str,
        history: Sequence[Dict[str, str]],
        message: str,
        tools: Sequence[Dict[str, Any]] = (),
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> tuple[str, Dict[str, str], Dict[str, Any]]:
        """Return (url, headers, payload) for the model's provider."""
        turns = [{"role": _role(m["role"]), "content": m["text"]} for m in history]
        turns.append({"role": "user", "content": message})

        if ModelRouter.is_claude_model(model):
            payload: Dict[str, Any] = {
                "model": model,
                "system": system_prompt,
                "messages": turns,
                "max_tokens": max_tokens,
                "temperature": min(temperature, 1.0),
            }
            if tools:
                payload["tools"] = anthropic_tools(tools)
            headers = {
                "Content-Type": "application/json",
                "x-api-key": self._anthropic_api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            }
            return f"{self._anthropic_base_url}/messages", headers, payload

        payload = {
            "model": model,
            "messages": [{"role": "system", "content": system_prompt}] + turns,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": False,
        }
        if tools:
            payload["tools"] = openai_tools(tools)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        return f"{self._base_url}/chat/completions", headers, payload

    async def generate(
        self,
        *,
        model: str,
        system_prompt: str,
        history: Sequence[Dict[str, str]],
        message: str,
        tools: Sequence[Dict[str, Any]] = (),
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> ModelResponse:
        url, headers, payload = self.build_request(
            model=model,
            system_prompt=system_prompt,
            history=history,
            message=message,
            tools=tools,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        parse = parse_anthropic_response if ModelRouter.is_claude_model(model) else parse_openai_response

        if self._session:
            data = await robust_json_request(self._session, "POST", url, headers=headers, json_data=payload)
            return parse(data)
        async with aiohttp.ClientSession() as session:
            data = await robust_json_request(session, "POST", url, headers=headers, json_data=payload)
            return parse(data)
