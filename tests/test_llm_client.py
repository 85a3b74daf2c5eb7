import pytest
import asyncio
import aiohttp
from unittest.mock import MagicMock, AsyncMock
from mina_ai.utils.llm_client import (
    LLMClient,
    RetryBudgetExceededError,
    TransientHTTPError,
    parse_anthropic_response,
    parse_openai_response,
    robust_json_request,
)

TOOLS = [
    {
        "name": "recall_memories",
        "description": "Search memories",
        "parameters": {"type": "OBJECT", "properties": {"query": {"type": "STRING"}}, "required": ["query"]},
    }
]
HISTORY = [{"role": "user", "text": "hi"}, {"role": "model", "text": "hello!"}]


class MockTime:
    def __init__(self):
        self.current = 0.0

    def monotonic(self):
        return self.current

    def advance(self, seconds):
        self.current += seconds


def _session_returning(response):
    session = MagicMock(spec=aiohttp.ClientSession)
    request_ctx = AsyncMock()
    session.request.return_value = request_ctx
    request_ctx.__aenter__.return_value = response
    return session


@pytest.mark.asyncio
async def test_robust_json_request_budget_exceeded():
    mock_time = MockTime()

    async def mock_sleep(seconds):
        mock_time.advance(seconds)

    response = AsyncMock()
    response.status = 500
    response.headers = {}
    session = _session_returning(response)

    with pytest.raises(TransientHTTPError, match="Transient status 500"):
        await robust_json_request(
            session, "POST", "http://test",
            total_retry_budget=30.0,
            max_attempts=3,
            _sleep_func=mock_sleep,
            _time_func=mock_time.monotonic
        )

    assert session.request.call_count == 3
    assert mock_time.current > 0


@pytest.mark.asyncio
async def test_robust_json_request_retry_after_exceeds_budget():
    mock_time = MockTime()
    mock_sleep = AsyncMock()

    response = AsyncMock()
    response.status = 429
    # Retry-After 40s > Budget 30s
    response.headers = {"Retry-After": "40"}
    session = _session_returning(response)

    with pytest.raises(RetryBudgetExceededError, match="exceeds budget"):
        await robust_json_request(
            session, "POST", "http://test",
            total_retry_budget=30.0,
            _sleep_func=mock_sleep,
            _time_func=mock_time.monotonic
        )
    mock_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_robust_json_request_client_error_non_retryable():
    response = AsyncMock()
    response.status = 401
    response.headers = {}
    response.text.return_value = "bad key"
    session = _session_returning(response)

    with pytest.raises(RuntimeError, match="Non-retryable status 401"):
        await robust_json_request(session, "POST", "http://test", _sleep_func=AsyncMock())
    assert session.request.call_count == 1


@pytest.mark.asyncio
async def test_robust_json_request_cancelled_error():
    session = MagicMock(spec=aiohttp.ClientSession)
    request_ctx = AsyncMock()
    session.request.return_value = request_ctx
    request_ctx.__aenter__.side_effect = asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await robust_json_request(session, "POST", "http://test", _sleep_func=AsyncMock())


@pytest.mark.asyncio
async def test_robust_json_request_success():
    response = AsyncMock()
    response.status = 200
    response.json.return_value = {"ok": True}
    session = _session_returning(response)

    result = await robust_json_request(session, "POST", "http://test", _sleep_func=AsyncMock())
    assert result == {"ok": True}


def test_openai_request_shape():
    client = LLMClient("http://llm/v1/", "sk-test")
    url, headers, payload = client.build_request(
        model="gemini-3-flash-preview",
        system_prompt="be nice",
        history=HISTORY,
        message="what do you know about me?",
        tools=TOOLS,
        max_tokens=256,
        temperature=0.5,
    )
    assert url == "http://llm/v1/chat/completions"
    assert headers["Authorization"] == "Bearer sk-test"
    assert [m["role"] for m in payload["messages"]] == ["system", "user", "assistant", "user"]
    assert payload["messages"][-1]["content"] == "what do you know about me?"
    fn = payload["tools"][0]["function"]
    assert fn["name"] == "recall_memories"
    assert fn["parameters"]["type"] == "object"
    assert fn["parameters"]["properties"]["query"]["type"] == "string"
    # Declarations are not mutated by the conversion.
    assert TOOLS[0]["parameters"]["type"] == "OBJECT"


def test_claude_request_shape():
    client = LLMClient("http://llm/v1", "sk-test", anthropic_base_url="https://api.anthropic.com/v1", anthropic_api_key="ak")
    url, headers, payload = client.build_request(
        model="Claude-3-5-Sonnet",
        system_prompt="be nice",
        history=HISTORY,
        message="hey",
        tools=TOOLS,
        temperature=1.5,
    )
    assert url == "https://api.anthropic.com/v1/messages"
    assert headers["x-api-key"] == "ak"
    assert headers["anthropic-version"] == "2023-06-01"
    assert payload["system"] == "be nice"
    assert payload["temperature"] == 1.0
    assert [m["role"] for m in payload["messages"]] == ["user", "assistant", "user"]
    assert payload["tools"][0]["input_schema"]["type"] == "object"


def test_no_tools_key_without_tools():
    _, _, payload = LLMClient("http://llm", "k").build_request(
        model="gpt-4o", system_prompt="s", history=[], message="m"
    )
    assert "tools" not in payload


def test_parse_openai_response_with_tool_calls():
    data = {
        "choices": [
            {
                "message": {
                    "content": None,
                    "tool_calls": [
                        {"id": "call_1", "function": {"name": "recall_memories", "arguments": '{"query": "dogs"}'}},
                        {"id": "call_2", "function": {"name": "remember_fact", "arguments": "not json"}},
                    ],
                }
            }
        ]
    }
    res = parse_openai_response(data)
    assert res.text == ""
    assert [(c.name, c.args, c.call_id) for c in res.function_calls] == [
        ("recall_memories", {"query": "dogs"}, "call_1"),
        ("remember_fact", {}, "call_2"),
    ]


def test_parse_anthropic_response():
    data = {
        "content": [
            {"type": "text", "text": "Let me check. "},
            {"type": "tool_use", "id": "tu_1", "name": "recall_memories", "input": {"query": "tea"}},
        ]
    }
    res = parse_anthropic_response(data)
    assert res.text == "Let me check. "
    assert res.function_calls[0].args == {"query": "tea"}


def test_unexpected_shapes_raise():
    with pytest.raises(RuntimeError, match="unexpected shape"):
        parse_openai_response({"error": "nope"})
    with pytest.raises(RuntimeError, match="unexpected shape"):
        parse_anthropic_response({"content": "nope"})


@pytest.mark.asyncio
async def test_generate_uses_shared_session():
    response = AsyncMock()
    response.status = 200
    response.json.return_value = {"choices": [{"message": {"content": "hi there"}}]}
    session = _session_returning(response)

    client = LLMClient("http://llm/v1", "k", session=session)
    res = await client.generate(model="gpt-4o", system_prompt="s", history=[], message="hello")
    assert res.text == "hi there"
    assert res.function_calls == []
    method, url = session.request.call_args.args
    assert (method, url) == ("POST", "http://llm/v1/chat/completions")
