"""Tests for the model gateway adapter."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from admin_assistant.adapters.llm_gateway import LLMGatewayClient, ModelReply, build_openai_tools, parse_tool_calls
from admin_assistant.infra import error_handler
from admin_assistant.infra.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from admin_assistant.infra.config import config
from admin_assistant.infra.metrics import circuit_breaker_state
from admin_assistant.infra.error_handler import (
    ModelRateLimitedError,
    ModelUnavailableError,
    QuotaExhaustedError,
    UpstreamModelError,
)
from admin_assistant.models.tool import ToolInvocation
from admin_assistant.services import tool_registry


class GatewayStatusError(Exception):
    """Mimics an SDK status error: status_code plus response headers."""

    def __init__(self, status_code, headers=None):
        self.status_code = status_code
        self.response = SimpleNamespace(headers=headers or {})
        super().__init__(f"Error code: {status_code}")


def fake_client(*outcomes):
    create = AsyncMock(side_effect=list(outcomes))
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create))), create


def completion(content=None, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    usage = SimpleNamespace(prompt_tokens=10, completion_tokens=5)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=usage)


def raw_call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


class TestParseToolCalls:
    """Decoding of SDK tool calls."""

    def test_valid_arguments(self):
        calls = parse_tool_calls([raw_call("c1", "list_contacts", '{"limit": 5}')])

        assert calls == [ToolInvocation(call_id="c1", name="list_contacts", arguments={"limit": 5})]

    def test_malformed_arguments_are_flagged(self):
        calls = parse_tool_calls([
            raw_call("c1", "list_contacts", "{broken"),
            raw_call("c2", "list_contacts", "[1, 2]"),
        ])

        assert calls[0].malformed_arguments == "{broken"
        assert calls[1].malformed_arguments == "[1, 2]"
        assert calls[0].arguments == {}

    def test_missing_id_gets_positional_id(self):
        calls = parse_tool_calls([raw_call(None, "get_system_stats", None)])

        assert calls[0].call_id == "call_0"
        assert calls[0].arguments == {}


class TestMessageShapes:
    """Request and echo formats."""

    def test_openai_tools_from_declarations(self):
        tools = build_openai_tools(tool_registry.list_tools()[:1])

        assert tools[0]["type"] == "function"
        assert tools[0]["function"]["name"] == "list_conversations"
        assert tools[0]["function"]["parameters"]["type"] == "object"

    def test_assistant_message_echoes_malformed_arguments_verbatim(self):
        reply = ModelReply(
            content=None,
            tool_calls=[
                ToolInvocation(call_id="a", name="list_contacts", arguments={"limit": 1}),
                ToolInvocation(call_id="b", name="list_contacts", malformed_arguments="{oops"),
            ],
        )

        message = reply.to_assistant_message()

        assert message["role"] == "assistant"
        assert message["content"] is None
        assert json.loads(message["tool_calls"][0]["function"]["arguments"]) == {"limit": 1}
        assert message["tool_calls"][1]["function"]["arguments"] == "{oops"


class TestComplete:
    """Round-trips and error mapping."""

    @pytest.mark.asyncio
    async def test_decision_offers_tools_and_decodes_reply(self):
        client, create = fake_client(completion(tool_calls=[raw_call("c1", "get_system_stats", "{}")]))
        gateway = LLMGatewayClient(client=client, model="test-model")

        reply = await gateway.complete([{"role": "user", "content": "stats"}], tools=tool_registry.list_tools())

        assert reply.tool_calls[0].name == "get_system_stats"
        kwargs = create.await_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["tool_choice"] == "auto"
        assert len(kwargs["tools"]) == len(tool_registry.list_tools())

    @pytest.mark.asyncio
    async def test_summary_sends_no_tools(self):
        client, create = fake_client(completion(content="Done."))

        reply = await LLMGatewayClient(client=client).complete([], tools=None, max_tokens=300, phase="summary")

        assert reply.content == "Done."
        assert "tools" not in create.await_args.kwargs
        assert create.await_args.kwargs["max_tokens"] == 300

    @pytest.mark.asyncio
    async def test_empty_choices(self):
        client, _ = fake_client(SimpleNamespace(choices=[], usage=None))

        reply = await LLMGatewayClient(client=client).complete([])

        assert reply == ModelReply(content=None)

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        client, create = fake_client(GatewayStatusError(429, {"retry-after": "7"}))

        with pytest.raises(ModelRateLimitedError) as exc:
            await LLMGatewayClient(client=client, max_retries=2).complete([])

        assert exc.value.status_code == 429
        assert exc.value.retry_after == 7.0
        assert create.await_count == 1

    @pytest.mark.asyncio
    async def test_quota_exhausted(self):
        client, _ = fake_client(GatewayStatusError(402))

        with pytest.raises(QuotaExhaustedError) as exc:
            await LLMGatewayClient(client=client).complete([])

        assert exc.value.status_code == 402

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        client, create = fake_client(GatewayStatusError(400))

        with pytest.raises(UpstreamModelError) as exc:
            await LLMGatewayClient(client=client, max_retries=2).complete([])

        assert exc.value.status_code == 502
        assert create.await_count == 1

    @pytest.mark.asyncio
    async def test_server_error_is_retried_then_unavailable(self):
        client, create = fake_client(GatewayStatusError(503), GatewayStatusError(500))

        with patch.object(error_handler.asyncio, "sleep", AsyncMock()):
            with pytest.raises(ModelUnavailableError):
                await LLMGatewayClient(client=client, max_retries=1).complete([])

        assert create.await_count == 2

    @pytest.mark.asyncio
    async def test_network_error_recovers_on_retry(self):
        client, create = fake_client(ConnectionError("connection reset"), completion(content="ok"))

        with patch.object(error_handler.asyncio, "sleep", AsyncMock()):
            reply = await LLMGatewayClient(client=client, max_retries=1).complete([])

        assert reply.content == "ok"
        assert create.await_count == 2

    @pytest.mark.asyncio
    async def test_open_circuit_is_unavailable(self):
        breaker = CircuitBreaker(name="test", failure_threshold=1, recovery_timeout=60)
        client, create = fake_client(GatewayStatusError(500))
        gateway = LLMGatewayClient(client=client, circuit_breaker=breaker, max_retries=0)

        with pytest.raises(ModelUnavailableError):
            await gateway.complete([])
        with pytest.raises(ModelUnavailableError):
            await gateway.complete([])

        assert create.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        with patch.object(config, "LLM_API_KEY", None):
            gateway = LLMGatewayClient()

            with pytest.raises(ModelUnavailableError) as exc:
                await gateway.complete([])

        assert exc.value.message == "AI gateway not configured"


class TestCircuitBreaker:
    """Breaker state transitions."""

    @pytest.mark.asyncio
    async def test_opens_then_recovers(self):
        breaker = CircuitBreaker(name="breaker-test", failure_threshold=2, recovery_timeout=0)
        failing = AsyncMock(side_effect=ConnectionError("down"))
        healthy = AsyncMock(return_value="ok")

        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call_async(failing)
        assert breaker.state == CircuitState.OPEN
        assert circuit_breaker_state.labels(service="breaker-test")._value.get() == 2

        assert await breaker.call_async(healthy) == "ok"
        assert breaker.state == CircuitState.HALF_OPEN
        assert await breaker.call_async(healthy) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert circuit_breaker_state.labels(service="breaker-test")._value.get() == 0

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_calling(self):
        breaker = CircuitBreaker(name="breaker-open", failure_threshold=1, recovery_timeout=60)
        failing = AsyncMock(side_effect=ConnectionError("down"))

        with pytest.raises(ConnectionError):
            await breaker.call_async(failing)
        with pytest.raises(CircuitOpenError):
            await breaker.call_async(failing)

        assert failing.await_count == 1
