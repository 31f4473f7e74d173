"""OpenAI-compatible chat completions gateway adapter with function calling."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from openai import AsyncOpenAI

from admin_assistant.infra.config import config
from admin_assistant.infra.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from admin_assistant.infra.error_handler import (
    APIError,
    AuthError,
    ModelRateLimitedError,
    ModelUnavailableError,
    NetworkError,
    QuotaError,
    QuotaExhaustedError,
    RateLimitError,
    UpstreamModelError,
    retry_with_backoff,
    wrap_llm_error,
)
from admin_assistant.infra.metrics import (
    circuit_breaker_state,
    llm_call_duration,
    llm_calls_total,
    llm_tokens_total,
)
from admin_assistant.infra.timeout import LLM_CALL_TIMEOUT
from admin_assistant.models.tool import ToolDeclaration, ToolInvocation

logger = logging.getLogger(__name__)

PROVIDER = "llm_gateway"
_STATE_GAUGE = {CircuitState.CLOSED: 0, CircuitState.HALF_OPEN: 1, CircuitState.OPEN: 2}


@dataclass
class ModelReply:
    """Decoded assistant turn: text and/or tool invocations."""
    content: Optional[str]
    tool_calls: List[ToolInvocation] = field(default_factory=list)

    def to_assistant_message(self) -> Dict[str, Any]:
        """Assistant message echoed back to the model before the tool results."""
        message: Dict[str, Any] = {"role": "assistant", "content": self.content or None}
        if self.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.call_id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": call.malformed_arguments
                        if call.malformed_arguments is not None
                        else json.dumps(call.arguments),
                    },
                }
                for call in self.tool_calls
            ]
        return message


def build_openai_tools(tools: List[ToolDeclaration]) -> List[Dict[str, Any]]:
    """
    Convert tool declarations to the OpenAI function tool schema.

    Args:
        tools: Declarations from the registry

    Returns:
        List of tool dicts in OpenAI format
    """
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name.value,
                "description": tool.description,
                "parameters": tool.parameters_schema or {"type": "object", "properties": {}},
            },
        }
        for tool in tools
    ]


def parse_tool_calls(raw_tool_calls: Any) -> List[ToolInvocation]:
    """Decode SDK tool calls; arguments that are not a JSON object are flagged, not dropped."""
    invocations = []
    for index, tc in enumerate(raw_tool_calls or []):
        function = getattr(tc, "function", None)
        name = getattr(function, "name", None) or ""
        raw_args = getattr(function, "arguments", None) or "{}"
        call_id = getattr(tc, "id", None) or f"call_{index}"

        try:
            args = json.loads(raw_args) if isinstance(raw_args, str) else raw_args
        except json.JSONDecodeError:
            args = None

        if isinstance(args, dict):
            invocations.append(ToolInvocation(call_id=call_id, name=name, arguments=args))
        else:
            invocations.append(ToolInvocation(
                call_id=call_id,
                name=name,
                malformed_arguments=raw_args if isinstance(raw_args, str) else json.dumps(raw_args),
            ))
    return invocations


class LLMGatewayClient:
    """Client for the chat completions gateway used for both model round-trips."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[Any] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        max_retries: Optional[int] = None,
    ):
        self.api_key = api_key or config.LLM_API_KEY
        self.base_url = base_url or config.LLM_BASE_URL
        self.model = model or config.LLM_MODEL
        self.max_retries = config.LLM_MAX_RETRIES if max_retries is None else max_retries
        self._client = client
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            name=PROVIDER,
            failure_threshold=5,
            recovery_timeout=60,
            expected_exception=(NetworkError, APIError),
        )

    @property
    def client(self):
        """Lazy initialization of the SDK client."""
        if self._client is None:
            if not self.api_key:
                raise ModelUnavailableError("AI gateway not configured")
            # Retries are handled here, not by the SDK
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, max_retries=0)
        return self._client

    async def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[ToolDeclaration]] = None,
        max_tokens: Optional[int] = None,
        phase: str = "decision",
    ) -> ModelReply:
        """
        Run one chat completion.

        Args:
            messages: Chat messages (system, history, user, tool results)
            tools: Declarations to offer; None for the summary round-trip
            max_tokens: Completion budget
            phase: "decision" or "summary", for metrics and logs

        Returns:
            ModelReply with content and decoded tool calls

        Raises:
            ModelRateLimitedError: Gateway returned 429
            QuotaExhaustedError: Gateway credits exhausted (402)
            ModelUnavailableError: Circuit open, network failure or 5xx after retries
            UpstreamModelError: Any other gateway rejection
        """
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens or config.LLM_MAX_TOKENS,
        }
        if tools:
            kwargs["tools"] = build_openai_tools(tools)
            kwargs["tool_choice"] = "auto"

        async def call_llm():
            try:
                return await asyncio.wait_for(
                    self.client.chat.completions.create(**kwargs),
                    timeout=LLM_CALL_TIMEOUT,
                )
            except UpstreamModelError:
                raise
            except Exception as e:
                raise wrap_llm_error(e, PROVIDER)

        async def call_llm_with_circuit_breaker():
            try:
                return await self.circuit_breaker.call_async(call_llm)
            finally:
                circuit_breaker_state.labels(service=PROVIDER).set(_STATE_GAUGE[self.circuit_breaker.state])

        def on_retry(e: Exception, attempt: int) -> None:
            logger.warning(
                f"Retrying model call after error: {e}",
                extra={"phase": phase, "attempt": attempt},
            )

        start_time = time.time()
        try:
            response = await retry_with_backoff(
                call_llm_with_circuit_breaker,
                max_retries=self.max_retries,
                initial_delay=1.0,
                max_delay=10.0,
                on_retry=on_retry,
            )
        except CircuitOpenError as e:
            llm_calls_total.labels(model=self.model, phase=phase, status="circuit_open").inc()
            logger.error(f"Model call rejected: {e}", extra={"phase": phase})
            raise ModelUnavailableError()
        except RateLimitError as e:
            llm_calls_total.labels(model=self.model, phase=phase, status="rate_limited").inc()
            raise ModelRateLimitedError(retry_after=e.retry_after)
        except QuotaError:
            llm_calls_total.labels(model=self.model, phase=phase, status="quota_exhausted").inc()
            raise QuotaExhaustedError()
        except (NetworkError, APIError, AuthError) as e:
            llm_calls_total.labels(model=self.model, phase=phase, status="failure").inc()
            logger.error(f"Model call failed: {e}", extra={"phase": phase, "category": e.category.value})
            if isinstance(e, AuthError) or (isinstance(e, APIError) and not e.retryable):
                raise UpstreamModelError()
            raise ModelUnavailableError()

        latency = time.time() - start_time
        llm_calls_total.labels(model=self.model, phase=phase, status="success").inc()
        llm_call_duration.labels(model=self.model, phase=phase).observe(latency)

        usage = getattr(response, "usage", None)
        if usage is not None:
            llm_tokens_total.labels(model=self.model, type="prompt").inc(getattr(usage, "prompt_tokens", 0) or 0)
            llm_tokens_total.labels(model=self.model, type="completion").inc(getattr(usage, "completion_tokens", 0) or 0)

        choices = getattr(response, "choices", None) or []
        if not choices:
            return ModelReply(content=None)
        message = choices[0].message
        return ModelReply(
            content=getattr(message, "content", None),
            tool_calls=parse_tool_calls(getattr(message, "tool_calls", None)),
        )
