"""Prometheus metrics export."""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Request metrics
assistant_requests_total = Counter(
    "assistant_requests_total",
    "Total assistant requests by outcome",
    ["context", "outcome"],  # outcome: completed | rejected | failed | duplicate
)

assistant_request_duration = Histogram(
    "assistant_request_duration_seconds",
    "Assistant request duration in seconds",
    ["context"],
)

# LLM metrics
llm_calls_total = Counter(
    "llm_calls_total",
    "Total LLM API calls",
    ["model", "phase", "status"],  # phase: decision | summary
)

llm_call_duration = Histogram(
    "llm_call_duration_seconds",
    "LLM API call duration in seconds",
    ["model", "phase"],
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Total LLM tokens",
    ["model", "type"],  # type: prompt or completion
)

# Tool metrics
tool_calls_total = Counter(
    "tool_calls_total",
    "Total tool calls",
    ["tool_name", "status"],  # status: success | failure | rejected | timeout | pending
)

tool_call_duration = Histogram(
    "tool_call_duration_seconds",
    "Tool call duration in seconds",
    ["tool_name"],
)

pending_actions_total = Counter(
    "pending_actions_total",
    "Destructive actions parked for confirmation, by resolution",
    ["tool_name", "status"],  # status: pending | confirmed | cancelled | expired
)

# Operational channel
audit_write_failures_total = Counter(
    "audit_write_failures_total",
    "Audit log inserts that failed",
    ["action"],
)

context_query_failures_total = Counter(
    "context_query_failures_total",
    "Business context sub-queries that failed or timed out",
    ["domain", "reason"],
)

# Circuit breaker metrics
circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["service"],
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
