"""Timeout configuration.

No request-cancelling middleware: a started tool side effect runs to
completion and is audited even if the client goes away.
"""

import os

LLM_CALL_TIMEOUT = float(os.getenv("LLM_CALL_TIMEOUT", "60"))  # per model round-trip
TOOL_EXECUTION_TIMEOUT = float(os.getenv("TOOL_EXECUTION_TIMEOUT", "30"))  # per tool invocation
CONTEXT_GATHER_TIMEOUT = float(os.getenv("CONTEXT_GATHER_TIMEOUT", "5"))  # whole snapshot
OUTBOUND_HTTP_TIMEOUT = float(os.getenv("OUTBOUND_HTTP_TIMEOUT", "15"))  # email, webhook, Meta
MAX_REQUEST_SIZE = 1024 * 1024  # 1MB
