"""FastAPI admin assistant application."""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from admin_assistant.infra.error_handler import AssistantError, ModelRateLimitedError
from admin_assistant.infra.logging import app_logger
from admin_assistant.infra.middleware import RequestContextMiddleware, setup_cors
from admin_assistant.infra.timeout import MAX_REQUEST_SIZE


def build_orchestrator():
    """Wire the orchestrator with its default collaborators."""
    from admin_assistant.adapters.llm_gateway import LLMGatewayClient
    from admin_assistant.services.orchestrator import AssistantOrchestrator

    return AssistantOrchestrator(llm=LLMGatewayClient())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    # Startup
    app_logger.info("Application starting up")
    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = build_orchestrator()

    yield

    # Shutdown
    app_logger.info("Application shutting down")
    await app.state.orchestrator.llm.close()

    # Close database connections
    from admin_assistant.infra.database import engine
    engine.dispose()


app = FastAPI(
    title="Admin Assistant API",
    description="""
    Conversational back-office assistant. An administrator's natural-language
    request is turned into tool calls (contacts, conversations, email,
    campaigns, AI behavior, automation, social publishing) which are executed,
    audited and summarized.

    ## Authentication

    Every assistant endpoint requires `Authorization: Bearer <token>` for a
    user with the `admin` role.

    ## Destructive actions

    With `DESTRUCTIVE_ACTION_MODE=confirm` destructive tools are returned in
    `pendingActions` and run only when the request is re-sent with
    `confirmAction`.
    """,
    version="1.0.0",
    lifespan=lifespan,
    tags_metadata=[
        {
            "name": "Assistant",
            "description": "Run assistant turns and inspect the tool catalog",
        },
        {
            "name": "Health",
            "description": "Health check and monitoring endpoints",
        },
    ],
)

# Setup middleware
app.add_middleware(RequestContextMiddleware)
setup_cors(app)

# Import and register routers
from admin_assistant.api.routers import assistant, health  # noqa: E402

app.include_router(assistant.router)
app.include_router(health.router)


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


@app.middleware("http")
async def request_size_limit_middleware(request: Request, call_next):
    """Enforce request size limits."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_REQUEST_SIZE:
        return error_response(413, f"Request too large. Maximum size: {MAX_REQUEST_SIZE} bytes")
    return await call_next(request)


# Error handlers
@app.exception_handler(AssistantError)
async def assistant_exception_handler(request: Request, exc: AssistantError):
    """Render request-level failures with their public message."""
    app_logger.warning(
        f"Request failed: {exc.message}",
        extra={"status_code": exc.status_code, "error_type": type(exc).__name__},
    )
    response = error_response(exc.status_code, exc.message)
    if isinstance(exc, ModelRateLimitedError) and exc.retry_after:
        response.headers["Retry-After"] = str(int(exc.retry_after))
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
        for error in exc.errors()
    )
    return error_response(400, f"Invalid request: {problems}")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    error_id = str(uuid.uuid4())
    app_logger.error(f"Unhandled exception: {type(exc).__name__}", exc_info=True, extra={"error_id": error_id})
    return error_response(500, f"Internal server error. Error ID: {error_id}", error_id=error_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )
