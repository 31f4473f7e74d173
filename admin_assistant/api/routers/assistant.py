"""Admin assistant API router."""

import asyncio
from typing import Optional
from fastapi import APIRouter, Depends, Request, Security

from admin_assistant.api.models import (
    AssistantRequest,
    AssistantResponse,
    ErrorResponse,
    ToolCatalogEntry,
    ToolCatalogResponse,
)
from admin_assistant.infra.auth import get_bearer_token
from admin_assistant.infra.config import config
from admin_assistant.services import tool_registry
from admin_assistant.services.orchestrator import AssistantOrchestrator

router = APIRouter()

ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing or invalid bearer token"},
    403: {"model": ErrorResponse, "description": "Caller is not an administrator"},
    409: {"model": ErrorResponse, "description": "Duplicate request or unusable pending action"},
    429: {"model": ErrorResponse, "description": "Model gateway rate limit"},
    402: {"model": ErrorResponse, "description": "Model gateway credits exhausted"},
}


def get_orchestrator(request: Request) -> AssistantOrchestrator:
    return request.app.state.orchestrator


@router.post(
    "/admin/assistant",
    tags=["Assistant"],
    response_model=AssistantResponse,
    responses=ERROR_RESPONSES,
)
async def run_assistant(
    body: AssistantRequest,
    token: Optional[str] = Security(get_bearer_token),
    orchestrator: AssistantOrchestrator = Depends(get_orchestrator),
):
    """
    Run one assistant turn.

    Requires a bearer token belonging to an administrator.

    The model may pick zero or more tools; each one is validated, executed
    (or parked for confirmation when destructive) and audited, then the
    results are summarized in `response`.

    **Example Request:**
    ```json
    {
        "message": "delete the conversation with id C1",
        "context": "chat_support",
        "conversationHistory": []
    }
    ```

    **Confirming a pending action:**
    ```json
    {
        "message": "",
        "context": "chat_support",
        "confirmAction": {"actionId": "uuid", "confirmed": true}
    }
    ```
    """
    reply = await orchestrator.handle(token, body.to_turn())
    return AssistantResponse.from_reply(reply)


@router.get(
    "/admin/assistant/tools",
    tags=["Assistant"],
    response_model=ToolCatalogResponse,
    responses={401: ERROR_RESPONSES[401], 403: ERROR_RESPONSES[403]},
)
async def list_assistant_tools(
    token: Optional[str] = Security(get_bearer_token),
    orchestrator: AssistantOrchestrator = Depends(get_orchestrator),
):
    """List the tool catalog offered to the model. Administrators only."""
    await asyncio.to_thread(orchestrator.authenticator, token)
    items = [ToolCatalogEntry.from_declaration(d) for d in tool_registry.list_tools()]
    return ToolCatalogResponse(
        items=items,
        count=len(items),
        destructive_action_mode=config.DESTRUCTIVE_ACTION_MODE,
    )
