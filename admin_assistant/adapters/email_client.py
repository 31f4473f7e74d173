"""Resend email adapter."""

import logging
from typing import List, Optional, Dict, Any
import httpx

from admin_assistant.infra.config import config
from admin_assistant.infra.error_handler import IntegrationNotConfigured, ToolExecutionError
from admin_assistant.infra.timeout import OUTBOUND_HTTP_TIMEOUT

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


def _decode_body(response: httpx.Response) -> Dict[str, Any]:
    """JSON object body, or {} for empty, non-JSON (proxy error pages) or non-object bodies."""
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def format_sender(from_name: Optional[str] = None) -> str:
    return f"{from_name or config.EMAIL_FROM_NAME} <{config.EMAIL_FROM_ADDRESS}>"


async def send_email(
    to: List[str],
    subject: str,
    html: str,
    from_name: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Send one email through Resend.

    Args:
        to: Recipient addresses
        subject: Subject line
        html: HTML body
        from_name: Display name for the sender

    Returns:
        Resend response body (contains the message ``id``)

    Raises:
        IntegrationNotConfigured: If RESEND_API_KEY is missing
        ToolExecutionError: If Resend rejects the message or is unreachable
    """
    if not config.RESEND_API_KEY:
        raise IntegrationNotConfigured("email")

    payload = {
        "from": format_sender(from_name),
        "to": to,
        "subject": subject,
        "html": html,
    }
    headers = {"Authorization": f"Bearer {config.RESEND_API_KEY}"}

    async with httpx.AsyncClient(timeout=OUTBOUND_HTTP_TIMEOUT) as client:
        try:
            response = await client.post(RESEND_API_URL, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Resend request failed: {e}")
            raise ToolExecutionError("email provider unreachable")

    body = _decode_body(response)
    if response.status_code >= 400:
        message = body.get("message") or f"status {response.status_code}"
        raise ToolExecutionError(f"email rejected: {message}")
    return body
