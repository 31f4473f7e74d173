"""Bearer authentication and the administrator gate."""

import logging
from typing import Optional

from fastapi import Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from admin_assistant.infra.error_handler import AuthenticationError, AuthorizationError
from admin_assistant.services import access_token_service

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> Optional[str]:
    """
    Extract the bearer token without rejecting the request.

    Rejection happens in the orchestrator's authentication step so it is
    logged and counted with the rest of the request.
    """
    if credentials is None or not credentials.credentials:
        return None
    return credentials.credentials


def authenticate_admin(token: Optional[str]) -> str:
    """
    Resolve a bearer token to an administrator id.

    Args:
        token: Raw bearer token, or None if the header was missing

    Returns:
        The administrator's user id

    Raises:
        AuthenticationError: Missing, unknown, inactive or expired token
        AuthorizationError: Valid user without the admin role
    """
    if not token:
        raise AuthenticationError()

    user_id = access_token_service.verify_and_get_user_id(token)
    if user_id is None:
        logger.warning("Rejected bearer token", extra={"token_prefix": access_token_service.get_token_prefix(token)})
        raise AuthenticationError("Invalid session")

    if not access_token_service.is_admin(user_id):
        logger.warning("Non-admin user denied", extra={"user_id": user_id})
        raise AuthorizationError()
    return user_id
