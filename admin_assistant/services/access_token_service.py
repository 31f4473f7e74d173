"""Administrator access tokens: generation, hashing and verification."""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import bcrypt
import sqlalchemy as sa

from admin_assistant.infra.database import get_db_session
from admin_assistant.infra.schema import admin_access_tokens, new_id, user_roles

logger = logging.getLogger(__name__)

TOKEN_PREFIX_LENGTH = 8
ADMIN_ROLE = "admin"


def generate_token() -> str:
    """
    Generate a secure random access token.

    Returns:
        A URL-safe token string (64 characters)
    """
    return secrets.token_urlsafe(48)


def hash_token(token: str, rounds: int = 12) -> str:
    """
    Hash an access token using bcrypt.

    Args:
        token: Plain text token
        rounds: bcrypt cost factor

    Returns:
        Bcrypt hash
    """
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(token.encode("utf-8"), salt).decode("utf-8")


def verify_token(token: str, token_hash: str) -> bool:
    """Check a plain token against its bcrypt hash; malformed hashes never match."""
    try:
        return bcrypt.checkpw(token.encode("utf-8"), token_hash.encode("utf-8"))
    except ValueError:
        return False


def get_token_prefix(token: str) -> str:
    return token[:TOKEN_PREFIX_LENGTH]


def create_access_token(
    user_id: str,
    name: Optional[str] = None,
    expires_in_days: Optional[int] = None,
    rounds: int = 12,
) -> Dict[str, Any]:
    """
    Issue a token for a user.

    Args:
        user_id: User the token authenticates as
        name: Human-readable label
        expires_in_days: None for no expiry
        rounds: bcrypt cost factor

    Returns:
        Dict with the plain ``token`` (only returned here), ``token_id``,
        ``token_prefix`` and ``expires_at``
    """
    token = generate_token()
    token_id = new_id()
    now = datetime.utcnow()
    expires_at = now + timedelta(days=expires_in_days) if expires_in_days else None

    with get_db_session() as session:
        session.execute(
            sa.insert(admin_access_tokens).values(
                id=token_id,
                user_id=user_id,
                token_prefix=get_token_prefix(token),
                token_hash=hash_token(token, rounds=rounds),
                name=name,
                is_active=True,
                expires_at=expires_at,
                created_at=now,
            )
        )

    return {
        "token": token,
        "token_id": token_id,
        "token_prefix": get_token_prefix(token),
        "expires_at": expires_at.isoformat() if expires_at else None,
    }


def verify_and_get_user_id(token: str) -> Optional[str]:
    """
    Resolve a bearer token to its user id.

    Candidates are looked up by prefix, then checked with bcrypt. Inactive and
    expired tokens never match. A successful match updates ``last_used_at``.

    Returns:
        User id, or None if the token is not valid
    """
    if not token or len(token) < TOKEN_PREFIX_LENGTH:
        return None

    now = datetime.utcnow()
    with get_db_session() as session:
        candidates = session.execute(
            sa.select(admin_access_tokens.c.id, admin_access_tokens.c.user_id, admin_access_tokens.c.token_hash)
            .where(admin_access_tokens.c.token_prefix == get_token_prefix(token))
            .where(admin_access_tokens.c.is_active.is_(True))
            .where(sa.or_(admin_access_tokens.c.expires_at.is_(None), admin_access_tokens.c.expires_at > now))
        ).all()

        for candidate in candidates:
            if verify_token(token, candidate.token_hash):
                session.execute(
                    sa.update(admin_access_tokens)
                    .where(admin_access_tokens.c.id == candidate.id)
                    .values(last_used_at=now)
                )
                return candidate.user_id
    return None


def is_admin(user_id: str) -> bool:
    with get_db_session() as session:
        row = session.execute(
            sa.select(user_roles.c.id)
            .where(user_roles.c.user_id == user_id)
            .where(user_roles.c.role == ADMIN_ROLE)
        ).first()
    return row is not None


def revoke_token(token_id: str) -> bool:
    with get_db_session() as session:
        result = session.execute(
            sa.update(admin_access_tokens)
            .where(admin_access_tokens.c.id == token_id)
            .values(is_active=False)
        )
    return result.rowcount > 0


def grant_admin_role(user_id: str) -> bool:
    """
    Give a user the admin role.

    Returns:
        True if a role row was inserted, False if the user was already an admin
    """
    if is_admin(user_id):
        return False
    with get_db_session() as session:
        session.execute(sa.insert(user_roles).values(id=new_id(), user_id=user_id, role=ADMIN_ROLE))
    logger.info("Admin role granted", extra={"user_id": user_id})
    return True
