"""Pytest configuration and fixtures."""

import copy
import os
import tempfile

# Must be set before any admin_assistant import: the engine and config read it at import time
_db_dir = tempfile.mkdtemp(prefix="admin_assistant_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
for _key in (
    "LLM_API_KEY",
    "RESEND_API_KEY",
    "META_SYSTEM_USER_TOKEN",
    "FACEBOOK_PAGE_ID",
    "INSTAGRAM_ACCOUNT_ID",
    "WHATSAPP_PHONE_NUMBER_ID",
):
    os.environ.pop(_key, None)

from datetime import datetime
from typing import Any, Dict, List, Optional
from unittest.mock import patch

import pytest
import sqlalchemy as sa

from admin_assistant.adapters.llm_gateway import ModelReply
from admin_assistant.infra.database import engine, get_db_session
from admin_assistant.infra.schema import admin_audit_log, metadata, new_id
from admin_assistant.models.tool import ToolInvocation

ADMIN_ID = "00000000-0000-0000-0000-00000000a001"


class WordEncoding:
    """Stand-in tokenizer: one token per whitespace-separated word."""

    def encode(self, text: str) -> List[str]:
        return text.split()


class ScriptedLLM:
    """
    Fake model gateway that replays scripted replies.

    Each entry is a ModelReply or an exception to raise. Every call is
    recorded with a copy of the messages it received.
    """

    def __init__(self, replies: List[Any]):
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def complete(self, messages, tools=None, max_tokens=None, phase="decision") -> ModelReply:
        self.calls.append({
            "messages": copy.deepcopy(messages),
            "tools": tools,
            "max_tokens": max_tokens,
            "phase": phase,
        })
        if not self.replies:
            raise AssertionError("ScriptedLLM ran out of replies")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def close(self) -> None:
        self.closed = True


def tool_call(name: str, arguments: Optional[Dict[str, Any]] = None, call_id: Optional[str] = None) -> ToolInvocation:
    return ToolInvocation(call_id=call_id or f"call_{name}", name=name, arguments=arguments or {})


def tool_reply(*calls: ToolInvocation) -> ModelReply:
    return ModelReply(content=None, tool_calls=list(calls))


def text_reply(content: str) -> ModelReply:
    return ModelReply(content=content)


@pytest.fixture(autouse=True)
def database():
    """Fresh schema for every test."""
    metadata.create_all(engine)
    yield engine
    metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def word_encoding():
    """Avoid downloading the real tokenizer in tests."""
    with patch("admin_assistant.services.prompt_builder._get_encoding", return_value=WordEncoding()):
        yield


@pytest.fixture
def seed():
    """Insert a row and return its id."""

    def _seed(table: sa.Table, **values) -> str:
        values.setdefault("id", new_id())
        if "created_at" in table.c and "created_at" not in values:
            values["created_at"] = datetime.utcnow()
        with get_db_session() as session:
            session.execute(sa.insert(table).values(**values))
        return values["id"]

    return _seed


@pytest.fixture
def count_rows():
    def _count(table: sa.Table, *where) -> int:
        query = sa.select(sa.func.count()).select_from(table)
        for clause in where:
            query = query.where(clause)
        with get_db_session() as session:
            return session.execute(query).scalar_one()

    return _count


@pytest.fixture
def audit_entries():
    """All audit rows, oldest first."""

    def _entries() -> List[Dict[str, Any]]:
        with get_db_session() as session:
            rows = session.execute(sa.select(admin_audit_log).order_by(admin_audit_log.c.created_at)).all()
        return [dict(row._mapping) for row in rows]

    return _entries


@pytest.fixture
def admin_id() -> str:
    return ADMIN_ID
