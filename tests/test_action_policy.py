"""Tests for the destructive action policy and pending action store."""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
import sqlalchemy as sa

from admin_assistant.infra.config import config
from admin_assistant.infra.database import get_db_session
from admin_assistant.infra.error_handler import ConfirmationError
from admin_assistant.infra.schema import ai_pending_actions
from admin_assistant.models.action import PendingStatus
from admin_assistant.services import action_policy
from admin_assistant.services.action_policy import PendingActionStore


class TestClassification:
    """Classification is by declared name only."""

    def test_destructive_names(self):
        assert action_policy.is_destructive("delete_conversation") is True
        assert action_policy.is_destructive("bulk_delete_contacts") is True
        assert action_policy.is_destructive("close_conversation") is False

    def test_unknown_name_is_not_destructive(self):
        assert action_policy.is_destructive("delete_everything") is False

    def test_requires_confirmation_follows_mode(self):
        with patch.object(config, "DESTRUCTIVE_ACTION_MODE", "confirm"):
            assert action_policy.requires_confirmation("delete_contact") is True
            assert action_policy.requires_confirmation("create_contact") is False
        with patch.object(config, "DESTRUCTIVE_ACTION_MODE", "execute"):
            assert action_policy.requires_confirmation("delete_contact") is False


class TestPendingActionStore:
    """Pending actions are owned, expiring and single use."""

    def _create(self, store, actor_id="admin-1"):
        return store.create(actor_id, "delete_contact", {"contact_id": "K1"}, {"name": "Ana"})

    def test_create_and_get(self):
        store = PendingActionStore(ttl_seconds=60)
        pending = self._create(store)

        loaded = store.get(pending.id)
        assert loaded.tool_name == "delete_contact"
        assert loaded.arguments == {"contact_id": "K1"}
        assert loaded.preview == {"name": "Ana"}
        assert loaded.status == PendingStatus.PENDING
        assert loaded.expires_at > datetime.utcnow()

    def test_unknown_action(self):
        with pytest.raises(ConfirmationError) as exc:
            PendingActionStore().load_for_confirmation("nope", "admin-1")
        assert exc.value.status_code == 404

    def test_other_actor_cannot_confirm(self):
        store = PendingActionStore()
        pending = self._create(store, actor_id="admin-1")

        with pytest.raises(ConfirmationError) as exc:
            store.load_for_confirmation(pending.id, "admin-2")
        assert exc.value.status_code == 404

    def test_expired_action_is_marked_expired(self):
        store = PendingActionStore()
        pending = self._create(store)
        with get_db_session() as session:
            session.execute(
                sa.update(ai_pending_actions)
                .where(ai_pending_actions.c.id == pending.id)
                .values(expires_at=datetime.utcnow() - timedelta(seconds=1))
            )

        with pytest.raises(ConfirmationError) as exc:
            store.load_for_confirmation(pending.id, "admin-1")
        assert exc.value.status_code == 409
        assert exc.value.message == "Pending action expired"
        assert store.get(pending.id).status == PendingStatus.EXPIRED

    def test_single_use(self):
        store = PendingActionStore()
        pending = self._create(store)

        store.mark_confirmed(store.load_for_confirmation(pending.id, "admin-1"))

        with pytest.raises(ConfirmationError) as exc:
            store.load_for_confirmation(pending.id, "admin-1")
        assert exc.value.message == "Pending action already confirmed"

    def test_concurrent_resolution_loses(self):
        store = PendingActionStore()
        first = store.load_for_confirmation(self._create(store).id, "admin-1")
        second = store.get(first.id)

        store.mark_cancelled(first)
        with pytest.raises(ConfirmationError):
            store.mark_confirmed(second)
        assert store.get(first.id).status == PendingStatus.CANCELLED
