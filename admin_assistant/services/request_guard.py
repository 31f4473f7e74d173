"""Duplicate submission guard."""

import hashlib
import json
import time
from collections import OrderedDict
from typing import Any, Optional

from admin_assistant.infra.config import config
from admin_assistant.infra.error_handler import DuplicateRequestError


class RecentRequestGuard:
    """
    Time-windowed set of request fingerprints.

    Owned by one orchestrator instance; entries older than ``window_seconds``
    are dropped and the set never holds more than ``max_entries``.
    """

    def __init__(self, window_seconds: Optional[float] = None, max_entries: int = 1000):
        self.window_seconds = config.DUPLICATE_REQUEST_WINDOW_SECONDS if window_seconds is None else window_seconds
        self.max_entries = max_entries
        self._seen: "OrderedDict[str, float]" = OrderedDict()

    @staticmethod
    def fingerprint(actor_id: str, payload: Any) -> str:
        body = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(f"{actor_id}:{body}".encode("utf-8")).hexdigest()

    def _evict(self, now: float) -> None:
        while self._seen:
            _, seen_at = next(iter(self._seen.items()))
            if now - seen_at < self.window_seconds and len(self._seen) <= self.max_entries:
                break
            self._seen.popitem(last=False)

    def check(self, actor_id: str, payload: Any) -> str:
        """
        Register a request, rejecting it if the same one arrived inside the window.

        Raises:
            DuplicateRequestError: If the fingerprint was seen within the window
        """
        now = time.monotonic()
        self._evict(now)
        key = self.fingerprint(actor_id, payload)
        if key in self._seen:
            raise DuplicateRequestError()
        self._seen[key] = now
        return key

    def release(self, key: str) -> None:
        """Forget a fingerprint so an identical request can be retried immediately."""
        self._seen.pop(key, None)

    def __len__(self) -> int:
        return len(self._seen)
