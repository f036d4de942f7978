"""Correlates an issued challenge with where its outcome should be reported.

Entries are keyed by nonce, expire with the nonce TTL and are popped exactly once.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from rolegate.core.errors import StoreError
from rolegate.core.settings import settings
from rolegate.services.kv_store import KeyValueStore, get_key_value_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplyTarget:
    """Where the requester is waiting for the verification result."""

    subject_id: str
    interaction_token: str | None = None
    channel_id: str | None = None


class PendingReplyStore:
    """TTL-bounded map of nonce -> :class:`ReplyTarget`."""

    def __init__(self, store: KeyValueStore, ttl_seconds: int | None = None) -> None:
        self._store = store
        self.ttl_seconds = ttl_seconds or settings.nonce_ttl_seconds

    @staticmethod
    def _key(nonce: str) -> str:
        return f"reply:{nonce}"

    def remember(self, nonce: str, target: ReplyTarget) -> None:
        self._store.set(self._key(nonce), asdict(target), self.ttl_seconds)

    def pop(self, nonce: str) -> ReplyTarget | None:
        """Return and forget the reply target for ``nonce``."""
        try:
            entry = self._store.get(self._key(nonce))
            self._store.delete(self._key(nonce))
        except StoreError:
            logger.warning("Reply store unavailable; dropping reply target for nonce", exc_info=True)
            return None
        if entry is None or not entry.get("subject_id"):
            return None
        return ReplyTarget(
            subject_id=str(entry["subject_id"]),
            interaction_token=entry.get("interaction_token"),
            channel_id=entry.get("channel_id"),
        )


def get_pending_reply_store() -> PendingReplyStore:
    """Return a reply store bound to the configured key-value store."""
    return PendingReplyStore(get_key_value_store())
