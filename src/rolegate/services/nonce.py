"""Single-use verification challenges.

Exactly one live nonce exists per subject: issuing a new challenge overwrites
the previous one, so only the most recently issued nonce can ever complete a
verification. That overwrite is what serialises concurrent attempts for the
same subject; there is no lock.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field

from rolegate.core.errors import StoreError
from rolegate.core.rules import NonceContext
from rolegate.core.settings import settings
from rolegate.services.kv_store import KeyValueStore, get_key_value_store

logger = logging.getLogger(__name__)

NONCE_BYTES = 16


@dataclass(frozen=True)
class NonceCheck:
    """Result of :meth:`NonceManager.consume`."""

    valid: bool
    context: NonceContext = field(default_factory=NonceContext)


class NonceManager:
    """Issues and checks per-subject challenges stored with a TTL."""

    def __init__(self, store: KeyValueStore, ttl_seconds: int | None = None) -> None:
        self._store = store
        self.ttl_seconds = ttl_seconds or settings.nonce_ttl_seconds

    @staticmethod
    def _key(subject_id: str) -> str:
        return f"nonce:{subject_id}"

    def create(self, subject_id: str, context: NonceContext | None = None) -> str:
        """Issue a fresh nonce for the subject, replacing any earlier one."""
        value = secrets.token_urlsafe(NONCE_BYTES)
        context = context or NonceContext()
        self._store.set(
            self._key(subject_id),
            {"nonce": value, **context.to_dict()},
            self.ttl_seconds,
        )
        logger.debug("Issued nonce for subject %s", subject_id)
        return value

    def consume(self, subject_id: str, candidate: str) -> NonceCheck:
        """Check ``candidate`` against the live nonce and return its context.

        Does not delete the entry; callers invalidate once the context is read.
        """
        try:
            entry = self._store.get(self._key(subject_id))
        except StoreError:
            logger.exception("Nonce store unavailable while checking subject %s", subject_id)
            return NonceCheck(valid=False)
        if entry is None:
            return NonceCheck(valid=False)
        stored = entry.get("nonce")
        if not isinstance(stored, str) or not isinstance(candidate, str):
            return NonceCheck(valid=False)
        if not secrets.compare_digest(stored.encode("utf-8"), candidate.encode("utf-8")):
            return NonceCheck(valid=False)
        return NonceCheck(valid=True, context=NonceContext.from_dict(entry))

    def invalidate(self, subject_id: str) -> None:
        """Delete the subject's nonce; a no-op if none is stored."""
        try:
            self._store.delete(self._key(subject_id))
        except StoreError:
            logger.exception("Nonce store unavailable while invalidating subject %s", subject_id)


def get_nonce_manager() -> NonceManager:
    """Return a nonce manager bound to the configured store."""
    return NonceManager(get_key_value_store())
