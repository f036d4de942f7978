"""Read-only access to verification rules."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from rolegate.core.rules import VerificationRule
from rolegate.models import LegacyServer, VerifierRule

__all__ = ["RuleRepository"]


class RuleRepository:
    """Thin wrapper around database access for rule lookups."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _list(self, stmt) -> list[VerificationRule]:  # type: ignore[no-untyped-def]
        rows = self.session.execute(stmt.order_by(VerifierRule.id)).scalars()
        return [row.to_domain() for row in rows]

    def get(self, rule_id: int) -> VerificationRule | None:
        """Return a rule by identifier."""
        row = self.session.get(VerifierRule, rule_id)
        return row.to_domain() if row is not None else None

    def list_by_server(self, server_id: str) -> list[VerificationRule]:
        """Return every rule configured for a server."""
        return self._list(select(VerifierRule).where(VerifierRule.server_id == server_id))

    def list_by_channel(self, server_id: str, channel_id: str) -> list[VerificationRule]:
        """Return rules bound to a channel."""
        return self._list(
            select(VerifierRule).where(
                VerifierRule.server_id == server_id,
                VerifierRule.channel_id == channel_id,
            )
        )

    def list_by_message(
        self,
        server_id: str,
        channel_id: str | None,
        message_id: str,
    ) -> list[VerificationRule]:
        """Return rules bound to one verification surface (message)."""
        stmt = select(VerifierRule).where(
            VerifierRule.server_id == server_id,
            VerifierRule.message_id == message_id,
        )
        if channel_id is not None:
            stmt = stmt.where(VerifierRule.channel_id == channel_id)
        return self._list(stmt)

    def get_legacy_role_id(self, server_id: str) -> str | None:
        """Return the single legacy role configured for a server, if any."""
        row = self.session.get(LegacyServer, server_id)
        return row.role_id if row is not None else None
