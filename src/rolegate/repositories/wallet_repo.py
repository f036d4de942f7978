"""Data access helpers for verified wallet addresses."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rolegate.db.time import utcnow
from rolegate.db.upsert import insert_for
from rolegate.models import UserWallet

__all__ = ["WalletRepository"]


class WalletRepository:
    """Stores every address a subject has proven control of."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def record_address(
        self,
        user_id: str,
        address: str,
        *,
        user_name: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """Insert the address or refresh ``last_verified_at`` if already known."""
        now = now or utcnow()
        table = UserWallet.__table__
        stmt = insert_for(self.session, UserWallet).values(
            user_id=user_id,
            address=address.lower(),
            user_name=user_name,
            created_at=now,
            last_verified_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.address],
            set_={
                "last_verified_at": stmt.excluded.last_verified_at,
                "user_name": func.coalesce(stmt.excluded.user_name, table.c.user_name),
            },
        )
        self.session.execute(stmt)
        self.session.flush()

    def addresses_for(self, user_id: str) -> list[str]:
        """Return the subject's addresses, most recently added first."""
        result = self.session.execute(
            select(UserWallet.address)
            .where(UserWallet.user_id == user_id)
            .order_by(UserWallet.created_at.desc(), UserWallet.id.desc())
        )
        return list(result.scalars())
