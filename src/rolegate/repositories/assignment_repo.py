"""Data access helpers for role assignment rows."""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import Select, case, func, select, update
from sqlalchemy.orm import Session

from rolegate.db.upsert import insert_for
from rolegate.models import AssignmentStatus, RoleAssignment

__all__ = ["RoleAssignmentRepository"]

_ACTIVE = AssignmentStatus.ACTIVE.value


def _by_triple(user_id: str, server_id: str, role_id: str) -> Select[tuple[RoleAssignment]]:
    # populate_existing: rows may have been rewritten by a bulk UPDATE or upsert.
    return (
        select(RoleAssignment)
        .where(
            RoleAssignment.user_id == user_id,
            RoleAssignment.server_id == server_id,
            RoleAssignment.role_id == role_id,
        )
        .execution_options(populate_existing=True)
    )


class RoleAssignmentRepository:
    """Keyed access to ``verifier_user_roles``.

    Rows are unique per (user_id, server_id, role_id); :meth:`upsert_active`
    relies on that constraint for an atomic insert-or-reactivate.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: str, server_id: str, role_id: str) -> RoleAssignment | None:
        """Return the assignment for a triple, bypassing stale identity-map state."""
        return self.session.execute(_by_triple(user_id, server_id, role_id)).scalars().first()

    def get_by_id(self, assignment_id: int) -> RoleAssignment | None:
        result = self.session.execute(
            select(RoleAssignment)
            .where(RoleAssignment.id == assignment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    def upsert_active(
        self,
        *,
        user_id: str,
        server_id: str,
        role_id: str,
        now: datetime,
        rule_id: int | None = None,
        address: str | None = None,
        user_name: str | None = None,
        server_name: str | None = None,
        role_name: str | None = None,
        expires_at: datetime | None = None,
    ) -> RoleAssignment:
        """Insert an active row or move the existing row for the triple to active.

        ``verified_at`` is kept for rows that were already active and reset for
        new or reactivated rows; ``last_checked_at`` and ``expires_at`` always refresh.
        """
        table = RoleAssignment.__table__
        stmt = insert_for(self.session, RoleAssignment).values(
            user_id=user_id,
            server_id=server_id,
            role_id=role_id,
            rule_id=rule_id,
            address=address,
            user_name=user_name,
            server_name=server_name,
            role_name=role_name,
            status=_ACTIVE,
            verified_at=now,
            last_checked_at=now,
            expires_at=expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.server_id, table.c.role_id],
            set_={
                "status": _ACTIVE,
                "verified_at": case(
                    (table.c.status == _ACTIVE, table.c.verified_at),
                    else_=stmt.excluded.verified_at,
                ),
                "last_checked_at": stmt.excluded.last_checked_at,
                "expires_at": stmt.excluded.expires_at,
                "rule_id": func.coalesce(stmt.excluded.rule_id, table.c.rule_id),
                "address": func.coalesce(stmt.excluded.address, table.c.address),
                "user_name": func.coalesce(stmt.excluded.user_name, table.c.user_name),
                "server_name": func.coalesce(stmt.excluded.server_name, table.c.server_name),
                "role_name": func.coalesce(stmt.excluded.role_name, table.c.role_name),
            },
        )
        self.session.execute(stmt)
        self.session.flush()
        return self.session.execute(_by_triple(user_id, server_id, role_id)).scalars().one()

    def compare_and_set_status(
        self,
        assignment_id: int,
        *,
        expected: AssignmentStatus,
        new: AssignmentStatus,
        now: datetime,
    ) -> bool:
        """Move a row from ``expected`` to ``new``; return False if it was not in ``expected``."""
        result = self.session.execute(
            update(RoleAssignment)
            .where(RoleAssignment.id == assignment_id, RoleAssignment.status == expected.value)
            .values(status=new.value, last_checked_at=now)
        )
        self.session.flush()
        return bool(result.rowcount)

    def touch(self, assignment_id: int, now: datetime) -> bool:
        """Refresh ``last_checked_at`` of an active row."""
        result = self.session.execute(
            update(RoleAssignment)
            .where(RoleAssignment.id == assignment_id, RoleAssignment.status == _ACTIVE)
            .values(last_checked_at=now)
        )
        self.session.flush()
        return bool(result.rowcount)

    def list_active(self, limit: int | None = None) -> list[RoleAssignment]:
        """Return active rows, least recently checked first."""
        stmt = (
            select(RoleAssignment)
            .where(RoleAssignment.status == _ACTIVE)
            .order_by(RoleAssignment.last_checked_at.asc(), RoleAssignment.id.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars())

    def list_active_for_user(self, user_id: str) -> list[RoleAssignment]:
        stmt = (
            select(RoleAssignment)
            .where(RoleAssignment.status == _ACTIVE, RoleAssignment.user_id == user_id)
            .order_by(RoleAssignment.last_checked_at.asc(), RoleAssignment.id.asc())
        )
        return list(self.session.execute(stmt).scalars())

    def list_expired_due(self, now: datetime) -> Sequence[RoleAssignment]:
        """Return active rows whose ``expires_at`` has passed."""
        stmt = select(RoleAssignment).where(
            RoleAssignment.status == _ACTIVE,
            RoleAssignment.expires_at.is_not(None),
            RoleAssignment.expires_at <= now,
        )
        return list(self.session.execute(stmt).scalars())

    def count_by_status(self, status: AssignmentStatus) -> int:
        result = self.session.execute(
            select(func.count()).select_from(RoleAssignment).where(RoleAssignment.status == status.value)
        )
        return int(result.scalar_one())
