"""SQLAlchemy model for persisted role assignments.

Status values are only ever written through
``rolegate.services.assignments.RoleAssignmentTracker``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, DateTime, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rolegate.db.session import Base
from rolegate.db.time import utcnow


class AssignmentStatus(str, Enum):
    """Lifecycle states of a (subject, server, role) assignment."""

    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class RoleAssignment(Base):
    """Record that a subject holds (or once held) a role granted by verification."""

    __tablename__ = "verifier_user_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "server_id", "role_id", name="uq_user_roles_triple"),
        Index("ix_user_roles_status_checked", "status", "last_checked_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    server_id: Mapped[str] = mapped_column(Text, nullable=False)
    role_id: Mapped[str] = mapped_column(Text, nullable=False)
    rule_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    server_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    role_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=AssignmentStatus.ACTIVE.value)
    verified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    last_checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def assignment_status(self) -> AssignmentStatus:
        return AssignmentStatus(self.status)
