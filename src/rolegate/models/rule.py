"""SQLAlchemy model for operator-defined verification rules."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from rolegate.core.rules import VerificationRule, parse_field
from rolegate.db.session import Base
from rolegate.db.time import utcnow


class VerifierRule(Base):
    """A flat predicate granting ``role_id`` to holders that satisfy it.

    Filter columns store ``NULL`` (or the legacy literal ``ALL``) for "match anything".
    """

    __tablename__ = "verifier_rules"
    __table_args__ = (
        Index("ix_verifier_rules_message", "server_id", "channel_id", "message_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    server_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    server_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    channel_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    channel_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Verification surface (button message) the rule is bound to, if any.
    message_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    slug: Mapped[str | None] = mapped_column(Text, nullable=True)
    role_id: Mapped[str] = mapped_column(Text, nullable=False)
    role_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    attribute_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    attribute_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    min_items: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    def to_domain(self) -> VerificationRule:
        """Return the engine's immutable view of this rule."""
        return VerificationRule(
            id=self.id,
            server_id=self.server_id,
            role_id=self.role_id,
            channel_id=parse_field(self.channel_id),
            collection_slug=parse_field(self.slug),
            attribute_key=parse_field(self.attribute_key),
            attribute_value=parse_field(self.attribute_value),
            min_items=self.min_items,
            message_id=self.message_id,
            role_name=self.role_name,
        )
