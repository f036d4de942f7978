"""SQLAlchemy model for servers configured with a single legacy role."""

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from rolegate.db.session import Base


class LegacyServer(Base):
    """Pre-rules server configuration: one role granted to any holder."""

    __tablename__ = "verifier_servers"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    role_id: Mapped[str] = mapped_column(Text, nullable=False)
