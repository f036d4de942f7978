"""Dialect-aware ``INSERT ... ON CONFLICT`` support."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def insert_for(session: Session, entity: Any) -> Any:
    """Return an insert construct supporting ``on_conflict_do_update`` for the bound dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(entity)
    if dialect == "sqlite":
        return sqlite.insert(entity)
    raise NotImplementedError(f"Atomic upsert is not supported for dialect {dialect!r}")
