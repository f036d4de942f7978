"""Domain primitives for verification rules and holdings.

Rule filter fields are tagged values: either ``WILDCARD`` ("match anything")
or ``Exact(value)``. Storage historically encoded the wildcard as ``NULL`` or
the literal string ``"ALL"``; :func:`parse_field` is the single place that
legacy encoding is interpreted.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final, TypeAlias

LEGACY_WILDCARD_TOKEN: Final[str] = "ALL"


class Wildcard:
    """Sentinel type for a rule field that matches any value."""

    _instance: Wildcard | None = None

    def __new__(cls) -> Wildcard:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "WILDCARD"


WILDCARD: Final[Wildcard] = Wildcard()


@dataclass(frozen=True)
class Exact:
    """Rule field that only matches the given value."""

    value: str


RuleField: TypeAlias = Wildcard | Exact


def parse_field(raw: str | None) -> RuleField:
    """Interpret a stored rule column, mapping ``None``/``""``/``"ALL"`` to the wildcard."""
    if raw is None:
        return WILDCARD
    text = str(raw).strip()
    if not text or text == LEGACY_WILDCARD_TOKEN:
        return WILDCARD
    return Exact(text)


def field_matches(rule_value: RuleField, candidate: Any) -> bool:
    """Return True if ``candidate`` satisfies the rule field."""
    if isinstance(rule_value, Wildcard):
        return True
    return candidate is not None and str(candidate) == rule_value.value


class ZeroMinimumPolicy(str, Enum):
    """How a configured ``min_items`` of zero (or below) is interpreted.

    ``NEVER``: a non-positive threshold is a misconfiguration and the rule can
    never be satisfied (broad-scan evaluation).
    ``UNBOUNDED``: a zero threshold means "no minimum" and is trivially
    satisfied (message-scoped direct-count evaluation).
    """

    NEVER = "never"
    UNBOUNDED = "unbounded"


@dataclass(frozen=True)
class VerificationRule:
    """Immutable view of a configured rule as consumed by the engine."""

    id: int | None
    server_id: str
    role_id: str
    channel_id: RuleField = WILDCARD
    collection_slug: RuleField = WILDCARD
    attribute_key: RuleField = WILDCARD
    attribute_value: RuleField = WILDCARD
    min_items: int | None = None
    message_id: str | None = None
    role_name: str | None = None

    @property
    def has_attribute_filter(self) -> bool:
        """Attribute matching only applies when both key and value are exact."""
        return isinstance(self.attribute_key, Exact) and isinstance(self.attribute_value, Exact)

    @property
    def effective_min_items(self) -> int:
        """Minimum holdings required when the threshold is positive (default 1)."""
        return self.min_items if self.min_items is not None else 1

    @property
    def is_message_scoped(self) -> bool:
        return self.message_id is not None


@dataclass(frozen=True)
class AssetHolding:
    """One item of a holder's inventory as reported by the asset provider."""

    collection_slug: str
    attributes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NonceContext:
    """Opaque binding captured when a challenge was issued."""

    message_id: str | None = None
    channel_id: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {"message_id": self.message_id, "channel_id": self.channel_id}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> NonceContext:
        if not data:
            return cls()
        message_id = data.get("message_id")
        channel_id = data.get("channel_id")
        return cls(
            message_id=str(message_id) if message_id else None,
            channel_id=str(channel_id) if channel_id else None,
        )
