"""Rule satisfaction predicates.

One evaluator serves both evaluation modes. A snapshot is checked with
:meth:`RuleMatcher.matches`; a pre-filtered count returned by the asset
provider is checked with :meth:`RuleMatcher.satisfies_count`. The only
behavioural difference between the modes is how a ``min_items`` of zero or
below is read, and that is always passed in as a :class:`ZeroMinimumPolicy`.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from numbers import Number
from typing import Any

from rolegate.core.rules import (
    AssetHolding,
    Exact,
    VerificationRule,
    ZeroMinimumPolicy,
    field_matches,
)


def loosely_equal(actual: Any, expected: Any) -> bool:
    """Compare a holding attribute with a configured value.

    Configured values are stored as text, so ``5`` matches ``"5"`` and
    ``True`` matches ``"true"``.
    """
    if actual == expected:
        return True
    if actual is None or expected is None:
        return False
    if isinstance(actual, bool) or isinstance(expected, bool):
        return str(actual).lower() == str(expected).lower()
    if str(actual) == str(expected):
        return True
    if isinstance(actual, Number) or isinstance(expected, Number):
        try:
            return float(actual) == float(expected)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return False
    return False


class RuleMatcher:
    """Pure evaluator; holds no state and performs no I/O."""

    @staticmethod
    def policy_for(rule: VerificationRule) -> ZeroMinimumPolicy:
        """Policy used when re-evaluating a stored rule outside a request."""
        if rule.is_message_scoped:
            return ZeroMinimumPolicy.UNBOUNDED
        return ZeroMinimumPolicy.NEVER

    @staticmethod
    def slug_matches(rule: VerificationRule, holding: AssetHolding) -> bool:
        return field_matches(rule.collection_slug, holding.collection_slug)

    @staticmethod
    def attribute_matches(rule: VerificationRule, holding: AssetHolding) -> bool:
        if not rule.has_attribute_filter:
            return True
        key = rule.attribute_key.value  # type: ignore[union-attr]
        expected = rule.attribute_value.value  # type: ignore[union-attr]
        attributes: Mapping[str, Any] = holding.attributes or {}
        if key not in attributes:
            return False
        return loosely_equal(attributes[key], expected)

    def count_matching(self, rule: VerificationRule, holdings: Iterable[AssetHolding]) -> int:
        """Number of holdings passing both the slug and the attribute filter."""
        return sum(
            1
            for holding in holdings
            if self.slug_matches(rule, holding) and self.attribute_matches(rule, holding)
        )

    @staticmethod
    def satisfies_count(
        rule: VerificationRule,
        count: int,
        policy: ZeroMinimumPolicy = ZeroMinimumPolicy.NEVER,
    ) -> bool:
        """Compare an applicable-holdings count with the rule threshold."""
        minimum = rule.effective_min_items
        if minimum < 1:
            return policy is ZeroMinimumPolicy.UNBOUNDED
        return count >= minimum

    def matches(
        self,
        rule: VerificationRule,
        holdings: Iterable[AssetHolding],
        channel_id: str | None = None,
        policy: ZeroMinimumPolicy = ZeroMinimumPolicy.NEVER,
    ) -> bool:
        """Return True if ``holdings`` satisfy every predicate of ``rule``.

        The channel predicate only applies when ``channel_id`` is given.
        Under ``UNBOUNDED`` a non-positive threshold is satisfied without
        looking at holdings at all.
        """
        if channel_id is not None and not field_matches(rule.channel_id, channel_id):
            return False

        if rule.effective_min_items < 1:
            return policy is ZeroMinimumPolicy.UNBOUNDED

        items = list(holdings)
        if isinstance(rule.collection_slug, Exact) and not any(
            self.slug_matches(rule, holding) for holding in items
        ):
            return False
        if rule.has_attribute_filter and not any(
            self.attribute_matches(rule, holding) for holding in items
        ):
            return False
        return self.satisfies_count(rule, self.count_matching(rule, items), policy)
