"""Verification request pipeline.

``verify`` runs, in order: nonce check, nonce invalidation, signature
verification, rule resolution, rule evaluation, per-rule side effects and an
outcome notification. Request-fatal failures raise a
:class:`~rolegate.core.errors.VerificationError`; per-rule failures are
returned as :class:`Failed` outcomes next to the rules that succeeded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeAlias

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rolegate.core.errors import (
    AssetProviderError,
    InsufficientHoldings,
    NoApplicableRules,
    NonceInvalidOrExpired,
    PersistenceFailure,
    RoleApiFailure,
    RuleFailure,
    UnexpectedOrchestratorFailure,
    VerificationError,
)
from rolegate.core.rules import NonceContext, VerificationRule, ZeroMinimumPolicy
from rolegate.repositories.rule_repo import RuleRepository
from rolegate.repositories.wallet_repo import WalletRepository
from rolegate.schemas.verification import VerificationTicket
from rolegate.services.assets import AssetProvider
from rolegate.services.assignments import RoleAssignmentTracker
from rolegate.services.discord import NotificationChannel, OutcomeNotification, PlatformRoleApi
from rolegate.services.matcher import RuleMatcher
from rolegate.services.nonce import NonceManager
from rolegate.services.signature import SignatureVerifier

logger = logging.getLogger(__name__)


class EvaluationMode(str, Enum):
    """How the resolved rules are checked against holdings."""

    # Pre-filtered count per rule from the asset provider; zero minimum is unbounded.
    DIRECT_COUNT = "direct_count"
    # One snapshot checked by the matcher for every rule; zero minimum never matches.
    BROAD_SCAN = "broad_scan"


@dataclass(frozen=True)
class Assigned:
    rule: VerificationRule
    already_held: bool = False


@dataclass(frozen=True)
class Unsatisfied:
    rule: VerificationRule


@dataclass(frozen=True)
class Failed:
    rule: VerificationRule
    error: RuleFailure


RuleOutcome: TypeAlias = Assigned | Unsatisfied | Failed


def _role_label(rule: VerificationRule) -> str:
    return rule.role_name or rule.role_id


@dataclass(frozen=True)
class VerificationOutcome:
    """Aggregate result of one verification request."""

    subject_id: str
    server_id: str
    address: str
    mode: EvaluationMode
    outcomes: list[RuleOutcome] = field(default_factory=list)

    @property
    def assigned(self) -> list[Assigned]:
        return [o for o in self.outcomes if isinstance(o, Assigned) and not o.already_held]

    @property
    def already_held(self) -> list[Assigned]:
        return [o for o in self.outcomes if isinstance(o, Assigned) and o.already_held]

    @property
    def failed(self) -> list[Failed]:
        return [o for o in self.outcomes if isinstance(o, Failed)]

    @property
    def success(self) -> bool:
        return any(isinstance(o, Assigned) for o in self.outcomes)

    @property
    def message(self) -> str:
        if not self.success:
            return "Your wallet qualifies, but the roles could not be assigned. Please try again later."
        granted = len(self.assigned) + len(self.already_held)
        return f"Verification successful! You now have access to {granted} role(s)."


@dataclass(frozen=True)
class _ResolvedRules:
    rules: list[VerificationRule]
    mode: EvaluationMode


class VerificationOrchestrator:
    """Drives one verification attempt end to end."""

    def __init__(
        self,
        *,
        nonces: NonceManager,
        verifier: SignatureVerifier,
        matcher: RuleMatcher,
        assets: AssetProvider,
        platform: PlatformRoleApi,
        notifier: NotificationChannel,
        rules: RuleRepository,
        wallets: WalletRepository,
        tracker: RoleAssignmentTracker,
    ) -> None:
        self.nonces = nonces
        self.verifier = verifier
        self.matcher = matcher
        self.assets = assets
        self.platform = platform
        self.notifier = notifier
        self.rules = rules
        self.wallets = wallets
        self.tracker = tracker

    @classmethod
    def for_session(
        cls,
        session: Session,
        *,
        nonces: NonceManager,
        verifier: SignatureVerifier,
        assets: AssetProvider,
        platform: PlatformRoleApi,
        notifier: NotificationChannel,
    ) -> VerificationOrchestrator:
        """Build an orchestrator whose repositories share ``session``."""
        return cls(
            nonces=nonces,
            verifier=verifier,
            matcher=RuleMatcher(),
            assets=assets,
            platform=platform,
            notifier=notifier,
            rules=RuleRepository(session),
            wallets=WalletRepository(session),
            tracker=RoleAssignmentTracker(session),
        )

    async def verify(self, ticket: VerificationTicket, signature: str) -> VerificationOutcome:
        """Run the full pipeline for a signed ticket."""
        check = self.nonces.consume(ticket.subject_id, ticket.nonce)
        if not check.valid:
            logger.info("Rejected stale or unknown nonce for subject %s", ticket.subject_id)
            raise NonceInvalidOrExpired()

        # The context was read by consume; the nonce is dead from here on.
        self.nonces.invalidate(ticket.subject_id)

        try:
            outcome = await self._run(ticket, signature, check.context)
        except VerificationError as exc:
            logger.info("Verification failed for subject %s: %s", ticket.subject_id, exc.code)
            await self._notify_failure(ticket, exc)
            raise
        except Exception as exc:
            logger.exception("Unexpected failure verifying subject %s", ticket.subject_id)
            error = UnexpectedOrchestratorFailure()
            await self._notify_failure(ticket, error)
            raise error from exc

        await self._notify(
            OutcomeNotification(
                subject_id=ticket.subject_id,
                nonce=ticket.nonce,
                success=outcome.success,
                message=outcome.message,
                assigned_roles=[_role_label(o.rule) for o in outcome.assigned],
                already_held_roles=[_role_label(o.rule) for o in outcome.already_held],
                failed_roles=[_role_label(o.rule) for o in outcome.failed],
                address=outcome.address,
            )
        )
        return outcome

    async def _run(
        self,
        ticket: VerificationTicket,
        signature: str,
        context: NonceContext,
    ) -> VerificationOutcome:
        address = self.verifier.verify(ticket, signature)
        self._record_wallet(ticket, address)

        resolved = self._resolve_rules(ticket, context)
        if not resolved.rules:
            raise NoApplicableRules()

        verdicts = await self._evaluate(resolved, address)
        satisfied = [rule for rule, ok in zip(resolved.rules, verdicts, strict=True) if ok]
        if not satisfied:
            raise InsufficientHoldings()

        outcomes: list[RuleOutcome] = [
            Unsatisfied(rule) for rule, ok in zip(resolved.rules, verdicts, strict=True) if not ok
        ]
        for rule in satisfied:
            outcomes.append(await self._apply(ticket, rule, address))

        outcome = VerificationOutcome(
            subject_id=ticket.subject_id,
            server_id=ticket.server_id,
            address=address,
            mode=resolved.mode,
            outcomes=outcomes,
        )
        logger.info(
            "Verified subject %s in server %s: %d assigned, %d already held, %d failed",
            ticket.subject_id,
            ticket.server_id,
            len(outcome.assigned),
            len(outcome.already_held),
            len(outcome.failed),
        )
        return outcome

    def _record_wallet(self, ticket: VerificationTicket, address: str) -> None:
        try:
            self.wallets.record_address(ticket.subject_id, address, user_name=ticket.subject_tag or None)
            self.wallets.session.commit()
        except SQLAlchemyError:
            self.wallets.session.rollback()
            logger.warning("Could not record wallet for subject %s", ticket.subject_id, exc_info=True)

    def _resolve_rules(self, ticket: VerificationTicket, context: NonceContext) -> _ResolvedRules:
        if context.message_id is not None:
            rules = self.rules.list_by_message(ticket.server_id, context.channel_id, context.message_id)
            return _ResolvedRules(rules, EvaluationMode.DIRECT_COUNT)

        if context.channel_id is not None:
            rules = self.rules.list_by_channel(ticket.server_id, context.channel_id)
            return _ResolvedRules(rules, EvaluationMode.DIRECT_COUNT)

        if ticket.legacy_role_id is not None:
            # The role always comes from server configuration, not from the ticket.
            role_id = self.rules.get_legacy_role_id(ticket.server_id)
            if role_id is None:
                return _ResolvedRules([], EvaluationMode.DIRECT_COUNT)
            legacy = VerificationRule(
                id=None,
                server_id=ticket.server_id,
                role_id=role_id,
                min_items=1,
                role_name=ticket.legacy_role_name,
            )
            return _ResolvedRules([legacy], EvaluationMode.DIRECT_COUNT)

        return _ResolvedRules(self.rules.list_by_server(ticket.server_id), EvaluationMode.BROAD_SCAN)

    async def _evaluate(self, resolved: _ResolvedRules, address: str) -> list[bool]:
        if resolved.mode is EvaluationMode.BROAD_SCAN:
            holdings = await self.assets.snapshot(address)
            return [
                self.matcher.matches(rule, holdings, policy=ZeroMinimumPolicy.NEVER)
                for rule in resolved.rules
            ]
        return list(
            await asyncio.gather(*(self._direct_count(rule, address) for rule in resolved.rules))
        )

    async def _direct_count(self, rule: VerificationRule, address: str) -> bool:
        policy = ZeroMinimumPolicy.UNBOUNDED
        if rule.effective_min_items < 1:
            return self.matcher.satisfies_count(rule, 0, policy)
        try:
            count = await self.assets.count_matching(
                address,
                rule.collection_slug,
                rule.attribute_key,
                rule.attribute_value,
                rule.effective_min_items,
            )
        except AssetProviderError as exc:
            logger.warning("Holdings lookup failed for role %s at %s: %s", rule.role_id, address, exc)
            return False
        return self.matcher.satisfies_count(rule, count, policy)

    async def _apply(self, ticket: VerificationTicket, rule: VerificationRule, address: str) -> RuleOutcome:
        failure: RuleFailure | None = None
        already_held = False
        try:
            grant = await self.platform.assign(ticket.subject_id, rule.role_id, ticket.server_id)
            already_held = grant.already_held
        except Exception as exc:
            logger.warning(
                "Role %s assignment failed for subject %s: %s",
                rule.role_id,
                ticket.subject_id,
                exc,
            )
            failure = RoleApiFailure(str(exc))

        try:
            self.tracker.activate(
                subject_id=ticket.subject_id,
                server_id=ticket.server_id,
                role_id=rule.role_id,
                rule_id=rule.id,
                address=address,
                subject_name=ticket.subject_tag or None,
                server_name=ticket.server_name or None,
                role_name=rule.role_name,
            )
        except PersistenceFailure as exc:
            logger.warning("Could not record role %s for subject %s: %s", rule.role_id, ticket.subject_id, exc)
            failure = failure or exc

        if failure is not None:
            return Failed(rule, failure)
        return Assigned(rule, already_held=already_held)

    async def _notify_failure(self, ticket: VerificationTicket, error: VerificationError) -> None:
        await self._notify(
            OutcomeNotification(
                subject_id=ticket.subject_id,
                nonce=ticket.nonce,
                success=False,
                message=error.user_message,
            )
        )

    async def _notify(self, notification: OutcomeNotification) -> None:
        try:
            await self.notifier.notify(notification)
        except Exception:
            logger.warning("Outcome notification failed for subject %s", notification.subject_id, exc_info=True)

