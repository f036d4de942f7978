"""Background re-validation of active role assignments.

Each pass first expires assignments whose ``expires_at`` has passed, then
re-evaluates every remaining active assignment (least recently checked first)
against the holder's current holdings and revokes the ones that no longer
qualify. A failure on one assignment is counted and the pass moves on.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass

from sqlalchemy.orm import Session

from rolegate.core.rules import AssetHolding, VerificationRule
from rolegate.core.settings import settings
from rolegate.db.session import SessionLocal
from rolegate.models import RoleAssignment
from rolegate.repositories.rule_repo import RuleRepository
from rolegate.repositories.wallet_repo import WalletRepository
from rolegate.services.assets import AssetProvider, get_asset_provider
from rolegate.services.assignments import RoleAssignmentTracker
from rolegate.services.discord import PlatformRoleApi, get_platform_role_api
from rolegate.services.matcher import RuleMatcher

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Counters for one sweep."""

    checked: int = 0
    still_valid: int = 0
    revoked: int = 0
    expired: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class _Candidate:
    """Detached copy of an assignment row; rows expire on every commit."""

    id: int
    user_id: str
    server_id: str
    role_id: str
    rule_id: int | None

    @classmethod
    def from_row(cls, row: RoleAssignment) -> _Candidate:
        return cls(
            id=row.id,
            user_id=row.user_id,
            server_id=row.server_id,
            role_id=row.role_id,
            rule_id=row.rule_id,
        )


class ReverificationSweeper:
    """Periodically re-checks active assignments and revokes unjustified roles."""

    def __init__(
        self,
        *,
        assets: AssetProvider | None = None,
        platform: PlatformRoleApi | None = None,
        matcher: RuleMatcher | None = None,
        db_session: Session | None = None,
        batch_size: int | None = None,
        batch_pause_seconds: float | None = None,
        interval_seconds: float | None = None,
    ) -> None:
        self.assets = assets or get_asset_provider()
        self.platform = platform or get_platform_role_api()
        self.matcher = matcher or RuleMatcher()
        self.batch_size = max(1, batch_size or settings.reverify_batch_size)
        self.batch_pause_seconds = (
            settings.reverify_batch_pause_seconds if batch_pause_seconds is None else batch_pause_seconds
        )
        self.interval_seconds = (
            settings.reverify_interval_seconds if interval_seconds is None else interval_seconds
        )
        self._db_session = db_session
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background sweep loop."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        interval = max(1.0, float(self.interval_seconds))
        while not self._stopping.is_set():
            try:
                report = await self.run_once()
                logger.info("Reverification sweep finished: %s", report.as_dict())
            except Exception:
                logger.exception("Reverification sweep aborted")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._db_session is not None:
            yield self._db_session
        else:
            with SessionLocal() as db:
                yield db

    async def run_once(self) -> SweepReport:
        """Run one full pass over all active assignments."""
        with self._session() as db:
            return await self._sweep(db, subject_id=None)

    async def run_for_subject(self, subject_id: str) -> SweepReport:
        """Re-check only the active assignments of one subject."""
        with self._session() as db:
            return await self._sweep(db, subject_id=subject_id)

    async def _sweep(self, db: Session, subject_id: str | None) -> SweepReport:
        report = SweepReport()
        tracker = RoleAssignmentTracker(db)

        due = [_Candidate.from_row(row) for row in tracker.due_for_expiry()]
        for candidate in due:
            if subject_id is not None and candidate.user_id != subject_id:
                continue
            try:
                await self._expire(candidate, tracker)
                report.expired += 1
            except Exception:
                report.errors += 1
                logger.exception("Failed to expire assignment %s", candidate.id)

        rows = tracker.active() if subject_id is None else tracker.active_for_subject(subject_id)
        candidates = [_Candidate.from_row(row) for row in rows]
        rules = RuleRepository(db)
        wallets = WalletRepository(db)

        for start in range(0, len(candidates), self.batch_size):
            if start and self.batch_pause_seconds > 0:
                await asyncio.sleep(self.batch_pause_seconds)
            for candidate in candidates[start:start + self.batch_size]:
                try:
                    await self._check(candidate, tracker, rules, wallets, report)
                except Exception:
                    report.errors += 1
                    logger.exception(
                        "Reverification failed for assignment %s (user %s role %s)",
                        candidate.id,
                        candidate.user_id,
                        candidate.role_id,
                    )
        return report

    async def _expire(self, candidate: _Candidate, tracker: RoleAssignmentTracker) -> None:
        await self.platform.revoke(candidate.user_id, candidate.role_id, candidate.server_id)
        tracker.expire(candidate.id)

    async def _holdings(self, wallets: WalletRepository, user_id: str) -> list[AssetHolding]:
        holdings: list[AssetHolding] = []
        for address in wallets.addresses_for(user_id):
            holdings.extend(await self.assets.snapshot(address))
        return holdings

    @staticmethod
    def _rule_for(candidate: _Candidate, rules: RuleRepository) -> VerificationRule | None:
        """Resolve the rule behind an assignment.

        Legacy grants carry no rule id; they are re-checked against the
        server's legacy role (any collection, at least one item) while that
        role is still the one configured for the server.
        """
        if candidate.rule_id is not None:
            return rules.get(candidate.rule_id)
        if rules.get_legacy_role_id(candidate.server_id) != candidate.role_id:
            return None
        return VerificationRule(
            id=None,
            server_id=candidate.server_id,
            role_id=candidate.role_id,
            min_items=1,
        )

    async def _check(
        self,
        candidate: _Candidate,
        tracker: RoleAssignmentTracker,
        rules: RuleRepository,
        wallets: WalletRepository,
        report: SweepReport,
    ) -> None:
        rule = self._rule_for(candidate, rules)
        if rule is None:
            logger.debug("Skipping assignment %s: rule %s no longer exists", candidate.id, candidate.rule_id)
            report.skipped += 1
            return

        if not await self.platform.is_member(candidate.user_id, candidate.server_id):
            logger.debug("Skipping assignment %s: user %s left server %s",
                         candidate.id, candidate.user_id, candidate.server_id)
            report.skipped += 1
            return

        report.checked += 1
        holdings = await self._holdings(wallets, candidate.user_id)
        if self.matcher.matches(rule, holdings, policy=self.matcher.policy_for(rule)):
            tracker.mark_checked(candidate.id)
            report.still_valid += 1
            return

        logger.info(
            "User %s no longer qualifies for role %s in server %s; revoking",
            candidate.user_id,
            candidate.role_id,
            candidate.server_id,
        )
        await self.platform.revoke(candidate.user_id, candidate.role_id, candidate.server_id)
        tracker.revoke(candidate.id)
        report.revoked += 1


class _SweeperSingleton:
    _instance: ReverificationSweeper | None = None

    @classmethod
    def get_instance(cls) -> ReverificationSweeper:
        if cls._instance is None:
            cls._instance = ReverificationSweeper()
        return cls._instance


def get_sweeper() -> ReverificationSweeper:
    """Return the process-wide sweeper."""
    return _SweeperSingleton.get_instance()
