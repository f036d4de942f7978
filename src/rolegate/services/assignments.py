"""Role assignment state machine.

Allowed transitions per (subject, server, role)::

    none    -> active    (first successful verification)
    active  -> active    (re-verification refreshes timestamps/metadata)
    revoked -> active    (reactivation, same row)
    expired -> active    (reactivation, same row)
    active  -> revoked   (sweeper: holdings no longer qualify)
    active  -> expired   (expiry policy: ``expires_at`` has passed)

This module is the only writer of ``RoleAssignment.status``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rolegate.core.errors import InvalidTransition, PersistenceFailure
from rolegate.db.time import utcnow
from rolegate.models import AssignmentStatus, RoleAssignment
from rolegate.repositories.assignment_repo import RoleAssignmentRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Activation:
    """Result of :meth:`RoleAssignmentTracker.activate`."""

    assignment_id: int
    previous_status: AssignmentStatus | None

    @property
    def created(self) -> bool:
        return self.previous_status is None

    @property
    def reactivated(self) -> bool:
        return self.previous_status in (AssignmentStatus.REVOKED, AssignmentStatus.EXPIRED)


class RoleAssignmentTracker:
    """Named transitions over ``verifier_user_roles`` rows."""

    def __init__(self, session: Session, clock: Callable[[], datetime] = utcnow) -> None:
        self.session = session
        self.repo = RoleAssignmentRepository(session)
        self._clock = clock

    def _commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceFailure(f"Could not persist role assignment: {exc}") from exc

    def activate(
        self,
        *,
        subject_id: str,
        server_id: str,
        role_id: str,
        rule_id: int | None = None,
        address: str | None = None,
        subject_name: str | None = None,
        server_name: str | None = None,
        role_name: str | None = None,
        expires_at: datetime | None = None,
    ) -> Activation:
        """Create, refresh or reactivate the assignment for the triple."""
        try:
            existing = self.repo.get(subject_id, server_id, role_id)
            previous = existing.assignment_status if existing is not None else None
            row = self.repo.upsert_active(
                user_id=subject_id,
                server_id=server_id,
                role_id=role_id,
                now=self._clock(),
                rule_id=rule_id,
                address=address,
                user_name=subject_name,
                server_name=server_name,
                role_name=role_name,
                expires_at=expires_at,
            )
            assignment_id = row.id
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceFailure(f"Could not upsert role assignment: {exc}") from exc
        self._commit()

        if previous is None:
            logger.info("Created assignment %s for user %s role %s", assignment_id, subject_id, role_id)
        elif previous is not AssignmentStatus.ACTIVE:
            logger.info(
                "Reactivated assignment %s (%s -> active) for user %s role %s",
                assignment_id,
                previous.value,
                subject_id,
                role_id,
            )
        return Activation(assignment_id=assignment_id, previous_status=previous)

    def _transition(self, assignment_id: int, target: AssignmentStatus) -> None:
        try:
            moved = self.repo.compare_and_set_status(
                assignment_id,
                expected=AssignmentStatus.ACTIVE,
                new=target,
                now=self._clock(),
            )
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceFailure(f"Could not update assignment {assignment_id}: {exc}") from exc

        if not moved:
            self.session.rollback()
            current = self.repo.get_by_id(assignment_id)
            state = current.status if current is not None else "missing"
            raise InvalidTransition(
                f"Assignment {assignment_id} cannot move {state} -> {target.value}",
            )
        self._commit()
        logger.info("Assignment %s moved active -> %s", assignment_id, target.value)

    def revoke(self, assignment_id: int) -> None:
        """active -> revoked."""
        self._transition(assignment_id, AssignmentStatus.REVOKED)

    def expire(self, assignment_id: int) -> None:
        """active -> expired."""
        self._transition(assignment_id, AssignmentStatus.EXPIRED)

    def mark_checked(self, assignment_id: int) -> bool:
        """Refresh ``last_checked_at`` of an active assignment without changing status."""
        try:
            touched = self.repo.touch(assignment_id, self._clock())
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceFailure(f"Could not touch assignment {assignment_id}: {exc}") from exc
        self._commit()
        return touched

    def active(self, limit: int | None = None) -> list[RoleAssignment]:
        """Active assignments, least recently checked first."""
        return self.repo.list_active(limit)

    def active_for_subject(self, subject_id: str) -> list[RoleAssignment]:
        return self.repo.list_active_for_user(subject_id)

    def due_for_expiry(self) -> list[RoleAssignment]:
        return list(self.repo.list_expired_due(self._clock()))

    def status_counts(self) -> dict[str, int]:
        return {status.value: self.repo.count_by_status(status) for status in AssignmentStatus}
