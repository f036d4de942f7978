"""Verification endpoints: challenge issuance, signature submission, reverification."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, HTTPException, status
from pydantic import ValidationError

from rolegate.api.v1.dependencies import (
    NonceManagerDep,
    OperatorDep,
    OrchestratorDep,
    ReplyStoreDep,
    SweeperDep,
)
from rolegate.core.errors import (
    InsufficientHoldings,
    NoApplicableRules,
    NonceInvalidOrExpired,
    SignatureMismatch,
    StoreError,
    UnexpectedOrchestratorFailure,
    VerificationError,
    VerificationExpired,
)
from rolegate.core.rules import NonceContext
from rolegate.schemas.verification import (
    ChallengeRequest,
    ChallengeResponse,
    SweepReportResponse,
    VerifySignatureRequest,
    VerifySignatureResponse,
)
from rolegate.services.correlation import ReplyTarget

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/verification", tags=["verification"])

ERROR_STATUS: dict[type[VerificationError], int] = {
    NonceInvalidOrExpired: status.HTTP_400_BAD_REQUEST,
    VerificationExpired: status.HTTP_400_BAD_REQUEST,
    SignatureMismatch: status.HTTP_401_UNAUTHORIZED,
    NoApplicableRules: status.HTTP_404_NOT_FOUND,
    InsufficientHoldings: status.HTTP_403_FORBIDDEN,
    UnexpectedOrchestratorFailure: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _error_detail(code: str, message: str) -> dict[str, str]:
    return {"code": code, "message": message}


@router.post("/challenge", response_model=ChallengeResponse, status_code=status.HTTP_201_CREATED)
async def issue_challenge(
    request: ChallengeRequest,
    _operator: OperatorDep,
    nonces: NonceManagerDep,
    replies: ReplyStoreDep,
) -> ChallengeResponse:
    """Issue a fresh nonce for a subject, replacing any earlier one."""
    context = NonceContext(message_id=request.message_id, channel_id=request.channel_id)
    try:
        nonce = nonces.create(request.subject_id, context)
        if request.reply_token:
            replies.remember(
                nonce,
                ReplyTarget(
                    subject_id=request.subject_id,
                    interaction_token=request.reply_token,
                    channel_id=request.channel_id,
                ),
            )
    except StoreError as err:
        logger.error("Challenge store unavailable: %s", err)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error_detail("store_unavailable", "Challenge storage is unavailable"),
        ) from err

    return ChallengeResponse(nonce=nonce, expiry=int(time.time()) + nonces.ttl_seconds)


@router.post("/verify-signature", response_model=VerifySignatureResponse)
async def verify_signature(
    request: VerifySignatureRequest,
    orchestrator: OrchestratorDep,
) -> VerifySignatureResponse:
    """Verify a wallet-signed ticket and grant the roles it qualifies for."""
    try:
        ticket = request.ticket()
    except (ValueError, ValidationError) as err:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_detail("invalid_ticket", "Verification data is malformed"),
        ) from err

    try:
        outcome = await orchestrator.verify(ticket, request.signature)
    except VerificationError as err:
        raise HTTPException(
            status_code=ERROR_STATUS.get(type(err), status.HTTP_400_BAD_REQUEST),
            detail=_error_detail(err.code, err.user_message),
        ) from err

    return VerifySignatureResponse(
        success=outcome.success,
        address=outcome.address,
        assigned_roles=[o.rule.role_id for o in outcome.assigned],
        already_held_roles=[o.rule.role_id for o in outcome.already_held],
        failed_roles=[o.rule.role_id for o in outcome.failed],
        message=outcome.message,
    )


@router.post("/reverify", response_model=SweepReportResponse)
async def reverify_all(_operator: OperatorDep, sweeper: SweeperDep) -> SweepReportResponse:
    """Run one reverification pass over every active assignment."""
    report = await sweeper.run_once()
    return SweepReportResponse(**report.as_dict())


@router.post("/reverify/{subject_id}", response_model=SweepReportResponse)
async def reverify_subject(
    subject_id: str,
    _operator: OperatorDep,
    sweeper: SweeperDep,
) -> SweepReportResponse:
    """Re-check the active assignments of a single subject."""
    report = await sweeper.run_for_subject(subject_id)
    return SweepReportResponse(**report.as_dict())
