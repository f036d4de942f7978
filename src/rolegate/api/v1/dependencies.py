"""Shared API dependencies for operator authentication and service wiring."""

from typing import Annotated, Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from rolegate.core.settings import settings
from rolegate.db.session import get_db
from rolegate.services.assets import AssetProvider, get_asset_provider
from rolegate.services.correlation import PendingReplyStore, get_pending_reply_store
from rolegate.services.discord import (
    NotificationChannel,
    PlatformRoleApi,
    get_notification_channel,
    get_platform_role_api,
)
from rolegate.services.nonce import NonceManager, get_nonce_manager
from rolegate.services.orchestrator import VerificationOrchestrator
from rolegate.services.signature import SignatureVerifier, get_signature_verifier
from rolegate.services.sweeper import ReverificationSweeper, get_sweeper

OPERATOR_SCOPE = "operator"

# HTTP Bearer scheme for operator JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]

NonceManagerDep = Annotated[NonceManager, Depends(get_nonce_manager)]
ReplyStoreDep = Annotated[PendingReplyStore, Depends(get_pending_reply_store)]
SignatureVerifierDep = Annotated[SignatureVerifier, Depends(get_signature_verifier)]
AssetProviderDep = Annotated[AssetProvider, Depends(get_asset_provider)]
PlatformRoleApiDep = Annotated[PlatformRoleApi, Depends(get_platform_role_api)]
NotificationChannelDep = Annotated[NotificationChannel, Depends(get_notification_channel)]
SweeperDep = Annotated[ReverificationSweeper, Depends(get_sweeper)]


def get_operator(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> dict[str, Any]:
    """Validate the bearer JWT presented by the bot/operator process.

    Returns:
        The decoded token claims

    Raises:
        HTTPException: If the token is invalid or lacks the operator scope
    """
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err

    if payload.get("scope") != OPERATOR_SCOPE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operator scope required",
        )
    return payload


# Type alias for operator dependency
OperatorDep = Annotated[dict[str, Any], Depends(get_operator)]


def get_orchestrator(
    db: SessionDep,
    nonces: NonceManagerDep,
    verifier: SignatureVerifierDep,
    assets: AssetProviderDep,
    platform: PlatformRoleApiDep,
    notifier: NotificationChannelDep,
) -> VerificationOrchestrator:
    """Build a request-scoped orchestrator bound to the request's session."""
    return VerificationOrchestrator.for_session(
        db,
        nonces=nonces,
        verifier=verifier,
        assets=assets,
        platform=platform,
        notifier=notifier,
    )


OrchestratorDep = Annotated[VerificationOrchestrator, Depends(get_orchestrator)]
