"""Operator-facing system endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from rolegate.api.v1.dependencies import OperatorDep, SessionDep
from rolegate.core.settings import settings
from rolegate.services.assignments import RoleAssignmentTracker

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/config")
async def get_public_config() -> dict[str, object]:
    """Return a sanitized snapshot of runtime configuration.

    Excludes secrets and connection strings. The verification page uses the
    EIP-712 domain to build the message it asks the wallet to sign.
    """
    return {
        "app": {"name": settings.app_name, "version": settings.app_version},
        "eip712": {
            "name": settings.eip712_domain_name,
            "version": settings.eip712_domain_version,
            "chainId": settings.eip712_chain_id,
        },
        "nonce_ttl_seconds": settings.nonce_ttl_seconds,
        "reverify": {
            "enabled": settings.reverify_enabled,
            "interval_seconds": settings.reverify_interval_seconds,
        },
    }


@router.get("/assignments/stats")
async def get_assignment_stats(_operator: OperatorDep, db: SessionDep) -> dict[str, int]:
    """Count role assignments per status."""
    return RoleAssignmentTracker(db).status_counts()
