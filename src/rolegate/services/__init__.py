"""Verification engine services for RoleGate."""

from .assignments import RoleAssignmentTracker
from .matcher import RuleMatcher
from .nonce import NonceManager
from .orchestrator import VerificationOrchestrator
from .signature import SignatureVerifier
from .sweeper import ReverificationSweeper

__all__ = [
    "NonceManager",
    "SignatureVerifier",
    "RuleMatcher",
    "RoleAssignmentTracker",
    "VerificationOrchestrator",
    "ReverificationSweeper",
]
