"""SQLAlchemy models for the RoleGate service."""

from .legacy_server import LegacyServer
from .role_assignment import AssignmentStatus, RoleAssignment
from .rule import VerifierRule
from .user_wallet import UserWallet

__all__ = [
    "AssignmentStatus",
    "LegacyServer",
    "RoleAssignment",
    "UserWallet",
    "VerifierRule",
]
