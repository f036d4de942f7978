"""Data access helpers for rules, assignments and wallets."""

from .assignment_repo import RoleAssignmentRepository
from .rule_repo import RuleRepository
from .wallet_repo import WalletRepository

__all__ = ["RoleAssignmentRepository", "RuleRepository", "WalletRepository"]
