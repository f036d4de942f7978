"""Exception taxonomy for the verification engine.

Request-fatal errors (nonce, expiry, signature, rule resolution) abort the
whole verification. Per-rule errors (role API, persistence) are captured in
the per-rule outcome and never abort the remaining rules.
"""

from __future__ import annotations


class VerificationError(RuntimeError):
    """Base class for verification failures that are reported to the requester."""

    code: str = "verification_failed"
    user_message: str = "Verification failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.user_message)


class NonceInvalidOrExpired(VerificationError):
    code = "nonce_invalid_or_expired"
    user_message = "This verification link is invalid or has expired. Request a new one."


class VerificationExpired(VerificationError):
    code = "verification_expired"
    user_message = "This verification request has expired. Request a new one."


class SignatureMismatch(VerificationError):
    code = "signature_mismatch"
    user_message = "The wallet signature could not be verified."


class NoApplicableRules(VerificationError):
    code = "no_applicable_rules"
    user_message = "No verification rules are configured here yet. Contact a server admin."


class InsufficientHoldings(VerificationError):
    code = "insufficient_holdings"
    user_message = "Your wallet does not meet the requirements for any role here."


class UnexpectedOrchestratorFailure(VerificationError):
    code = "unexpected_failure"
    user_message = "Verification could not be completed. Please try again later."


class RuleFailure(RuntimeError):
    """Base class for failures isolated to a single rule's side effects."""

    code: str = "rule_failure"


class RoleApiFailure(RuleFailure):
    code = "role_api_failure"


class PersistenceFailure(RuleFailure):
    code = "persistence_failure"


class InvalidTransition(RuntimeError):
    """Raised when a role assignment transition is not allowed from its current status."""


class AssetProviderError(RuntimeError):
    """Raised when the holdings data source cannot be queried."""


class PlatformApiError(RuntimeError):
    """Raised when the chat platform API rejects or fails a request."""


class StoreError(RuntimeError):
    """Raised when the key-value store backend is unavailable."""
