"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .verification import (
    ChallengeRequest,
    ChallengeResponse,
    SweepReportResponse,
    VerificationTicket,
    VerifySignatureRequest,
    VerifySignatureResponse,
)

__all__ = [
    "ChallengeRequest", "ChallengeResponse",
    "SweepReportResponse",
    "VerificationTicket",
    "VerifySignatureRequest", "VerifySignatureResponse",
]
