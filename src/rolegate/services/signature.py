"""Wallet signature verification over EIP-712 typed verification tickets."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from eth_account import Account
from eth_account.messages import encode_typed_data

from rolegate.core.errors import SignatureMismatch, VerificationExpired
from rolegate.core.settings import settings
from rolegate.schemas.verification import VerificationTicket

logger = logging.getLogger(__name__)

PRIMARY_TYPE = "Verification"

# The deprecated role fields stay in the signed schema; wallets that signed
# older links must still verify.
VERIFICATION_FIELDS: list[dict[str, str]] = [
    {"name": "UserID", "type": "string"},
    {"name": "UserTag", "type": "string"},
    {"name": "ServerID", "type": "string"},
    {"name": "ServerName", "type": "string"},
    {"name": "RoleID", "type": "string"},
    {"name": "RoleName", "type": "string"},
    {"name": "Nonce", "type": "string"},
    {"name": "Expiry", "type": "uint256"},
]

DOMAIN_FIELDS: list[dict[str, str]] = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
]


def _decode_signature(signature: str) -> bytes:
    raw = signature.strip()
    if raw.startswith(("0x", "0X")):
        raw = raw[2:]
    try:
        return bytes.fromhex(raw)
    except ValueError as exc:
        raise SignatureMismatch("Signature must be hex encoded") from exc


class SignatureVerifier:
    """Recovers the signer of a ticket and checks it against the claimed address."""

    def __init__(
        self,
        *,
        domain_name: str | None = None,
        domain_version: str | None = None,
        chain_id: int | None = None,
        case_insensitive: bool | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.domain = {
            "name": domain_name or settings.eip712_domain_name,
            "version": domain_version or settings.eip712_domain_version,
            "chainId": chain_id if chain_id is not None else settings.eip712_chain_id,
        }
        self.case_insensitive = (
            settings.signature_address_case_insensitive
            if case_insensitive is None
            else case_insensitive
        )
        self._clock = clock

    def typed_data(self, ticket: VerificationTicket) -> dict[str, Any]:
        """Return the full EIP-712 structure the wallet is asked to sign."""
        return {
            "types": {
                "EIP712Domain": DOMAIN_FIELDS,
                PRIMARY_TYPE: VERIFICATION_FIELDS,
            },
            "primaryType": PRIMARY_TYPE,
            "domain": dict(self.domain),
            "message": {
                "UserID": ticket.subject_id,
                "UserTag": ticket.subject_tag,
                "ServerID": ticket.server_id,
                "ServerName": ticket.server_name,
                "RoleID": ticket.legacy_role_id or "",
                "RoleName": ticket.legacy_role_name or "",
                "Nonce": ticket.nonce,
                "Expiry": ticket.expiry_unix_seconds,
            },
        }

    def recover(self, ticket: VerificationTicket, signature: str) -> str:
        """Return the checksummed address that produced ``signature``."""
        signable = encode_typed_data(full_message=self.typed_data(ticket))
        try:
            return Account.recover_message(signable, signature=_decode_signature(signature))
        except SignatureMismatch:
            raise
        except Exception as exc:
            logger.info("Signature recovery failed for subject %s: %s", ticket.subject_id, exc)
            raise SignatureMismatch("Signature could not be recovered") from exc

    def verify(self, ticket: VerificationTicket, signature: str) -> str:
        """Check expiry then signer; return the recovered address.

        Raises:
            VerificationExpired: ``now >= ticket.expiry_unix_seconds``.
            SignatureMismatch: the recovered signer is not the claimed address.
        """
        if not self._clock() < ticket.expiry_unix_seconds:
            raise VerificationExpired()

        recovered = self.recover(ticket, signature)
        if not self._same_address(recovered, ticket.claimed_address):
            logger.info(
                "Signer mismatch for subject %s: recovered %s, claimed %s",
                ticket.subject_id,
                recovered,
                ticket.claimed_address,
            )
            raise SignatureMismatch()
        return recovered

    def _same_address(self, recovered: str, claimed: str) -> bool:
        if self.case_insensitive:
            return recovered.lower() == claimed.lower()
        return recovered == claimed


def get_signature_verifier() -> SignatureVerifier:
    """Return a verifier configured from settings."""
    return SignatureVerifier()
