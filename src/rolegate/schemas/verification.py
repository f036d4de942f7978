"""Verification-related Pydantic schemas."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Field order of the positional JSON array embedded in verification links.
TICKET_ARRAY_FIELDS: tuple[str, ...] = (
    "userId",
    "userTag",
    "avatar",
    "discordId",
    "discordName",
    "discordIcon",
    "role",
    "roleName",
    "nonce",
    "expiry",
    "address",
)


class VerificationTicket(BaseModel):
    """Payload signed by the holder's wallet; immutable and bound to one nonce."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    subject_id: str = Field(..., min_length=1, alias="userId", description="Platform user id")
    subject_tag: str = Field("", alias="userTag", description="Platform user tag")
    avatar_url: str | None = Field(None, alias="avatar", description="Avatar URL")
    server_id: str = Field(..., min_length=1, alias="discordId", description="Server/guild id")
    server_name: str = Field("", alias="discordName", description="Server/guild name")
    server_icon_url: str | None = Field(None, alias="discordIcon", description="Server icon URL")
    legacy_role_id: str | None = Field(None, alias="role", description="Deprecated single role id")
    legacy_role_name: str | None = Field(None, alias="roleName", description="Deprecated role name")
    nonce: str = Field(..., min_length=1, description="Challenge issued for this attempt")
    expiry_unix_seconds: int = Field(..., alias="expiry", description="Unix expiry timestamp")
    claimed_address: str = Field(..., min_length=1, alias="address", description="Signing address")

    @field_validator(
        "subject_tag",
        "server_name",
        mode="before",
    )
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator(
        "avatar_url",
        "server_icon_url",
        "legacy_role_id",
        "legacy_role_name",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if value is None:
            return None
        text = str(value)
        return text or None

    @field_validator("subject_id", "server_id", "nonce", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        # Snowflake ids may arrive as JSON numbers.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @classmethod
    def from_wire(cls, data: Any, address: str | None = None) -> VerificationTicket:
        """Build a ticket from an object, a positional array or a base64 JSON string."""
        if isinstance(data, str):
            data = _decode_base64_json(data)
        if isinstance(data, list):
            if len(data) < len(TICKET_ARRAY_FIELDS) - 1:
                raise ValueError("Ticket array is missing fields")
            data = dict(zip(TICKET_ARRAY_FIELDS, data, strict=False))
        if not isinstance(data, dict):
            raise ValueError("Ticket must be an object, an array or a base64 string")
        if address and not (data.get("address") or data.get("claimed_address")):
            data = {**data, "address": address}
        return cls.model_validate(data)


def _decode_base64_json(encoded: str) -> Any:
    text = encoded.strip()
    padding = "=" * (-len(text) % 4)
    try:
        try:
            raw = base64.b64decode(text + padding, validate=True)
        except binascii.Error:
            raw = base64.urlsafe_b64decode(text + padding)
        return json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as err:
        raise ValueError(f"Invalid ticket encoding: {err}") from err


class VerifySignatureRequest(BaseModel):
    """Body posted by the verification page after the wallet signs."""

    data: dict[str, Any] | list[Any] | str = Field(
        ...,
        description="Ticket object, positional array, or base64-encoded JSON",
    )
    signature: str = Field(..., min_length=1, description="0x-prefixed EIP-712 signature")
    address: str | None = Field(
        None,
        description="Signing address when the ticket array omits it",
    )

    def ticket(self) -> VerificationTicket:
        return VerificationTicket.from_wire(self.data, address=self.address)


class VerifySignatureResponse(BaseModel):
    """Result of a successful verification."""

    success: bool = Field(..., description="True if at least one role was assigned")
    address: str | None = Field(None, description="Recovered wallet address")
    assigned_roles: list[str] = Field(default_factory=list, description="Newly assigned role ids")
    already_held_roles: list[str] = Field(
        default_factory=list,
        description="Role ids the subject already held",
    )
    failed_roles: list[str] = Field(
        default_factory=list,
        description="Satisfied role ids whose assignment failed",
    )
    message: str = Field(..., description="User-facing summary")


class ChallengeRequest(BaseModel):
    """Request from the chat bot to issue a challenge for a subject."""

    subject_id: str = Field(..., min_length=1, description="Platform user id")
    message_id: str | None = Field(None, description="Verification surface message id")
    channel_id: str | None = Field(None, description="Channel the request came from")
    reply_token: str | None = Field(
        None,
        description="Interaction token used to report the outcome back to the requester",
    )


class ChallengeResponse(BaseModel):
    """Challenge material to embed in the verification link."""

    nonce: str = Field(..., description="Single-use challenge")
    expiry: int = Field(..., description="Unix timestamp after which the challenge is dead")


class SweepReportResponse(BaseModel):
    """Counters from one reverification pass."""

    checked: int
    still_valid: int
    revoked: int
    expired: int
    skipped: int
    errors: int

    model_config = ConfigDict(from_attributes=True)
