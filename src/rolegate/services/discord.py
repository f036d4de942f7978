"""Chat platform integration: role changes, membership checks and outcome replies.

The engine only sees the :class:`PlatformRoleApi` and
:class:`NotificationChannel` protocols; the Discord REST implementations
below are wired in by :func:`get_platform_role_api` and
:func:`get_notification_channel`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from rolegate.core.errors import PlatformApiError
from rolegate.core.settings import settings
from rolegate.services.correlation import PendingReplyStore, get_pending_reply_store

logger = logging.getLogger(__name__)

HTTP_NO_CONTENT = 204
HTTP_NOT_FOUND = 404
HTTP_TOO_MANY_REQUESTS = 429
HTTP_BAD_REQUEST = 400

COLOR_SUCCESS = 0x00FF00
COLOR_FAILURE = 0xFF0000


@dataclass(frozen=True)
class RoleGrant:
    """Result of an assign call."""

    already_held: bool


@dataclass(frozen=True)
class OutcomeNotification:
    """Summary of one verification attempt for the requester."""

    subject_id: str
    nonce: str
    success: bool
    message: str
    assigned_roles: list[str] = field(default_factory=list)
    already_held_roles: list[str] = field(default_factory=list)
    failed_roles: list[str] = field(default_factory=list)
    address: str | None = None

    def render(self) -> str:
        """Plain-text body shown to the requester."""
        if not self.success:
            return self.message
        lines = [self.message]
        if self.assigned_roles:
            lines.append("Roles granted: " + ", ".join(self.assigned_roles))
        if self.already_held_roles:
            lines.append("Already held: " + ", ".join(self.already_held_roles))
        if self.failed_roles:
            lines.append("Could not assign: " + ", ".join(self.failed_roles))
        return "\n".join(lines)


class PlatformRoleApi(Protocol):
    """Adds and removes access roles on the chat platform."""

    async def assign(self, subject_id: str, role_id: str, server_id: str) -> RoleGrant: ...

    async def revoke(self, subject_id: str, role_id: str, server_id: str) -> bool: ...

    async def is_member(self, subject_id: str, server_id: str) -> bool: ...


class NotificationChannel(Protocol):
    """Best-effort delivery of an outcome to the original requester."""

    async def notify(self, notification: OutcomeNotification) -> None: ...


@dataclass(frozen=True)
class DiscordConfig:
    """Immutable configuration for Discord REST calls."""

    bot_token: str | None
    application_id: str | None
    base_url: str
    timeout_seconds: float


def load_discord_config() -> DiscordConfig:
    """Build configuration object from global settings."""
    return DiscordConfig(
        bot_token=settings.discord_bot_token,
        application_id=settings.discord_application_id,
        base_url=settings.discord_api_base_url,
        timeout_seconds=float(settings.discord_http_timeout_seconds),
    )


class _DiscordHttp:
    """Lazily created HTTP client shared by the Discord wrappers."""

    def __init__(self, config: DiscordConfig | None = None) -> None:
        self.config = config or load_discord_config()
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                headers = {"User-Agent": f"{settings.app_name} ({settings.app_version})"}
                if self.config.bot_token:
                    headers["Authorization"] = f"Bot {self.config.bot_token}"
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url.rstrip("/"),
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    headers=headers,
                )
        return self._client

    async def _request(self, method: str, path: str, json_data: Any | None = None) -> httpx.Response:
        client = await self._ensure_client()
        try:
            response = await client.request(method, path, json=json_data)
        except httpx.HTTPError as exc:
            raise PlatformApiError(f"Discord request failed: {exc}") from exc

        if response.status_code == HTTP_TOO_MANY_REQUESTS:
            retry_after = response.headers.get("Retry-After")
            raise PlatformApiError(f"Discord rate limited {method} {path} (retry after {retry_after})")
        return response

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


class DiscordRoleClient(_DiscordHttp):
    """Guild member role management over Discord REST v10."""

    async def _member(self, subject_id: str, server_id: str) -> dict[str, Any] | None:
        response = await self._request("GET", f"/guilds/{server_id}/members/{subject_id}")
        if response.status_code == HTTP_NOT_FOUND:
            return None
        if response.status_code >= HTTP_BAD_REQUEST:
            raise PlatformApiError(
                f"Discord member lookup responded with {response.status_code}",
            )
        return response.json()

    async def is_member(self, subject_id: str, server_id: str) -> bool:
        return await self._member(subject_id, server_id) is not None

    async def assign(self, subject_id: str, role_id: str, server_id: str) -> RoleGrant:
        member = await self._member(subject_id, server_id)
        if member is None:
            raise PlatformApiError(f"User {subject_id} is not a member of guild {server_id}")
        if role_id in (member.get("roles") or []):
            return RoleGrant(already_held=True)

        response = await self._request(
            "PUT",
            f"/guilds/{server_id}/members/{subject_id}/roles/{role_id}",
        )
        if response.status_code >= HTTP_BAD_REQUEST:
            raise PlatformApiError(
                f"Discord role assignment responded with {response.status_code}",
            )
        logger.info("Assigned role %s to user %s in guild %s", role_id, subject_id, server_id)
        return RoleGrant(already_held=False)

    async def revoke(self, subject_id: str, role_id: str, server_id: str) -> bool:
        """Remove the role; returns False if the member or role is already gone."""
        response = await self._request(
            "DELETE",
            f"/guilds/{server_id}/members/{subject_id}/roles/{role_id}",
        )
        if response.status_code == HTTP_NOT_FOUND:
            return False
        if response.status_code >= HTTP_BAD_REQUEST:
            raise PlatformApiError(
                f"Discord role removal responded with {response.status_code}",
            )
        logger.info("Removed role %s from user %s in guild %s", role_id, subject_id, server_id)
        return True


class DiscordNotificationChannel(_DiscordHttp):
    """Edits the deferred interaction reply that started the verification."""

    def __init__(
        self,
        config: DiscordConfig | None = None,
        replies: PendingReplyStore | None = None,
    ) -> None:
        super().__init__(config)
        self._replies = replies or get_pending_reply_store()

    async def notify(self, notification: OutcomeNotification) -> None:
        target = self._replies.pop(notification.nonce)
        if target is None or not target.interaction_token:
            logger.debug("No pending reply for subject %s", notification.subject_id)
            return
        if not self.config.application_id:
            logger.warning("DISCORD_APPLICATION_ID unset; cannot reply to subject %s",
                           notification.subject_id)
            return

        embed = {
            "title": "Verification Successful" if notification.success else "Verification Failed",
            "description": notification.render(),
            "color": COLOR_SUCCESS if notification.success else COLOR_FAILURE,
        }
        path = (
            f"/webhooks/{self.config.application_id}/{target.interaction_token}"
            "/messages/@original"
        )
        response = await self._request("PATCH", path, json_data={"embeds": [embed]})
        if response.status_code >= HTTP_BAD_REQUEST:
            raise PlatformApiError(
                f"Discord reply edit responded with {response.status_code}",
            )


class LoggingNotificationChannel:
    """Fallback channel that only logs outcomes."""

    async def notify(self, notification: OutcomeNotification) -> None:
        logger.info(
            "Verification outcome for subject %s: success=%s %s",
            notification.subject_id,
            notification.success,
            notification.render().replace("\n", "; "),
        )


class _PlatformSingleton:
    _roles: DiscordRoleClient | None = None
    _notifier: NotificationChannel | None = None

    @classmethod
    def roles(cls) -> DiscordRoleClient:
        if cls._roles is None:
            cls._roles = DiscordRoleClient()
        return cls._roles

    @classmethod
    def notifier(cls) -> NotificationChannel:
        if cls._notifier is None:
            if settings.discord_enabled:
                cls._notifier = DiscordNotificationChannel()
            else:
                cls._notifier = LoggingNotificationChannel()
        return cls._notifier


def get_platform_role_api() -> PlatformRoleApi:
    """Return the process-wide role client."""
    return _PlatformSingleton.roles()


def get_notification_channel() -> NotificationChannel:
    """Return the configured outcome channel (Discord or log-only)."""
    return _PlatformSingleton.notifier()
