"""
Discord Delivery Sink — direct messages through the Discord REST API.

Flow per recipient:
1. resolve() → GET /guilds/{guild}/members/{user}   (404 → unreachable)
2. deliver() → POST /users/@me/channels              (open DM, cached)
            → POST /channels/{dm}/messages          (send content)

Error classification:
  429                              → RateLimitedError (retry_after from body/header)
  codes 50007 / 50001 / 10013      → PermanentDeliveryError
  403 / 404                        → PermanentDeliveryError
  5xx, other 4xx, network errors   → TransientDeliveryError

API Docs: https://discord.com/developers/docs/resources/user#create-dm
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

import httpx

from channels.base import (
    DeliverySink, DeliveryError, PermanentDeliveryError,
    RateLimitedError, TransientDeliveryError,
)
from models.schemas import BroadcastContext, RecipientHandle

logger = structlog.get_logger()

MAX_MESSAGE_LENGTH = 2000

# Discord JSON error codes that will never succeed on retry
PERMANENT_ERROR_CODES = {
    50007: "Cannot send messages to this user",
    50001: "Missing access",
    10013: "Unknown user",
}


def classify_response(resp: httpx.Response) -> DeliveryError:
    """Map a failed Discord response to a delivery error."""
    body: dict[str, Any] = {}
    try:
        parsed = resp.json()
        if isinstance(parsed, dict):
            body = parsed
    except ValueError:
        pass

    if resp.status_code == 429:
        retry_after = body.get("retry_after")
        if retry_after is None:
            retry_after = resp.headers.get("Retry-After")
        retry_after_ms = float(retry_after) * 1000 if retry_after is not None else None
        return RateLimitedError(retry_after_ms, channel="discord")

    code = body.get("code")
    if code in PERMANENT_ERROR_CODES:
        return PermanentDeliveryError(
            f"{PERMANENT_ERROR_CODES[code]} (code {code})", channel="discord"
        )
    if resp.status_code in (403, 404):
        return PermanentDeliveryError(
            body.get("message") or f"HTTP {resp.status_code}", channel="discord"
        )
    return TransientDeliveryError(
        body.get("message") or f"HTTP {resp.status_code}", channel="discord"
    )


class DiscordDeliverySink(DeliverySink):
    """Sends broadcast DMs as a Discord bot."""

    channel = "discord"

    def __init__(
        self,
        bot_token: str,
        api_base_url: str = "https://discord.com/api/v10",
        timeout_s: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self.bot_token = bot_token
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._dm_channels: dict[str, str] = {}   # user id → DM channel id

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.api_base_url,
                headers={
                    "Authorization": f"Bot {self.bot_token}",
                    "User-Agent": "DiscordBot (safe-broadcast, 1.0)",
                },
                timeout=httpx.Timeout(self.timeout_s, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        try:
            return await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TransientDeliveryError(f"Network error: {e}", channel="discord") from e

    # ── Lookup ──────────────────────────────────────────────

    async def get_context(self, context_id: str) -> Optional[BroadcastContext]:
        resp = await self._request("GET", f"/guilds/{context_id}")
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise classify_response(resp)
        data = resp.json()
        return BroadcastContext(id=str(data["id"]), name=data.get("name", ""))

    async def resolve(self, recipient_id: str, context: BroadcastContext) -> Optional[RecipientHandle]:
        resp = await self._request("GET", f"/guilds/{context.id}/members/{recipient_id}")
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise classify_response(resp)

        user = resp.json().get("user") or {}
        if user.get("bot"):
            return None
        username = user.get("username", "")
        discriminator = user.get("discriminator", "0")
        tag = username if discriminator in ("0", "", None) else f"{username}#{discriminator}"
        return RecipientHandle(
            id=str(user.get("id", recipient_id)),
            username=username,
            tag=tag,
            mention=f"<@{user.get('id', recipient_id)}>",
        )

    # ── Send ────────────────────────────────────────────────

    async def _open_dm(self, user_id: str) -> str:
        if user_id in self._dm_channels:
            return self._dm_channels[user_id]
        resp = await self._request("POST", "/users/@me/channels", json={"recipient_id": user_id})
        if resp.status_code >= 400:
            raise classify_response(resp)
        channel_id = str(resp.json()["id"])
        self._dm_channels[user_id] = channel_id
        return channel_id

    async def _do_deliver(self, handle: RecipientHandle, text: str) -> None:
        channel_id = await self._open_dm(handle.id)
        content = text[:MAX_MESSAGE_LENGTH]
        resp = await self._request("POST", f"/channels/{channel_id}/messages", json={"content": content})
        if resp.status_code >= 400:
            error = classify_response(resp)
            logger.warning("discord_send_failed",
                           recipient=handle.tag,
                           status=resp.status_code,
                           kind=error.kind,
                           reason=str(error))
            raise error

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
