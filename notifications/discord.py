"""
Discord transports for stock notifications.

This module provides:
- Webhook and bot-channel notifiers (single text blob in, success or SendError out)
- Deferred replies for slash command interactions
- Slash command registration
- Ed25519 verification of incoming interaction requests
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
import structlog
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from pipeline.exceptions import SendError
from utilities.config import NotifierConfig
from utilities.logger import CycleLogger

logger = structlog.get_logger(__name__)

# Discord rejects message content longer than this
MAX_CONTENT_LENGTH = 2000

STOCK_COMMAND = {
    "name": "stock",
    "description": "Get the latest garden gear, seeds, eggs, and weather.",
    "type": 1,
}


def truncate_content(content: str, limit: int = MAX_CONTENT_LENGTH) -> str:
    """Clip content to Discord's message limit."""
    if len(content) <= limit:
        return content
    logger.warning("Notification content truncated", length=len(content), limit=limit)
    return content[:limit - 1] + "…"


class Notifier(ABC):
    """Notification transport collaborator."""

    name = "notifier"

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport
        self.cycle_logger = CycleLogger("notifier")

    def _client(self) -> httpx.AsyncClient:
        kwargs: Dict[str, Any] = {"timeout": self.timeout}
        if self.transport is not None:
            kwargs["transport"] = self.transport
        return httpx.AsyncClient(**kwargs)

    async def send(self, content: str) -> None:
        """
        Deliver one formatted text blob.

        Raises:
            SendError: on transport failure or non-2xx response
        """
        try:
            async with self._client() as client:
                response = await self._post(client, truncate_content(content))
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self.cycle_logger.log_send(self.name, False, str(e))
            raise SendError(
                f"{self.name} rejected notification: {e}",
                transport=self.name,
                status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            self.cycle_logger.log_send(self.name, False, str(e))
            raise SendError(f"{self.name} delivery failed: {e}", transport=self.name) from e

        self.cycle_logger.log_send(self.name, True)

    @abstractmethod
    async def _post(self, client: httpx.AsyncClient, content: str) -> httpx.Response:
        """Issue the transport-specific request."""


class WebhookNotifier(Notifier):
    """Posts {content} to a Discord webhook URL."""

    name = "webhook"

    def __init__(self, webhook_url: str, **kwargs):
        super().__init__(**kwargs)
        self.webhook_url = webhook_url

    async def _post(self, client: httpx.AsyncClient, content: str) -> httpx.Response:
        return await client.post(self.webhook_url, json={"content": content})


class BotChannelNotifier(Notifier):
    """Sends a channel message through the bot's REST API."""

    name = "bot_channel"

    def __init__(self, bot_token: str, channel_id: str, api_base: str = "https://discord.com/api/v10", **kwargs):
        super().__init__(**kwargs)
        self.bot_token = bot_token
        self.channel_id = channel_id
        self.api_base = api_base.rstrip("/")

    async def _post(self, client: httpx.AsyncClient, content: str) -> httpx.Response:
        return await client.post(
            f"{self.api_base}/channels/{self.channel_id}/messages",
            json={"content": content},
            headers={"Authorization": f"Bot {self.bot_token}"}
        )


def build_notifier(config: NotifierConfig) -> Optional[Notifier]:
    """
    Pick the configured notification target.

    The webhook wins when both are set; None means sending is disabled.
    """
    if config.has_webhook():
        return WebhookNotifier(config.discord_webhook_url, timeout=config.send_timeout)
    if config.has_bot_channel():
        return BotChannelNotifier(
            config.discord_bot_token,
            config.discord_channel_id,
            api_base=config.discord_api_base,
            timeout=config.send_timeout
        )

    logger.warning("No Discord notification target configured; notifications disabled")
    return None


class DeferredReply:
    """
    Reply flow for a slash command interaction.

    The interaction is acknowledged first (a type 5 deferred response);
    the final content is then delivered exactly once by editing the original
    response message.
    """

    def __init__(
        self,
        application_id: str,
        interaction_token: str,
        api_base: str = "https://discord.com/api/v10",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.application_id = application_id
        self.interaction_token = interaction_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.acknowledged = False
        self._completed = False
        self._lock = asyncio.Lock()

    @property
    def completed(self) -> bool:
        return self._completed

    def acknowledge(self) -> Dict[str, Any]:
        """Body of the immediate deferred response."""
        self.acknowledged = True
        return {"type": 5}

    @property
    def edit_url(self) -> str:
        return f"{self.api_base}/webhooks/{self.application_id}/{self.interaction_token}/messages/@original"

    async def complete(self, content: str) -> bool:
        """
        Deliver the final content. Later calls are ignored.

        Returns:
            True if this call delivered the content
        """
        async with self._lock:
            if self._completed:
                logger.debug("Deferred reply already completed")
                return False
            self._completed = True

        kwargs: Dict[str, Any] = {"timeout": self.timeout}
        if self.transport is not None:
            kwargs["transport"] = self.transport

        try:
            async with httpx.AsyncClient(**kwargs) as client:
                response = await client.patch(self.edit_url, json={"content": truncate_content(content)})
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Failed to edit interaction reply", error=str(e))
            raise SendError(f"Interaction reply failed: {e}", transport="interaction") from e

        logger.info("Responded to /stock")
        return True


async def register_commands(
    config: NotifierConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> bool:
    """
    Register the /stock command for the configured guild (global if none).

    Returns:
        True on success; failures are logged, never raised
    """
    if not (config.discord_bot_token and config.discord_application_id):
        logger.info("Slash command registration skipped, bot token or application id missing")
        return False

    base = config.discord_api_base.rstrip("/")
    if config.discord_guild_id:
        url = f"{base}/applications/{config.discord_application_id}/guilds/{config.discord_guild_id}/commands"
    else:
        url = f"{base}/applications/{config.discord_application_id}/commands"

    kwargs: Dict[str, Any] = {"timeout": config.send_timeout}
    if transport is not None:
        kwargs["transport"] = transport

    logger.info("Registering slash command", command=STOCK_COMMAND["name"], guild_id=config.discord_guild_id)
    try:
        async with httpx.AsyncClient(**kwargs) as client:
            response = await client.put(
                url,
                json=[STOCK_COMMAND],
                headers={"Authorization": f"Bot {config.discord_bot_token}"}
            )
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error("Failed to register slash command", error=str(e))
        return False

    logger.info("Slash command registered", command=STOCK_COMMAND["name"])
    return True


def verify_signature(public_key_hex: str, signature_hex: str, timestamp: str, body: bytes) -> bool:
    """Verify the Ed25519 signature Discord attaches to interaction requests."""
    try:
        public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex))
        public_key.verify(bytes.fromhex(signature_hex), timestamp.encode() + body)
    except (InvalidSignature, ValueError):
        return False
    return True
