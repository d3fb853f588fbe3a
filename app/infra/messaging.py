"""
Outbound messaging.

WhatsApp Cloud API channel. Replies produced by the conversation flow are
already Cloud API payloads ({"type": "text", "text": {"body": ...}}); the
channel adds the envelope and posts them to
{base}/{version}/{phone_number_id}/messages.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from app.config import get_settings
from app.core.scheduling.errors import TransientDependencyError

logger = logging.getLogger(__name__)


class MessagingChannel(ABC):
    """Sends one reply payload to a counterparty."""

    @abstractmethod
    async def send(self, clinic_id: str, to: str, payload: dict) -> Optional[str]:
        """Send a message on behalf of a clinic.

        Returns:
            Provider message id, if the provider returned one
        """

    async def close(self) -> None:
        return None


class WhatsAppChannel(MessagingChannel):
    """
    HTTP client for the WhatsApp Cloud API.

    Endpoint:
    - POST /{version}/{phone_number_id}/messages - Send message
    """

    def __init__(
        self,
        phone_number_id: Optional[str] = None,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize channel.

        Args:
            phone_number_id: Sender phone number id (defaults to settings)
            access_token: Bearer token (defaults to settings)
            base_url: Graph API base URL
            api_version: Graph API version, e.g. v17.0
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        settings = get_settings()
        self.phone_number_id = phone_number_id or settings.whatsapp_phone_number_id
        self.access_token = access_token or settings.whatsapp_access_token
        self.base_url = (base_url or settings.whatsapp_api_base_url).rstrip("/")
        self.api_version = api_version or settings.whatsapp_api_version
        self.timeout = timeout or settings.messaging_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/{self.api_version}/{self.phone_number_id}/messages"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(self, clinic_id: str, to: str, payload: dict) -> Optional[str]:
        """Post one message. All clinics share the configured sender number.

        Raises:
            TransientDependencyError: request failed or provider rejected it
        """
        client = await self._get_client()
        body = {"messaging_product": "whatsapp", "to": to, **payload}

        try:
            response = await client.post(
                self.messages_url,
                json=body,
                headers={"Authorization": f"Bearer {self.access_token}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to send WhatsApp message to {to} for {clinic_id}: {e}")
            raise TransientDependencyError("Messaging provider unavailable") from e

        data = response.json() if response.content else {}
        messages = data.get("messages") or []
        message_id = messages[0].get("id") if messages else None
        logger.debug(f"WhatsApp message sent to {to}: {message_id}")
        return message_id


# Singleton
_channel: Optional[WhatsAppChannel] = None


def get_messaging_channel() -> Optional[WhatsAppChannel]:
    """Get singleton WhatsAppChannel, or None when credentials are missing."""
    global _channel
    if _channel is None:
        if not get_settings().messaging_configured:
            return None
        _channel = WhatsAppChannel()
    return _channel


async def close_messaging_channel() -> None:
    """Close the shared channel (application shutdown)."""
    global _channel
    if _channel is not None:
        await _channel.close()
        _channel = None
