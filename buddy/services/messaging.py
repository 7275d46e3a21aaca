"""Outbound messaging gateway.

The scheduler only needs ``send(subscriber_id, text) -> SendResult``; a send
with ``failed > 0`` is a delivery failure the scheduler retries later.
"""

from dataclasses import dataclass
from typing import Protocol

import httpx

from buddy.core.logging import get_logger
from buddy.core.retry import RetryConfig, retry_with_backoff

logger = get_logger(__name__)

DEFAULT_SEPARATOR = "---"


@dataclass
class SendResult:
    """Outcome of sending one logical message (possibly several parts)."""

    successful: int
    failed: int

    @property
    def ok(self) -> bool:
        return self.failed == 0


class MessagingGateway(Protocol):
    """Protocol for message delivery channels."""

    async def send(self, subscriber_id: str, text: str) -> SendResult: ...


def split_message(text: str, separator: str = DEFAULT_SEPARATOR) -> list[str]:
    """Split text on a separator line into non-empty, trimmed parts."""
    return [part.strip() for part in text.split(separator) if part.strip()]


class WhatsAppGateway:
    """WhatsApp Cloud API sender. Subscriber ids are phone numbers."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        access_token: str,
        phone_number_id: str,
        api_base: str = "https://graph.facebook.com/v18.0",
        retry: RetryConfig | None = None,
    ) -> None:
        self._client = client
        self._access_token = access_token
        self._phone_number_id = phone_number_id
        self._api_base = api_base.rstrip("/")
        self._retry = retry or RetryConfig()

    def _is_configured(self) -> bool:
        return bool(self._access_token and self._phone_number_id)

    async def send(self, subscriber_id: str, text: str) -> SendResult:
        """Send text, split on ``---`` into separate messages."""
        parts = split_message(text)
        if not parts:
            logger.bind(subscriber_id=subscriber_id).warning("whatsapp_nothing_to_send")
            return SendResult(successful=0, failed=0)

        if not self._is_configured():
            logger.bind(subscriber_id=subscriber_id).error("whatsapp_not_configured")
            return SendResult(successful=0, failed=len(parts))

        successful = 0
        failed = 0
        for part in parts:
            if await self._send_part(subscriber_id, part):
                successful += 1
            else:
                failed += 1

        return SendResult(successful=successful, failed=failed)

    async def _send_part(self, to_phone: str, body: str) -> bool:
        payload = {
            "messaging_product": "whatsapp",
            "to": to_phone,
            "text": {"body": body},
        }

        async def _post() -> httpx.Response:
            return await self._client.post(
                f"{self._api_base}/{self._phone_number_id}/messages",
                headers={"Authorization": f"Bearer {self._access_token}"},
                json=payload,
            )

        try:
            resp = await retry_with_backoff(
                _post, config=self._retry, operation_name="whatsapp_send"
            )
        except httpx.HTTPError as e:
            logger.bind(subscriber_id=to_phone, error=str(e)).error("whatsapp_send_error")
            return False

        if resp.is_success:
            return True

        logger.bind(
            subscriber_id=to_phone,
            status=resp.status_code,
            response_body=resp.text[:500],
        ).error("whatsapp_send_failed")
        return False
