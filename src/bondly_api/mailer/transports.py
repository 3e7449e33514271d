"""Email transports.

A transport delivers one rendered message. Two are provided: a mock that
only logs (local development and tests) and an HTTP transport for the
Resend transactional-email API.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Protocol

import httpx

from bondly_api.errors import EmailSendFailed

logger = logging.getLogger(__name__)

DEFAULT_MOCK_DELAY_SECONDS = 0.1
DEFAULT_TIMEOUT_SECONDS = 5.0
RESEND_API_URL = "https://api.resend.com/emails"


class EmailEvent(str, Enum):
    SENT = "email.sent"
    MOCK_SENT = "email.mock_sent"
    FAILED = "email.failed"


class EmailTransport(Protocol):
    """Capability to deliver one HTML email."""

    async def send(self, to: str, subject: str, html: str) -> None:
        """Deliver a message or raise EmailSendFailed."""
        ...

    async def aclose(self) -> None: ...


class MockTransport:
    """Logs messages instead of sending them; always succeeds."""

    def __init__(self, *, delay_seconds: float = DEFAULT_MOCK_DELAY_SECONDS) -> None:
        self._delay = delay_seconds
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, to: str, subject: str, html: str) -> None:
        logger.info(
            "Mock email to %s: %s",
            to,
            subject,
            extra={"event": EmailEvent.MOCK_SENT},
        )
        logger.debug("Mock email body preview: %.100s", html)
        if self._delay > 0:
            await asyncio.sleep(self._delay)
        self.sent.append((to, subject, html))

    async def aclose(self) -> None:
        return None


class ResendTransport:
    """Delivers mail through the Resend HTTP API.

    Non-2xx responses raise EmailSendFailed with the upstream body kept
    on the exception for diagnostics.
    """

    def __init__(
        self,
        api_key: str,
        from_address: str,
        *,
        api_url: str = RESEND_API_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("RESEND_API_KEY is required")
        if not from_address:
            raise ValueError("EMAIL_FROM is required")
        self._api_url = api_url
        self._from = from_address
        self._client = client or httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            timeout=timeout_seconds,
        )

    async def send(self, to: str, subject: str, html: str) -> None:
        payload: dict[str, Any] = {
            "from": self._from,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        try:
            response = await self._client.post(self._api_url, json=payload)
        except httpx.RequestError as e:
            logger.error(
                "Email request to %s failed: %s",
                to,
                e,
                extra={"event": EmailEvent.FAILED},
            )
            raise EmailSendFailed(f"email API request failed: {e}") from e

        if not response.is_success:
            logger.error(
                "Email API returned %d for %s",
                response.status_code,
                to,
                extra={"event": EmailEvent.FAILED, "status_code": response.status_code},
            )
            raise EmailSendFailed(
                f"email API returned HTTP {response.status_code}",
                upstream_body=response.text,
            )

        logger.info("Sent email to %s: %s", to, subject, extra={"event": EmailEvent.SENT})

    async def aclose(self) -> None:
        await self._client.aclose()
