"""Renders templates and hands them to the configured transport."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bondly_api.mailer.templates import (
    DEFAULT_SERVICE_NAME,
    render_verification_code,
    render_welcome,
)
from bondly_api.mailer.transports import EmailTransport, MockTransport, ResendTransport

if TYPE_CHECKING:
    from bondly_api.config import EmailSettings

logger = logging.getLogger(__name__)


class EmailDispatcher:
    """Sends the verification-code and welcome emails."""

    def __init__(
        self,
        transport: EmailTransport,
        *,
        code_ttl_seconds: int = 600,
        service_name: str = DEFAULT_SERVICE_NAME,
    ) -> None:
        self.transport = transport
        self._code_ttl = code_ttl_seconds
        self._service_name = service_name

    async def send_verification_code(self, to: str, code: str) -> None:
        """Send a one-time code; raises EmailSendFailed on transport failure."""
        message = render_verification_code(
            code,
            to=to,
            expires_in_seconds=self._code_ttl,
            service_name=self._service_name,
        )
        await self.transport.send(to, message.subject, message.html)

    async def send_welcome(self, to: str, nickname: str) -> None:
        message = render_welcome(nickname, service_name=self._service_name)
        await self.transport.send(to, message.subject, message.html)

    async def aclose(self) -> None:
        await self.transport.aclose()


def build_transport(settings: EmailSettings) -> EmailTransport:
    """Create the transport selected by EMAIL_PROVIDER."""
    if settings.provider == "resend":
        api_key = settings.api_key.get_secret_value() if settings.api_key else ""
        return ResendTransport(
            api_key,
            settings.from_address or "",
            api_url=settings.api_url,
            timeout_seconds=settings.timeout_seconds,
        )
    logger.info("Using mock email transport")
    return MockTransport()
