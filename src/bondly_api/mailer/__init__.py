"""Outbound email - templates, transports and dispatcher."""

from bondly_api.mailer.dispatcher import EmailDispatcher, build_transport
from bondly_api.mailer.transports import EmailTransport, MockTransport, ResendTransport

__all__ = [
    "EmailDispatcher",
    "EmailTransport",
    "MockTransport",
    "ResendTransport",
    "build_transport",
]
