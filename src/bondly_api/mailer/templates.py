"""Email templates.

Renders the verification-code and welcome messages as HTML. Every
interpolated value is HTML-escaped.
"""

from __future__ import annotations

from dataclasses import dataclass
from html import escape

DEFAULT_SERVICE_NAME = "Bondly"

_STYLE = """
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
               line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;
               background-color: #f5f5f5; }
        .container { background-color: white; border-radius: 8px; padding: 40px;
                     box-shadow: 0 2px 10px rgba(0,0,0,0.1); }
        .logo { font-size: 24px; font-weight: bold; color: #3b82f6; text-align: center; }
        .code { font-size: 32px; font-weight: bold; letter-spacing: 8px; text-align: center;
                background-color: #f1f5f9; border-radius: 6px; padding: 16px; margin: 24px 0; }
        .warning { color: #b45309; font-size: 14px; }
        .footer { margin-top: 30px; padding-top: 20px; border-top: 1px solid #e2e8f0;
                  color: #64748b; font-size: 12px; text-align: center; }
"""

_LAYOUT = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
    <style>{style}</style>
</head>
<body>
    <div class="container">
        <div class="logo">{service}</div>
{body}
        <div class="footer">
            <p>This message was sent automatically, please do not reply.</p>
        </div>
    </div>
</body>
</html>
"""


@dataclass(frozen=True)
class RenderedEmail:
    """Subject and HTML body ready for a transport."""

    subject: str
    html: str


def format_expiry(seconds: int) -> str:
    """Human-readable lifetime, e.g. 600 -> '10 minutes'."""
    if seconds % 60 == 0 and seconds >= 60:
        minutes = seconds // 60
        return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
    return f"{seconds} seconds"


def _layout(title: str, service_name: str, body: str) -> str:
    return _LAYOUT.format(
        title=escape(title),
        style=_STYLE,
        service=escape(service_name),
        body=body,
    )


def render_verification_code(
    code: str,
    *,
    to: str,
    expires_in_seconds: int,
    service_name: str = DEFAULT_SERVICE_NAME,
) -> RenderedEmail:
    """Render the one-time code email."""
    expiry = format_expiry(expires_in_seconds)
    body = f"""        <h1>Your verification code</h1>
        <p>You requested a sign-in code for <strong>{escape(to)}</strong>.</p>
        <div class="code">{escape(code)}</div>
        <p>This code expires in {escape(expiry)}.</p>
        <p class="warning">Do not share this code with anyone. {escape(service_name)} staff will never ask for it.</p>
        <p>If you did not request this code, you can ignore this email.</p>"""
    return RenderedEmail(
        subject=f"Your {service_name} verification code",
        html=_layout("Verification code", service_name, body),
    )


def render_welcome(nickname: str, *, service_name: str = DEFAULT_SERVICE_NAME) -> RenderedEmail:
    """Render the first-login welcome email."""
    body = f"""        <h1>Welcome!</h1>
        <p>Hi <strong>{escape(nickname)}</strong>,</p>
        <p>Welcome to the {escape(service_name)} community. A custody wallet has been created for
        your account and your BOND welcome airdrop is on its way.</p>
        <p>If you have any questions, just reach out to us.</p>"""
    return RenderedEmail(
        subject=f"Welcome to {service_name}!",
        html=_layout(f"Welcome to {service_name}", service_name, body),
    )
