"""HS256 bearer tokens."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from bondly_api.errors import InvalidToken

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
SUBJECT = "user-auth"


@dataclass(frozen=True)
class TokenClaims:
    """Decoded bearer token claims."""

    user_id: int
    email: str | None
    role: str
    wallet_address: str | None
    issued_at: datetime
    expires_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "role": self.role,
            "wallet_address": self.wallet_address,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


class TokenIssuer:
    """Mints and validates session tokens with a process-wide secret."""

    def __init__(self, secret: str, *, expires_in_hours: int = 24, issuer: str = "bondly-api") -> None:
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self.expires_in = timedelta(hours=expires_in_hours)
        self.issuer = issuer

    @property
    def expires_in_seconds(self) -> int:
        return int(self.expires_in.total_seconds())

    def issue(
        self,
        *,
        user_id: int,
        email: str | None,
        role: str,
        wallet_address: str | None = None,
        now: datetime | None = None,
    ) -> str:
        now = now or datetime.now(UTC)
        payload: dict[str, Any] = {
            "sub": SUBJECT,
            "iss": self.issuer,
            "user_id": user_id,
            "email": email,
            "role": role,
            "iat": now,
            "nbf": now,
            "exp": now + self.expires_in,
        }
        if wallet_address:
            payload["wallet_address"] = wallet_address
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def decode(self, token: str) -> TokenClaims:
        """Validate signature, issuer, subject and expiry.

        Raises:
            InvalidToken: If the token is malformed, forged or expired.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                options={"require": ["exp", "iat", "iss", "sub"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise InvalidToken("token has expired") from e
        except jwt.InvalidTokenError as e:
            logger.debug("Rejected bearer token: %s", e)
            raise InvalidToken() from e

        if payload.get("sub") != SUBJECT or not isinstance(payload.get("user_id"), int):
            raise InvalidToken()
        return TokenClaims(
            user_id=payload["user_id"],
            email=payload.get("email"),
            role=payload.get("role", "user"),
            wallet_address=payload.get("wallet_address"),
            issued_at=datetime.fromtimestamp(payload["iat"], UTC),
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
        )
