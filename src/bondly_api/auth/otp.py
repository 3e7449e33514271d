"""Email one-time code store backed by Redis.

Key layout per normalized email:

- ``code:{email}``      the live 6-digit code (TTL: code lifetime)
- ``lock:{email}``      empty send-lock (TTL: resend interval)
- ``verified:{email}``  marker left by a successful verify (TTL: login window)

All state lives in Redis with server-side TTLs, so nothing needs cleaning
up if the process dies between writes.
"""

from __future__ import annotations

import hmac
import logging
import re
import secrets
from enum import Enum

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from bondly_api.errors import (
    CodeMismatch,
    CodeMissing,
    InvalidEmail,
    RateLimited,
    StorageFailure,
    ValidationFailure,
)

logger = logging.getLogger(__name__)

DEFAULT_CODE_TTL_SECONDS = 600
DEFAULT_LOCK_TTL_SECONDS = 60
DEFAULT_VERIFIED_TTL_SECONDS = 600

CODE_MIN = 100_000
CODE_MAX = 999_999

_EMAIL_RE = re.compile(r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}$")


class OtpEvent(str, Enum):
    ISSUED = "otp.issued"
    RATE_LIMITED = "otp.rate_limited"
    VERIFIED = "otp.verified"
    MISMATCH = "otp.mismatch"
    MISSING = "otp.missing"


def normalize_email(email: str) -> str:
    """Trim and lowercase an email, rejecting syntactically invalid ones.

    Raises:
        InvalidEmail: If the address is empty or malformed.
    """
    normalized = (email or "").strip().lower()
    if not normalized or len(normalized) > 254 or not _EMAIL_RE.match(normalized):
        raise InvalidEmail()
    return normalized


def generate_code() -> str:
    """Uniformly random 6-digit code with a non-zero leading digit."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


def _text(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class OTPStore:
    """Rate-limited issuance and one-shot verification of email codes."""

    def __init__(
        self,
        redis: Redis,
        *,
        code_ttl_seconds: int = DEFAULT_CODE_TTL_SECONDS,
        lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
        verified_ttl_seconds: int = DEFAULT_VERIFIED_TTL_SECONDS,
    ) -> None:
        self._redis = redis
        self.code_ttl_seconds = code_ttl_seconds
        self.lock_ttl_seconds = lock_ttl_seconds
        self.verified_ttl_seconds = verified_ttl_seconds

    @staticmethod
    def code_key(email: str) -> str:
        return f"code:{email}"

    @staticmethod
    def lock_key(email: str) -> str:
        return f"lock:{email}"

    @staticmethod
    def verified_key(email: str) -> str:
        return f"verified:{email}"

    async def issue(self, email: str) -> str:
        """Issue a new code for ``email``.

        The send-lock is taken first with SET NX, so two concurrent issues
        for one email cannot both succeed.

        Returns:
            The issued code, for hand-off to the email dispatcher.

        Raises:
            InvalidEmail: If the email is malformed.
            RateLimited: If the send-lock is still present.
            StorageFailure: If Redis is unavailable.
        """
        email = normalize_email(email)
        lock_key = self.lock_key(email)
        try:
            acquired = await self._redis.set(lock_key, "", nx=True, ex=self.lock_ttl_seconds)
            if not acquired:
                retry_after = max(int(await self._redis.ttl(lock_key)), 0)
                logger.info(
                    "Code requested while send-lock held",
                    extra={"event": OtpEvent.RATE_LIMITED, "email": email, "retry_after": retry_after},
                )
                raise RateLimited(retry_after=retry_after or self.lock_ttl_seconds)
        except RedisError as e:
            raise StorageFailure(f"failed to acquire send lock: {e}") from e

        code = generate_code()
        try:
            await self._redis.set(self.code_key(email), code, ex=self.code_ttl_seconds)
        except RedisError as e:
            try:
                await self._redis.delete(lock_key)
            except RedisError:
                logger.warning("Failed to release send lock for %s", email)
            raise StorageFailure(f"failed to store verification code: {e}") from e

        logger.info(
            "Issued verification code",
            extra={"event": OtpEvent.ISSUED, "email": email, "ttl": self.code_ttl_seconds},
        )
        return code

    async def verify(self, email: str, code: str) -> None:
        """Verify and consume the live code for ``email``.

        A mismatch leaves the code in place. A match deletes it and records
        the verified marker in the same MULTI block; a concurrent verify that
        raced on the same key loses the WATCH and sees CodeMissing.

        Raises:
            InvalidEmail: If the email is malformed.
            ValidationFailure: If the code is empty.
            CodeMissing: If no live code exists.
            CodeMismatch: If the code does not match.
            StorageFailure: If Redis is unavailable.
        """
        email = normalize_email(email)
        code = (code or "").strip()
        if not code:
            raise ValidationFailure("verification code is required")

        key = self.code_key(email)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                stored = await pipe.get(key)
                if stored is None:
                    logger.info("No live code", extra={"event": OtpEvent.MISSING, "email": email})
                    raise CodeMissing()
                if not hmac.compare_digest(_text(stored).encode(), code.encode()):
                    logger.info("Code mismatch", extra={"event": OtpEvent.MISMATCH, "email": email})
                    raise CodeMismatch()
                pipe.multi()
                pipe.delete(key)
                pipe.set(self.verified_key(email), "1", ex=self.verified_ttl_seconds)
                await pipe.execute()
        except WatchError as e:
            raise CodeMissing() from e
        except RedisError as e:
            raise StorageFailure(f"failed to verify code: {e}") from e

        logger.info("Verified email", extra={"event": OtpEvent.VERIFIED, "email": email})

    async def consume_verified(self, email: str) -> bool:
        """Atomically take the verified marker left by ``verify``.

        Returns:
            True if the email had been verified within the login window.
        """
        email = normalize_email(email)
        try:
            value = await self._redis.getdel(self.verified_key(email))
        except RedisError as e:
            raise StorageFailure(f"failed to read verification marker: {e}") from e
        return value is not None

    async def restore_verified(self, email: str) -> None:
        """Put back a verified marker taken by a login that did not complete."""
        email = normalize_email(email)
        try:
            await self._redis.set(self.verified_key(email), "1", ex=self.verified_ttl_seconds)
        except RedisError as e:
            raise StorageFailure(f"failed to restore verification marker: {e}") from e

    async def ttl(self, email: str) -> tuple[int, int]:
        """Remaining (code_ttl, lock_ttl) in seconds; zero for absent keys."""
        email = normalize_email(email)
        try:
            code_ttl = int(await self._redis.ttl(self.code_key(email)))
            lock_ttl = int(await self._redis.ttl(self.lock_key(email)))
        except RedisError as e:
            raise StorageFailure(f"failed to read code status: {e}") from e
        return max(code_ttl, 0), max(lock_ttl, 0)
