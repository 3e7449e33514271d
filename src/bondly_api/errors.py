"""Error taxonomy shared by every component.

Services raise subclasses of BondlyError; the HTTP layer maps the
error kind to a status code in one table (see api/errors.py).
"""

from __future__ import annotations

from enum import Enum
from typing import Any

CODE_SUCCESS = 1000


class ErrorKind(str, Enum):
    """Failure classes, independent of the concrete exception type."""

    VALIDATION = "validation"
    RATE_LIMITED = "rate_limited"
    AUTH = "auth"
    CONFLICT = "conflict"
    TRANSPORT = "transport"
    INVARIANT = "invariant"


class BondlyError(Exception):
    """Base exception for all service errors.

    Attributes:
        kind: Failure class used for status mapping and retry decisions.
        code: Stable business error code returned in the response envelope.
        message: Human-readable message safe to return to clients.
    """

    kind: ErrorKind = ErrorKind.INVARIANT
    code: int = 1500
    default_message: str = "internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def details(self) -> dict[str, Any] | None:
        """Extra fields returned in the envelope's data member."""
        return None


# Validation failures


class ValidationFailure(BondlyError):
    kind = ErrorKind.VALIDATION
    code = 1400
    default_message = "invalid parameters"


class InvalidEmail(ValidationFailure):
    code = 1800
    default_message = "invalid email address"


class UserNotFound(ValidationFailure):
    code = 1703
    default_message = "user not found"


class InvalidAddress(ValidationFailure):
    code = 1713
    default_message = "invalid wallet address"


# Rate limiting


class RateLimited(BondlyError):
    """Raised while the per-email send-lock is still present."""

    kind = ErrorKind.RATE_LIMITED
    code = 1802
    default_message = "verification code requested too frequently"

    def __init__(self, retry_after: int | None = None, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after

    def details(self) -> dict[str, Any] | None:
        if self.retry_after is None:
            return None
        return {"retry_after": self.retry_after}


# Authentication failures


class AuthFailure(BondlyError):
    kind = ErrorKind.AUTH
    code = 1401
    default_message = "unauthorized"


class CodeMissing(AuthFailure):
    code = 1803
    default_message = "verification code expired or not requested"


class CodeMismatch(AuthFailure):
    code = 1804
    default_message = "verification code does not match"


class VerificationRequired(AuthFailure):
    code = 1805
    default_message = "email has not been verified"


class InvalidToken(AuthFailure):
    code = 1405
    default_message = "invalid or expired token"


# Conflicts


class Conflict(BondlyError):
    kind = ErrorKind.CONFLICT
    code = 1409
    default_message = "conflict"


class CustodyWalletExists(Conflict):
    code = 1716
    default_message = "user already has a custody wallet"


class WalletAlreadyBound(Conflict):
    code = 1717
    default_message = "wallet address already bound to another user"


class AlreadyAirdropped(Conflict):
    code = 2100
    default_message = "airdrop already received or in progress"


# Transport failures


class TransportFailure(BondlyError):
    kind = ErrorKind.TRANSPORT
    code = 2200
    default_message = "upstream service failure"


class StorageFailure(TransportFailure):
    code = 1900
    default_message = "key-value store unavailable"


class EmailSendFailed(TransportFailure):
    code = 2201
    default_message = "failed to send email"

    def __init__(self, message: str | None = None, *, upstream_body: str | None = None) -> None:
        super().__init__(message)
        self.upstream_body = upstream_body


class ChainUnavailable(TransportFailure):
    code = 2202
    default_message = "blockchain RPC unavailable"


class InsufficientRelayBalance(TransportFailure):
    code = 2101
    default_message = "relay wallet balance is insufficient for the airdrop"

    def __init__(self, balance: int, required: int) -> None:
        super().__init__(f"relay balance {balance} below required {required}")
        self.balance = balance
        self.required = required


class SubmitFailed(TransportFailure):
    code = 2102
    default_message = "airdrop transaction submission failed"


# Invariant failures


class InvariantViolation(BondlyError):
    kind = ErrorKind.INVARIANT
    code = 1500
    default_message = "internal error"


class DecryptError(InvariantViolation):
    code = 1715
    default_message = "custody key could not be decrypted"
