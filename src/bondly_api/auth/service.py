"""Email OTP sign-in: send-code, verify-code and login.

Login accepts an email that passed ``verify_code`` within the verified
window, or an inline code that is verified on the spot. A first login
creates the user together with its custody wallet, queues the custody
airdrop and sends the welcome email in the background.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from bondly_api.auth.otp import normalize_email
from bondly_api.errors import (
    BondlyError,
    StorageFailure,
    UserNotFound,
    ValidationFailure,
    VerificationRequired,
)
from bondly_api.storage.models import AirdropKind, UserRole
from bondly_api.storage.repos import UserDTO, UserRepository

if TYPE_CHECKING:
    from bondly_api.airdrop.engine import AirdropEngine
    from bondly_api.auth.otp import OTPStore
    from bondly_api.auth.tokens import TokenIssuer
    from bondly_api.mailer.dispatcher import EmailDispatcher
    from bondly_api.storage.database import DatabaseManager
    from bondly_api.wallet.custody import CustodyWalletManager

logger = logging.getLogger(__name__)

MAX_NICKNAME_LENGTH = 64


class AuthEvent(str, Enum):
    CODE_SENT = "auth.code_sent"
    CODE_VERIFIED = "auth.code_verified"
    USER_CREATED = "auth.user_created"
    LOGIN = "auth.login"
    WELCOME_FAILED = "auth.welcome_failed"


@dataclass
class LoginResult:
    token: str
    user_id: int
    email: str
    nickname: str
    role: str
    is_new_user: bool
    expires_in: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CodeStatus:
    email: str
    code_exists: bool
    code_ttl_seconds: int
    locked: bool
    lock_ttl_seconds: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def normalize_nickname(nickname: str) -> str:
    nickname = (nickname or "").strip()
    if not nickname:
        raise ValidationFailure("nickname is required")
    if len(nickname) > MAX_NICKNAME_LENGTH:
        raise ValidationFailure(f"nickname must be at most {MAX_NICKNAME_LENGTH} characters")
    return nickname


class AuthService:
    """Coordinates the OTP store, user store and token issuer."""

    def __init__(
        self,
        db: DatabaseManager,
        otp: OTPStore,
        dispatcher: EmailDispatcher,
        tokens: TokenIssuer,
        custody: CustodyWalletManager,
        engine: AirdropEngine,
    ) -> None:
        self._db = db
        self._otp = otp
        self._dispatcher = dispatcher
        self._tokens = tokens
        self._custody = custody
        self._engine = engine
        self._background: set[asyncio.Task[None]] = set()

    async def send_code(self, email: str) -> dict[str, Any]:
        """Issue a code and email it.

        If delivery fails the error propagates, but the stored code stays
        valid for its full lifetime.
        """
        email = normalize_email(email)
        code = await self._otp.issue(email)
        await self._dispatcher.send_verification_code(email, code)
        logger.info("Verification code sent", extra={"event": AuthEvent.CODE_SENT, "email": email})
        return {"email": email, "expires_in": self._otp.code_ttl_seconds}

    async def verify_code(self, email: str, code: str) -> dict[str, Any]:
        email = normalize_email(email)
        await self._otp.verify(email, code)
        logger.info("Verification code accepted", extra={"event": AuthEvent.CODE_VERIFIED, "email": email})
        return {"email": email}

    async def code_status(self, email: str) -> CodeStatus:
        email = normalize_email(email)
        code_ttl, lock_ttl = await self._otp.ttl(email)
        return CodeStatus(
            email=email,
            code_exists=code_ttl > 0,
            code_ttl_seconds=code_ttl,
            locked=lock_ttl > 0,
            lock_ttl_seconds=lock_ttl,
        )

    async def _require_verified(self, email: str, code: str | None) -> None:
        if code:
            await self._otp.verify(email, code)
            # Inline verification leaves a marker too; login consumes it here.
            await self._otp.consume_verified(email)
            return
        if not await self._otp.consume_verified(email):
            raise VerificationRequired()

    async def _find_or_create(self, email: str, nickname: str) -> tuple[UserDTO, bool]:
        try:
            async with self._db.get_async_session() as session:
                repo = UserRepository(session)
                user = await repo.get_by_email(email)
                if user is None:
                    wallet = self._custody.generate()
                    user = await repo.create(
                        email=email,
                        nickname=nickname,
                        role=UserRole.USER,
                        custody_wallet_address=wallet.address,
                        encrypted_private_key=wallet.encrypted_private_key,
                    )
                    return user, True
                await repo.touch_login(user.id, nickname=nickname if user.nickname != nickname else None)
                user.nickname = nickname
                return user, False
        except IntegrityError:
            # A concurrent first login for the same email won the insert.
            async with self._db.get_async_session() as session:
                repo = UserRepository(session)
                user = await repo.get_by_email(email)
                if user is None:
                    raise
                await repo.touch_login(user.id, nickname=nickname if user.nickname != nickname else None)
                user.nickname = nickname
                return user, False

    async def login(self, email: str, nickname: str, code: str | None = None) -> LoginResult:
        """Sign in a verified email, creating the user on first login.

        The verification is used up only when the user row is committed;
        a database failure puts the verified marker back so the user can
        retry without a new code.

        Raises:
            InvalidEmail: If the email is malformed.
            ValidationFailure: If the nickname is empty or too long.
            VerificationRequired: If the email was not verified and no code was given.
            CodeMissing, CodeMismatch: If an inline code fails verification.
        """
        email = normalize_email(email)
        nickname = normalize_nickname(nickname)
        await self._require_verified(email, code)

        try:
            user, is_new = await self._find_or_create(email, nickname)
        except SQLAlchemyError:
            await self._restore_verified(email)
            raise
        if is_new:
            logger.info(
                "Created user %d",
                user.id,
                extra={
                    "event": AuthEvent.USER_CREATED,
                    "email": email,
                    "custody_address": user.custody_wallet_address,
                },
            )

        token = self._tokens.issue(
            user_id=user.id,
            email=user.email,
            role=user.role.value,
            wallet_address=user.wallet_address,
        )

        if is_new and user.custody_wallet_address:
            try:
                self._engine.enqueue(user.id, user.custody_wallet_address, AirdropKind.CUSTODY)
            except RuntimeError as e:
                logger.error("Could not queue custody airdrop for user %d: %s", user.id, e)
        if is_new:
            task = asyncio.create_task(
                self._send_welcome(email, nickname), name=f"welcome-email-{user.id}"
            )
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        logger.info(
            "User %d logged in",
            user.id,
            extra={"event": AuthEvent.LOGIN, "is_new_user": is_new},
        )
        return LoginResult(
            token=token,
            user_id=user.id,
            email=email,
            nickname=user.nickname,
            role=user.role.value,
            is_new_user=is_new,
            expires_in=self._tokens.expires_in_seconds,
        )

    async def _restore_verified(self, email: str) -> None:
        try:
            await self._otp.restore_verified(email)
        except StorageFailure as e:
            logger.warning("Could not restore verification for %s: %s", email, e.message)

    async def _send_welcome(self, email: str, nickname: str) -> None:
        try:
            await self._dispatcher.send_welcome(email, nickname)
        except BondlyError as e:
            logger.warning(
                "Welcome email to %s not sent: %s",
                email,
                e.message,
                extra={"event": AuthEvent.WELCOME_FAILED},
            )

    async def join(self) -> None:
        """Wait for pending welcome emails."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def stop(self) -> None:
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        self._background.clear()

    async def current_user(self, user_id: int) -> UserDTO:
        async with self._db.get_async_session() as session:
            user = await UserRepository(session).get_by_id(user_id)
        if user is None:
            raise UserNotFound()
        return user
