"""Tests for the email one-time code store."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from bondly_api.auth.otp import OTPStore, generate_code, normalize_email
from bondly_api.errors import (
    CodeMismatch,
    CodeMissing,
    InvalidEmail,
    RateLimited,
    StorageFailure,
    ValidationFailure,
)

EMAIL = "alice@example.com"

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def store(redis) -> OTPStore:
    """OTP store with the default lifetimes."""
    return OTPStore(redis, code_ttl_seconds=600, lock_ttl_seconds=60, verified_ttl_seconds=600)


def wrong_code(code: str) -> str:
    return "100000" if code != "100000" else "100001"


# ============================================================================
# Email normalization
# ============================================================================


class TestNormalizeEmail:
    def test_trims_and_lowercases(self) -> None:
        assert normalize_email("  Alice@Example.COM ") == EMAIL

    @pytest.mark.parametrize(
        "email",
        ["", "   ", "alice", "alice@", "@example.com", "alice@example", "a b@example.com"],
    )
    def test_rejects_malformed(self, email: str) -> None:
        with pytest.raises(InvalidEmail):
            normalize_email(email)


class TestGenerateCode:
    def test_format(self) -> None:
        for _ in range(500):
            code = generate_code()
            assert len(code) == 6
            assert code.isdigit()
            assert code[0] != "0"


# ============================================================================
# Issue
# ============================================================================


class TestIssue:
    @pytest.mark.asyncio
    async def test_stores_code_and_lock(self, store: OTPStore, redis) -> None:
        code = await store.issue(EMAIL)

        assert await redis.get(f"code:{EMAIL}") == code
        assert await redis.exists(f"lock:{EMAIL}") == 1
        assert 0 < await redis.ttl(f"code:{EMAIL}") <= 600
        assert 0 < await redis.ttl(f"lock:{EMAIL}") <= 60

    @pytest.mark.asyncio
    async def test_normalizes_email(self, store: OTPStore, redis) -> None:
        code = await store.issue("  ALICE@example.com")
        assert await redis.get(f"code:{EMAIL}") == code

    @pytest.mark.asyncio
    async def test_second_issue_is_rate_limited(self, store: OTPStore) -> None:
        await store.issue(EMAIL)

        with pytest.raises(RateLimited) as exc_info:
            await store.issue(EMAIL)

        assert 0 < exc_info.value.retry_after <= 60
        assert exc_info.value.details() == {"retry_after": exc_info.value.retry_after}

    @pytest.mark.asyncio
    async def test_rate_limit_is_per_email(self, store: OTPStore) -> None:
        await store.issue(EMAIL)
        await store.issue("bob@example.com")

    @pytest.mark.asyncio
    async def test_issue_allowed_after_lock_expires(self, store: OTPStore, redis) -> None:
        first = await store.issue(EMAIL)
        await redis.delete(f"lock:{EMAIL}")

        second = await store.issue(EMAIL)

        assert await redis.get(f"code:{EMAIL}") == second
        if first != second:
            with pytest.raises(CodeMismatch):
                await store.verify(EMAIL, first)

    @pytest.mark.asyncio
    async def test_invalid_email_rejected_before_storage(self, store: OTPStore, redis) -> None:
        with pytest.raises(InvalidEmail):
            await store.issue("not-an-email")
        assert await redis.keys("*") == []

    @pytest.mark.asyncio
    async def test_redis_failure_on_lock(self) -> None:
        redis = AsyncMock()
        redis.set.side_effect = RedisConnectionError("down")
        store = OTPStore(redis)

        with pytest.raises(StorageFailure):
            await store.issue(EMAIL)

    @pytest.mark.asyncio
    async def test_redis_failure_on_code_releases_lock(self) -> None:
        redis = AsyncMock()
        redis.set.side_effect = [True, RedisConnectionError("down")]
        store = OTPStore(redis)

        with pytest.raises(StorageFailure):
            await store.issue(EMAIL)

        redis.delete.assert_awaited_once_with(f"lock:{EMAIL}")


# ============================================================================
# Verify
# ============================================================================


class TestVerify:
    @pytest.mark.asyncio
    async def test_correct_code_verifies_once(self, store: OTPStore, redis) -> None:
        code = await store.issue(EMAIL)

        await store.verify(EMAIL, code)

        assert await redis.exists(f"code:{EMAIL}") == 0
        assert await redis.get(f"verified:{EMAIL}") == "1"
        with pytest.raises(CodeMissing):
            await store.verify(EMAIL, code)

    @pytest.mark.asyncio
    async def test_mismatch_keeps_code(self, store: OTPStore) -> None:
        code = await store.issue(EMAIL)

        with pytest.raises(CodeMismatch):
            await store.verify(EMAIL, wrong_code(code))

        await store.verify(EMAIL, code)

    @pytest.mark.asyncio
    async def test_code_is_trimmed(self, store: OTPStore) -> None:
        code = await store.issue(EMAIL)
        await store.verify(EMAIL.upper(), f" {code} ")

    @pytest.mark.asyncio
    async def test_missing_code(self, store: OTPStore) -> None:
        with pytest.raises(CodeMissing):
            await store.verify(EMAIL, "123456")

    @pytest.mark.asyncio
    async def test_expired_code(self, store: OTPStore, redis) -> None:
        code = await store.issue(EMAIL)
        await redis.delete(f"code:{EMAIL}")

        with pytest.raises(CodeMissing):
            await store.verify(EMAIL, code)

    @pytest.mark.asyncio
    async def test_empty_code(self, store: OTPStore) -> None:
        await store.issue(EMAIL)
        with pytest.raises(ValidationFailure):
            await store.verify(EMAIL, "  ")

    @pytest.mark.asyncio
    async def test_lock_survives_verification(self, store: OTPStore) -> None:
        code = await store.issue(EMAIL)
        await store.verify(EMAIL, code)

        with pytest.raises(RateLimited):
            await store.issue(EMAIL)


# ============================================================================
# Verified marker and status
# ============================================================================


class TestVerifiedMarker:
    @pytest.mark.asyncio
    async def test_consume_once(self, store: OTPStore) -> None:
        code = await store.issue(EMAIL)
        await store.verify(EMAIL, code)

        assert await store.consume_verified(EMAIL) is True
        assert await store.consume_verified(EMAIL) is False

    @pytest.mark.asyncio
    async def test_absent_without_verify(self, store: OTPStore) -> None:
        await store.issue(EMAIL)
        assert await store.consume_verified(EMAIL) is False


class TestTTL:
    @pytest.mark.asyncio
    async def test_absent_keys_report_zero(self, store: OTPStore) -> None:
        assert await store.ttl(EMAIL) == (0, 0)

    @pytest.mark.asyncio
    async def test_live_keys(self, store: OTPStore) -> None:
        await store.issue(EMAIL)

        code_ttl, lock_ttl = await store.ttl(EMAIL)

        assert 0 < code_ttl <= 600
        assert 0 < lock_ttl <= 60


# ============================================================================
# Concurrency
# ============================================================================


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_verifies_succeed_once(self, store: OTPStore) -> None:
        code = await store.issue(EMAIL)

        results = await asyncio.gather(
            *(store.verify(EMAIL, code) for _ in range(10)), return_exceptions=True
        )

        assert results.count(None) == 1
        assert all(isinstance(r, CodeMissing) for r in results if r is not None)
        assert await store.consume_verified(EMAIL) is True

    @pytest.mark.asyncio
    async def test_concurrent_issues_send_one_code(self, store: OTPStore, redis) -> None:
        results = await asyncio.gather(*(store.issue(EMAIL) for _ in range(10)), return_exceptions=True)

        codes = [r for r in results if isinstance(r, str)]
        assert len(codes) == 1
        assert all(isinstance(r, RateLimited) for r in results if not isinstance(r, str))
        assert await redis.get(store.code_key(EMAIL)) == codes[0]

    @pytest.mark.asyncio
    async def test_verifies_never_exceed_issues(self, store: OTPStore, redis) -> None:
        first = await store.issue(EMAIL)
        await redis.delete(store.lock_key(EMAIL))
        second = await store.issue(EMAIL)

        results = await asyncio.gather(
            *(store.verify(EMAIL, code) for code in [first, second] * 5), return_exceptions=True
        )

        assert results.count(None) == 1
