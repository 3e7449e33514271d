"""Email OTP endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from bondly_api.api.deps import AuthServiceDep, ClaimsDep
from bondly_api.api.responses import ok
from bondly_api.api.schemas import LoginRequest, SendCodeRequest, VerifyCodeRequest

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/send-code")
async def send_code(body: SendCodeRequest, auth: AuthServiceDep) -> dict[str, Any]:
    return ok(await auth.send_code(body.email), "verification code sent")


@router.post("/verify-code")
async def verify_code(body: VerifyCodeRequest, auth: AuthServiceDep) -> dict[str, Any]:
    return ok(await auth.verify_code(body.email, body.code), "verification code accepted")


@router.get("/code-status")
async def code_status(auth: AuthServiceDep, email: str = Query(min_length=1)) -> dict[str, Any]:
    status = await auth.code_status(email)
    return ok(status.to_dict())


@router.post("/login")
async def login(body: LoginRequest, auth: AuthServiceDep) -> dict[str, Any]:
    result = await auth.login(body.email, body.nickname, code=body.code)
    return ok(result.to_dict(), "login successful")


@router.get("/me")
async def me(claims: ClaimsDep, auth: AuthServiceDep) -> dict[str, Any]:
    user = await auth.current_user(claims.user_id)
    data = claims.to_dict()
    data.update(
        nickname=user.nickname,
        custody_wallet_address=user.custody_wallet_address,
        reputation_score=user.reputation_score,
    )
    return ok(data)
