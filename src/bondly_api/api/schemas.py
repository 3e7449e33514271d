"""Request bodies."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SendCodeRequest(BaseModel):
    email: str = Field(min_length=1, max_length=254, examples=["user@example.com"])


class VerifyCodeRequest(BaseModel):
    email: str = Field(min_length=1, max_length=254, examples=["user@example.com"])
    code: str = Field(min_length=1, max_length=16, examples=["123456"])


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=254, examples=["user@example.com"])
    nickname: str = Field(min_length=1, max_length=64, examples=["Alice"])
    code: str | None = Field(default=None, max_length=16, description="Verify inline instead of a prior verify-code call")


class GenerateWalletRequest(BaseModel):
    user_id: int = Field(gt=0)


class BatchGenerateRequest(BaseModel):
    user_ids: list[int] = Field(min_length=1, max_length=100)


class BindWalletRequest(BaseModel):
    user_id: int = Field(gt=0)
    wallet_address: str = Field(min_length=1, max_length=64, examples=["0x0000000000000000000000000000000000000001"])
