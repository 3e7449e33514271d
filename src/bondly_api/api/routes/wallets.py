"""Custody wallet and wallet binding endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from bondly_api.api.deps import WalletServiceDep
from bondly_api.api.responses import ok
from bondly_api.api.schemas import BatchGenerateRequest, BindWalletRequest, GenerateWalletRequest

router = APIRouter(prefix="/wallets", tags=["wallets"])


@router.post("/generate")
async def generate_wallet(body: GenerateWalletRequest, wallets: WalletServiceDep) -> dict[str, Any]:
    info = await wallets.generate_for_user(body.user_id)
    return ok(info.to_dict(), "custody wallet created")


@router.post("/batch-generate")
async def batch_generate(body: BatchGenerateRequest, wallets: WalletServiceDep) -> dict[str, Any]:
    outcomes = await wallets.batch_generate(body.user_ids)
    return ok(
        {
            "results": [o.to_dict() for o in outcomes],
            "succeeded": sum(1 for o in outcomes if o.success),
            "failed": sum(1 for o in outcomes if not o.success),
        }
    )


@router.post("/bind")
async def bind_wallet(body: BindWalletRequest, wallets: WalletServiceDep) -> dict[str, Any]:
    result = await wallets.bind_wallet(body.user_id, body.wallet_address)
    return ok(result.to_dict(), "wallet bound")


@router.get("/{user_id}")
async def wallet_info(user_id: int, wallets: WalletServiceDep) -> dict[str, Any]:
    info = await wallets.wallet_info(user_id)
    return ok(info.to_dict())
