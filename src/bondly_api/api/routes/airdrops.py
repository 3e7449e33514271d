"""Airdrop ledger queries."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from bondly_api.api.deps import AirdropEngineDep
from bondly_api.api.responses import airdrop_to_dict, ok

router = APIRouter(prefix="/airdrops", tags=["airdrops"])


@router.get("/users/{user_id}")
async def user_airdrops(user_id: int, engine: AirdropEngineDep) -> dict[str, Any]:
    records = await engine.history(user_id)
    return ok({"user_id": user_id, "records": [airdrop_to_dict(r) for r in records]})


@router.get("")
async def recent_airdrops(
    engine: AirdropEngineDep,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
) -> dict[str, Any]:
    records = await engine.recent(offset=offset, limit=limit)
    return ok({"offset": offset, "limit": limit, "records": [airdrop_to_dict(r) for r in records]})
