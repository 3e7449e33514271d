"""Uniform ``{code, message, data, success}`` response envelope."""

from __future__ import annotations

from typing import Any

from bondly_api.errors import CODE_SUCCESS
from bondly_api.storage.repos import AirdropRecordDTO


def ok(data: Any = None, message: str = "success") -> dict[str, Any]:
    return {"code": CODE_SUCCESS, "message": message, "data": data, "success": True}


def fail(code: int, message: str, data: Any = None) -> dict[str, Any]:
    return {"code": code, "message": message, "data": data, "success": False}


def airdrop_to_dict(record: AirdropRecordDTO) -> dict[str, Any]:
    return {
        "id": record.id,
        "user_id": record.user_id,
        "wallet_address": record.wallet_address,
        "amount": str(record.amount),
        "tx_hash": record.tx_hash,
        "kind": record.kind.value,
        "status": record.status.value,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
    }
