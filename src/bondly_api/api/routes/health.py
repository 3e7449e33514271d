"""Liveness and dependency reachability."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from bondly_api import __version__
from bondly_api.api.deps import AppDep
from bondly_api.api.responses import ok

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(application: AppDep) -> dict[str, Any]:
    report = await application.health()
    report["version"] = __version__
    return ok(report)
