"""FastAPI dependencies resolving services from the running Application."""

from __future__ import annotations

from typing import Annotated, TypeVar

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bondly_api.airdrop.engine import AirdropEngine
from bondly_api.auth.service import AuthService
from bondly_api.auth.tokens import TokenClaims
from bondly_api.errors import InvalidToken
from bondly_api.runtime import Application
from bondly_api.wallet.service import WalletService

T = TypeVar("T")

_bearer = HTTPBearer(auto_error=False)


def get_application(request: Request) -> Application:
    application: Application = request.app.state.application
    return application


AppDep = Annotated[Application, Depends(get_application)]


def _started(component: T | None) -> T:
    if component is None:
        raise RuntimeError("application not started")
    return component


def get_auth_service(application: AppDep) -> AuthService:
    return _started(application.auth)


def get_wallet_service(application: AppDep) -> WalletService:
    return _started(application.wallets)


def get_airdrop_engine(application: AppDep) -> AirdropEngine:
    return _started(application.engine)


def get_current_claims(
    application: AppDep,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
) -> TokenClaims:
    """Decode the bearer token; 401 when it is missing or invalid."""
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise InvalidToken("missing bearer token")
    return _started(application.tokens).decode(credentials.credentials)


AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
WalletServiceDep = Annotated[WalletService, Depends(get_wallet_service)]
AirdropEngineDep = Annotated[AirdropEngine, Depends(get_airdrop_engine)]
ClaimsDep = Annotated[TokenClaims, Depends(get_current_claims)]
