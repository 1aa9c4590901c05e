"""
Shared FastAPI dependencies: core services and API key auth.
"""

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.config import ServerConfig
from storage.warehouse import Warehouse
from tracer.fund_flow import FundFlowTracer


_bearer = HTTPBearer(auto_error=False)


def get_warehouse(request: Request) -> Warehouse:
    return request.app.state.warehouse


def get_tracer(request: Request) -> FundFlowTracer:
    return request.app.state.tracer


def get_settings(request: Request) -> ServerConfig:
    return request.app.state.settings


def get_scheduler(request: Request):
    """Scan scheduler when the server runs alongside scanning, else None."""
    return getattr(request.app.state, "scheduler", None)


def require_api_key(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    settings: ServerConfig = Depends(get_settings),
) -> Optional[str]:
    """
    Check the bearer token against the configured keys.

    Open when no keys are configured.
    """
    if not settings.api_keys:
        return None
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = credentials.credentials
    if not any(secrets.compare_digest(token, key) for key in settings.api_keys):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token
