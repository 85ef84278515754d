"""
Dependency wiring for the REST server.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from famipoints.config import Settings
from famipoints.db import DatabaseClient
from famipoints.server.security import decode_access_token
from famipoints.store import FamilyStore
from famipoints.types import AuthUser

bearer_scheme = HTTPBearer(auto_error=False)


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> DatabaseClient:
    return request.app.state.database


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings_dep),
    db: DatabaseClient = Depends(get_database),
) -> AuthUser:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user_id = decode_access_token(credentials.credentials, settings)
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.load_user(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user


def get_store(
    user: AuthUser = Depends(get_current_user),
    db: DatabaseClient = Depends(get_database),
) -> FamilyStore:
    """Store view evaluated against the caller's family and role."""
    return db.for_user(user)
