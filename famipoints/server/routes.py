"""
HTTP routes implementing the REST contract consumed by ``RestApiAuthService``
and ``RestApiDataService``.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from famipoints.config import Settings
from famipoints.db import DatabaseClient
from famipoints.server.dependencies import (
    get_current_user,
    get_database,
    get_settings_dep,
    get_store,
)
from famipoints.server.schemas import (
    ActivityCreate,
    ActivityUpdate,
    ApprovalPayload,
    PointEntryCreate,
    PointEntryUpdate,
    RedemptionCreate,
    RewardCreate,
    RewardUpdate,
    SignInPayload,
    SignUpPayload,
)
from famipoints.server.security import create_access_token
from famipoints.store import FamilyStore
from famipoints.types import AuthUser

logger = logging.getLogger(__name__)

router = APIRouter()


def _envelope(item) -> dict:
    return {"data": item.as_dict() if item is not None else None, "error": None}


def _list_envelope(items: Iterable) -> dict:
    data = [item.as_dict() for item in items]
    return {"data": data, "error": None, "count": len(data)}


def _session_payload(user: AuthUser, settings: Settings) -> dict:
    token = create_access_token(user.id, settings)
    return {"data": {"user": user.as_dict(), "token": token}, "error": None}


# -- auth -------------------------------------------------------------------


@router.post("/auth/signin")
def sign_in(
    payload: SignInPayload,
    db: DatabaseClient = Depends(get_database),
    settings: Settings = Depends(get_settings_dep),
):
    user = db.authenticate(payload.email, payload.password)
    logger.info("Issued token for %s", user.id)
    return _session_payload(user, settings)


@router.post("/auth/signup")
def sign_up(
    payload: SignUpPayload,
    db: DatabaseClient = Depends(get_database),
    settings: Settings = Depends(get_settings_dep),
):
    user = db.register(payload.email, payload.password, payload.displayName, payload.role)
    return _session_payload(user, settings)


@router.post("/auth/signout")
def sign_out():
    # Tokens are stateless; the client discards its copy.
    return {"data": None, "error": None}


@router.get("/auth/me")
def me(user: AuthUser = Depends(get_current_user)):
    return _envelope(user)


@router.get("/auth/profile/{user_id}")
def profile(
    user_id: str,
    user: AuthUser = Depends(get_current_user),
    db: DatabaseClient = Depends(get_database),
):
    found = db.get_profile(user_id)
    if found is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    if user_id != user.id and (user.family_id is None or found.family_id != user.family_id):
        raise HTTPException(status_code=403, detail="permission denied for profile")
    return _envelope(
        AuthUser(
            id=found.user_id,
            email=found.email,
            role=found.role,
            family_id=found.family_id,
            display_name=found.display_name,
            created_at=found.created_at,
            updated_at=found.updated_at,
        )
    )


# -- family views -----------------------------------------------------------


@router.get("/families/{family_id}/kids-with-points")
def kids_with_points(family_id: str, store: FamilyStore = Depends(get_store)):
    return _list_envelope(store.kids_with_points(family_id))


@router.get("/families/{family_id}/pending-activities")
def pending_activities(family_id: str, store: FamilyStore = Depends(get_store)):
    return _list_envelope(store.pending_activities(family_id))


@router.get("/families/{family_id}/dashboard-stats")
def dashboard_stats(family_id: str, store: FamilyStore = Depends(get_store)):
    return {"data": store.dashboard_stats(family_id).to_wire(), "error": None}


@router.get("/families/{family_id}/activities")
def list_activities(family_id: str, store: FamilyStore = Depends(get_store)):
    return _list_envelope(store.list_activities(family_id))


@router.get("/families/{family_id}/rewards")
def list_rewards(family_id: str, store: FamilyStore = Depends(get_store)):
    return _list_envelope(store.list_rewards(family_id))


@router.get("/families/{family_id}/point-entries")
def list_point_entries(
    family_id: str,
    user_id: Optional[str] = Query(default=None),
    store: FamilyStore = Depends(get_store),
):
    return _list_envelope(store.list_point_entries(family_id, user_id))


@router.get("/families/{family_id}/reward-redemptions")
def list_reward_redemptions(
    family_id: str,
    user_id: Optional[str] = Query(default=None),
    store: FamilyStore = Depends(get_store),
):
    return _list_envelope(store.list_redemptions(family_id, user_id))


# -- activities -------------------------------------------------------------


@router.post("/activities", status_code=201)
def create_activity(payload: ActivityCreate, store: FamilyStore = Depends(get_store)):
    return _envelope(store.create_activity(payload.to_values()))


@router.put("/activities/{activity_id}")
def update_activity(
    activity_id: str, payload: ActivityUpdate, store: FamilyStore = Depends(get_store)
):
    return _envelope(store.update_activity(activity_id, payload.to_values()))


@router.delete("/activities/{activity_id}")
def delete_activity(activity_id: str, store: FamilyStore = Depends(get_store)):
    store.delete_activity(activity_id)
    return {"data": None, "error": None}


# -- rewards ----------------------------------------------------------------


@router.post("/rewards", status_code=201)
def create_reward(payload: RewardCreate, store: FamilyStore = Depends(get_store)):
    return _envelope(store.create_reward(payload.to_values()))


@router.put("/rewards/{reward_id}")
def update_reward(reward_id: str, payload: RewardUpdate, store: FamilyStore = Depends(get_store)):
    return _envelope(store.update_reward(reward_id, payload.to_values()))


@router.delete("/rewards/{reward_id}")
def delete_reward(reward_id: str, store: FamilyStore = Depends(get_store)):
    store.delete_reward(reward_id)
    return {"data": None, "error": None}


# -- point entries ----------------------------------------------------------


@router.post("/point-entries", status_code=201)
def create_point_entry(payload: PointEntryCreate, store: FamilyStore = Depends(get_store)):
    return _envelope(store.create_point_entry(payload.to_values()))


@router.put("/point-entries/{entry_id}")
def update_point_entry(
    entry_id: str, payload: PointEntryUpdate, store: FamilyStore = Depends(get_store)
):
    return _envelope(store.update_point_entry(entry_id, payload.to_values()))


@router.post("/point-entries/{entry_id}/approve")
def approve_point_entry(
    entry_id: str, payload: ApprovalPayload, store: FamilyStore = Depends(get_store)
):
    return _envelope(store.approve_point_entry(entry_id, payload.approved, payload.approvedBy))


# -- reward redemptions -----------------------------------------------------


@router.post("/reward-redemptions", status_code=201)
def create_reward_redemption(
    payload: RedemptionCreate, store: FamilyStore = Depends(get_store)
):
    return _envelope(store.create_redemption(payload.to_values()))


@router.post("/reward-redemptions/{redemption_id}/approve")
def approve_reward_redemption(
    redemption_id: str, payload: ApprovalPayload, store: FamilyStore = Depends(get_store)
):
    return _envelope(
        store.approve_redemption(redemption_id, payload.approved, payload.approvedBy)
    )
