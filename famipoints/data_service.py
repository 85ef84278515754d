"""
Data service: family-scoped reads and writes behind one contract.

``DatabaseDataService`` acts as the user signed in on its ``DatabaseClient``;
``RestApiDataService`` maps each operation onto one REST call.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Protocol, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from famipoints.db import DatabaseClient
from famipoints.errors import BackendError
from famipoints.http_client import RestApiClient
from famipoints.store import FamilyStore
from famipoints.types import (
    Activity,
    ApiListResponse,
    ApiResponse,
    DashboardStats,
    Kid,
    PendingActivity,
    PointEntry,
    Reward,
    RewardRedemption,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")


class DataService(Protocol):
    """CRUD and dashboard queries, each scoped to one family."""

    def fetch_kids_with_points(self, family_id: str) -> ApiListResponse[Kid]:
        ...

    def fetch_pending_activities(self, family_id: str) -> ApiListResponse[PendingActivity]:
        ...

    def fetch_dashboard_stats(self, family_id: str) -> ApiResponse[DashboardStats]:
        ...

    def fetch_activities(self, family_id: str) -> ApiListResponse[Activity]:
        ...

    def create_activity(self, activity: Mapping[str, Any]) -> ApiResponse[Activity]:
        ...

    def update_activity(self, activity_id: str, updates: Mapping[str, Any]) -> ApiResponse[Activity]:
        ...

    def delete_activity(self, activity_id: str) -> ApiResponse[None]:
        ...

    def fetch_rewards(self, family_id: str) -> ApiListResponse[Reward]:
        ...

    def create_reward(self, reward: Mapping[str, Any]) -> ApiResponse[Reward]:
        ...

    def update_reward(self, reward_id: str, updates: Mapping[str, Any]) -> ApiResponse[Reward]:
        ...

    def delete_reward(self, reward_id: str) -> ApiResponse[None]:
        ...

    def fetch_point_entries(
        self, family_id: str, user_id: Optional[str] = None
    ) -> ApiListResponse[PointEntry]:
        ...

    def create_point_entry(self, entry: Mapping[str, Any]) -> ApiResponse[PointEntry]:
        ...

    def update_point_entry(self, entry_id: str, updates: Mapping[str, Any]) -> ApiResponse[PointEntry]:
        ...

    def approve_point_entry(
        self, entry_id: str, approved: bool, approved_by: str
    ) -> ApiResponse[PointEntry]:
        ...

    def fetch_reward_redemptions(
        self, family_id: str, user_id: Optional[str] = None
    ) -> ApiListResponse[RewardRedemption]:
        ...

    def create_reward_redemption(
        self, redemption: Mapping[str, Any]
    ) -> ApiResponse[RewardRedemption]:
        ...

    def approve_reward_redemption(
        self, redemption_id: str, approved: bool, approved_by: str
    ) -> ApiResponse[RewardRedemption]:
        ...


class DatabaseDataService:
    """Data access through the embedded store's row policy."""

    def __init__(self, client: DatabaseClient):
        self.client = client

    def _store(self) -> FamilyStore:
        return self.client.current_store()

    def _one(self, operation: str, fn: Callable[[FamilyStore], R]) -> ApiResponse[R]:
        try:
            return ApiResponse.ok(fn(self._store()))
        except BackendError as exc:
            logger.warning("%s rejected: %s", operation, exc)
            return ApiResponse.fail(str(exc))
        except SQLAlchemyError as exc:
            logger.exception("%s failed", operation)
            return ApiResponse.fail(str(exc.orig) if getattr(exc, "orig", None) else str(exc))

    def _many(self, operation: str, fn: Callable[[FamilyStore], list]) -> ApiListResponse:
        result = self._one(operation, fn)
        if result.error:
            return ApiListResponse.fail(result.error)
        return ApiListResponse.ok(result.data, count=len(result.data))

    def fetch_kids_with_points(self, family_id: str) -> ApiListResponse[Kid]:
        return self._many("fetch_kids_with_points", lambda s: s.kids_with_points(family_id))

    def fetch_pending_activities(self, family_id: str) -> ApiListResponse[PendingActivity]:
        return self._many("fetch_pending_activities", lambda s: s.pending_activities(family_id))

    def fetch_dashboard_stats(self, family_id: str) -> ApiResponse[DashboardStats]:
        return self._one("fetch_dashboard_stats", lambda s: s.dashboard_stats(family_id))

    def fetch_activities(self, family_id: str) -> ApiListResponse[Activity]:
        return self._many("fetch_activities", lambda s: s.list_activities(family_id))

    def create_activity(self, activity: Mapping[str, Any]) -> ApiResponse[Activity]:
        return self._one("create_activity", lambda s: s.create_activity(activity))

    def update_activity(self, activity_id: str, updates: Mapping[str, Any]) -> ApiResponse[Activity]:
        return self._one("update_activity", lambda s: s.update_activity(activity_id, updates))

    def delete_activity(self, activity_id: str) -> ApiResponse[None]:
        return self._one("delete_activity", lambda s: s.delete_activity(activity_id))

    def fetch_rewards(self, family_id: str) -> ApiListResponse[Reward]:
        return self._many("fetch_rewards", lambda s: s.list_rewards(family_id))

    def create_reward(self, reward: Mapping[str, Any]) -> ApiResponse[Reward]:
        return self._one("create_reward", lambda s: s.create_reward(reward))

    def update_reward(self, reward_id: str, updates: Mapping[str, Any]) -> ApiResponse[Reward]:
        return self._one("update_reward", lambda s: s.update_reward(reward_id, updates))

    def delete_reward(self, reward_id: str) -> ApiResponse[None]:
        return self._one("delete_reward", lambda s: s.delete_reward(reward_id))

    def fetch_point_entries(
        self, family_id: str, user_id: Optional[str] = None
    ) -> ApiListResponse[PointEntry]:
        return self._many(
            "fetch_point_entries", lambda s: s.list_point_entries(family_id, user_id)
        )

    def create_point_entry(self, entry: Mapping[str, Any]) -> ApiResponse[PointEntry]:
        return self._one("create_point_entry", lambda s: s.create_point_entry(entry))

    def update_point_entry(self, entry_id: str, updates: Mapping[str, Any]) -> ApiResponse[PointEntry]:
        return self._one("update_point_entry", lambda s: s.update_point_entry(entry_id, updates))

    def approve_point_entry(
        self, entry_id: str, approved: bool, approved_by: str
    ) -> ApiResponse[PointEntry]:
        return self._one(
            "approve_point_entry",
            lambda s: s.approve_point_entry(entry_id, approved, approved_by),
        )

    def fetch_reward_redemptions(
        self, family_id: str, user_id: Optional[str] = None
    ) -> ApiListResponse[RewardRedemption]:
        return self._many(
            "fetch_reward_redemptions", lambda s: s.list_redemptions(family_id, user_id)
        )

    def create_reward_redemption(
        self, redemption: Mapping[str, Any]
    ) -> ApiResponse[RewardRedemption]:
        return self._one("create_reward_redemption", lambda s: s.create_redemption(redemption))

    def approve_reward_redemption(
        self, redemption_id: str, approved: bool, approved_by: str
    ) -> ApiResponse[RewardRedemption]:
        return self._one(
            "approve_reward_redemption",
            lambda s: s.approve_redemption(redemption_id, approved, approved_by),
        )


def _jsonable(payload: Mapping[str, Any]) -> dict:
    return {key: (value.isoformat() if hasattr(value, "isoformat") else value) for key, value in payload.items()}


class RestApiDataService:
    """One HTTP request per operation against the remote API."""

    def __init__(self, api: RestApiClient):
        self.api = api

    @staticmethod
    def _item(result: ApiResponse, cls) -> ApiResponse:
        if result.error:
            return ApiResponse.fail(result.error)
        if result.data is None:
            return ApiResponse.ok(None)
        try:
            return ApiResponse.ok(cls.from_dict(result.data))
        except (TypeError, ValueError, AttributeError) as exc:
            logger.warning("Malformed %s payload: %s", cls.__name__, exc)
            return ApiResponse.fail(f"Malformed {cls.__name__} payload")

    @staticmethod
    def _items(result: ApiListResponse, cls) -> ApiListResponse:
        if result.error:
            return ApiListResponse.fail(result.error)
        try:
            items = [cls.from_dict(item) for item in result.data or []]
        except (TypeError, ValueError, AttributeError) as exc:
            logger.warning("Malformed %s payload: %s", cls.__name__, exc)
            return ApiListResponse.fail(f"Malformed {cls.__name__} payload")
        return ApiListResponse.ok(items, count=result.count)

    def _family_list(self, family_id: str, resource: str, cls, user_id: Optional[str] = None):
        params = {"user_id": user_id} if user_id else None
        return self._items(
            self.api.call_list("GET", f"/families/{family_id}/{resource}", params=params), cls
        )

    def fetch_kids_with_points(self, family_id: str) -> ApiListResponse[Kid]:
        return self._family_list(family_id, "kids-with-points", Kid)

    def fetch_pending_activities(self, family_id: str) -> ApiListResponse[PendingActivity]:
        return self._family_list(family_id, "pending-activities", PendingActivity)

    def fetch_dashboard_stats(self, family_id: str) -> ApiResponse[DashboardStats]:
        return self._item(
            self.api.call("GET", f"/families/{family_id}/dashboard-stats"), DashboardStats
        )

    def fetch_activities(self, family_id: str) -> ApiListResponse[Activity]:
        return self._family_list(family_id, "activities", Activity)

    def create_activity(self, activity: Mapping[str, Any]) -> ApiResponse[Activity]:
        return self._item(self.api.call("POST", "/activities", _jsonable(activity)), Activity)

    def update_activity(self, activity_id: str, updates: Mapping[str, Any]) -> ApiResponse[Activity]:
        return self._item(
            self.api.call("PUT", f"/activities/{activity_id}", _jsonable(updates)), Activity
        )

    def delete_activity(self, activity_id: str) -> ApiResponse[None]:
        result = self.api.call("DELETE", f"/activities/{activity_id}")
        return ApiResponse.fail(result.error) if result.error else ApiResponse.ok(None)

    def fetch_rewards(self, family_id: str) -> ApiListResponse[Reward]:
        return self._family_list(family_id, "rewards", Reward)

    def create_reward(self, reward: Mapping[str, Any]) -> ApiResponse[Reward]:
        return self._item(self.api.call("POST", "/rewards", _jsonable(reward)), Reward)

    def update_reward(self, reward_id: str, updates: Mapping[str, Any]) -> ApiResponse[Reward]:
        return self._item(self.api.call("PUT", f"/rewards/{reward_id}", _jsonable(updates)), Reward)

    def delete_reward(self, reward_id: str) -> ApiResponse[None]:
        result = self.api.call("DELETE", f"/rewards/{reward_id}")
        return ApiResponse.fail(result.error) if result.error else ApiResponse.ok(None)

    def fetch_point_entries(
        self, family_id: str, user_id: Optional[str] = None
    ) -> ApiListResponse[PointEntry]:
        return self._family_list(family_id, "point-entries", PointEntry, user_id)

    def create_point_entry(self, entry: Mapping[str, Any]) -> ApiResponse[PointEntry]:
        return self._item(self.api.call("POST", "/point-entries", _jsonable(entry)), PointEntry)

    def update_point_entry(self, entry_id: str, updates: Mapping[str, Any]) -> ApiResponse[PointEntry]:
        return self._item(
            self.api.call("PUT", f"/point-entries/{entry_id}", _jsonable(updates)), PointEntry
        )

    def approve_point_entry(
        self, entry_id: str, approved: bool, approved_by: str
    ) -> ApiResponse[PointEntry]:
        body = {"approved": approved, "approvedBy": approved_by}
        return self._item(
            self.api.call("POST", f"/point-entries/{entry_id}/approve", body), PointEntry
        )

    def fetch_reward_redemptions(
        self, family_id: str, user_id: Optional[str] = None
    ) -> ApiListResponse[RewardRedemption]:
        return self._family_list(family_id, "reward-redemptions", RewardRedemption, user_id)

    def create_reward_redemption(
        self, redemption: Mapping[str, Any]
    ) -> ApiResponse[RewardRedemption]:
        return self._item(
            self.api.call("POST", "/reward-redemptions", _jsonable(redemption)), RewardRedemption
        )

    def approve_reward_redemption(
        self, redemption_id: str, approved: bool, approved_by: str
    ) -> ApiResponse[RewardRedemption]:
        body = {"approved": approved, "approvedBy": approved_by}
        return self._item(
            self.api.call("POST", f"/reward-redemptions/{redemption_id}/approve", body),
            RewardRedemption,
        )
