"""
Family-scoped queries and mutations over the embedded store.

Every call is evaluated against an acting user, mirroring the row-level
security policies of the hosted database: members read their own family,
parents and admins manage it, kids may only log entries for themselves.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from famipoints.db import (
    ActivityRow,
    PointEntryRow,
    RewardRedemptionRow,
    RewardRow,
    UserProfileRow,
    new_id,
    parse_timestamp,
    to_iso,
    utcnow,
)
from famipoints.errors import BackendError, NotFoundError, PermissionDeniedError
from famipoints.types import (
    Activity,
    ActivityCategory,
    AuthUser,
    DashboardStats,
    EntryStatus,
    Kid,
    MANAGER_ROLES,
    PendingActivity,
    PointEntry,
    Reward,
    RewardRedemption,
    UserRole,
)

if TYPE_CHECKING:
    from famipoints.db import DatabaseClient

logger = logging.getLogger(__name__)

UNKNOWN_ACTIVITY = "Unknown Activity"
UNKNOWN_KID = "Unknown Kid"

ACTIVITY_COLUMNS = frozenset(
    {"family_id", "name", "description", "category", "points", "requires_approval", "deadline", "created_by"}
)
REWARD_COLUMNS = frozenset({"family_id", "name", "description", "point_cost", "created_by"})
ENTRY_COLUMNS = frozenset(
    {
        "family_id",
        "user_id",
        "activity_id",
        "reward_id",
        "points",
        "status",
        "submitted_at",
        "approved_at",
        "approved_by",
        "notes",
    }
)
REDEMPTION_COLUMNS = frozenset(
    {
        "family_id",
        "user_id",
        "reward_id",
        "points_spent",
        "status",
        "requested_at",
        "approved_at",
        "approved_by",
        "notes",
    }
)
# Status only moves through approve_*.
APPROVAL_COLUMNS = frozenset({"status", "approved_at", "approved_by"})
TIMESTAMP_COLUMNS = frozenset({"deadline", "submitted_at", "requested_at", "approved_at"})
# Columns whose value must name a row of the same family: (model, key column).
FAMILY_REFERENCES = {
    "user_id": (UserProfileRow, UserProfileRow.user_id),
    "created_by": (UserProfileRow, UserProfileRow.user_id),
    "approved_by": (UserProfileRow, UserProfileRow.user_id),
    "activity_id": (ActivityRow, ActivityRow.id),
    "reward_id": (RewardRow, RewardRow.id),
}


def _to_activity(row: ActivityRow) -> Activity:
    return Activity(
        id=row.id,
        family_id=row.family_id,
        name=row.name,
        description=row.description,
        category=ActivityCategory(row.category),
        points=row.points,
        requires_approval=bool(row.requires_approval),
        deadline=to_iso(row.deadline),
        created_by=row.created_by,
        created_at=to_iso(row.created_at),
        updated_at=to_iso(row.updated_at),
    )


def _to_reward(row: RewardRow) -> Reward:
    return Reward(
        id=row.id,
        family_id=row.family_id,
        name=row.name,
        description=row.description,
        point_cost=row.point_cost,
        created_by=row.created_by,
        created_at=to_iso(row.created_at),
        updated_at=to_iso(row.updated_at),
    )


def _to_point_entry(row: PointEntryRow) -> PointEntry:
    return PointEntry(
        id=row.id,
        family_id=row.family_id,
        user_id=row.user_id,
        activity_id=row.activity_id,
        reward_id=row.reward_id,
        points=row.points,
        status=EntryStatus(row.status),
        submitted_at=to_iso(row.submitted_at),
        approved_at=to_iso(row.approved_at),
        approved_by=row.approved_by,
        notes=row.notes,
    )


def _to_redemption(row: RewardRedemptionRow) -> RewardRedemption:
    return RewardRedemption(
        id=row.id,
        family_id=row.family_id,
        user_id=row.user_id,
        reward_id=row.reward_id,
        points_spent=row.points_spent,
        status=EntryStatus(row.status),
        requested_at=to_iso(row.requested_at),
        approved_at=to_iso(row.approved_at),
        approved_by=row.approved_by,
        notes=row.notes,
    )


def _clean_values(
    table: str,
    payload: Mapping[str, Any],
    allowed: Iterable[str],
    *,
    required: Iterable[str] = (),
) -> dict[str, Any]:
    allowed = set(allowed)
    values: dict[str, Any] = {}
    for key, value in payload.items():
        if key not in allowed:
            raise BackendError(f"column '{key}' of relation '{table}' cannot be written")
        if key in TIMESTAMP_COLUMNS:
            value = parse_timestamp(value)
        values[key] = value
    missing = [key for key in required if values.get(key) is None]
    if missing:
        raise BackendError(f"null value in column '{missing[0]}' of relation '{table}'")
    if values.get("category") is not None:
        values["category"] = _closed_value(ActivityCategory, values["category"], "category")
    if values.get("status") is not None:
        values["status"] = _closed_value(EntryStatus, values["status"], "status")
    if values.get("point_cost") is not None and values["point_cost"] < 0:
        raise BackendError("point_cost must not be negative")
    return values


def _closed_value(enum_cls, value: Any, column: str) -> str:
    try:
        return enum_cls(value).value
    except ValueError as exc:
        raise BackendError(f"invalid {column}: {value!r}") from exc


class FamilyStore:
    """Store view bound to one acting user."""

    def __init__(self, client: "DatabaseClient", actor: Optional[AuthUser]):
        self.client = client
        self.actor = actor

    # -- policy -----------------------------------------------------------

    def _require_actor(self) -> AuthUser:
        if self.actor is None:
            raise PermissionDeniedError("not authenticated")
        return self.actor

    def _require_member(self, family_id: str) -> AuthUser:
        actor = self._require_actor()
        if not family_id or actor.family_id != family_id:
            logger.warning("User %s denied access to family %s", actor.id, family_id)
            raise PermissionDeniedError(f"permission denied for family {family_id}")
        return actor

    def _require_manager(self, family_id: str) -> AuthUser:
        actor = self._require_member(family_id)
        if actor.role not in MANAGER_ROLES:
            logger.warning("User %s (%s) may not manage family %s", actor.id, actor.role, family_id)
            raise PermissionDeniedError("permission denied: parent or admin role required")
        return actor

    def _require_self_or_manager(self, family_id: str, user_id: Optional[str]) -> AuthUser:
        actor = self._require_member(family_id)
        if actor.role in MANAGER_ROLES or user_id == actor.id:
            return actor
        raise PermissionDeniedError("permission denied: kids may only submit their own entries")

    def _scoped_row(self, session: Session, model, row_id: str):
        """Fetch ``row_id`` only if it belongs to the actor's family."""
        actor = self._require_actor()
        return session.execute(
            select(model).where(model.id == row_id, model.family_id == actor.family_id)
        ).scalar_one_or_none()

    def _check_references(self, session: Session, family_id: str, values: Mapping[str, Any]) -> None:
        """Reject ids that point at users, activities or rewards of another family."""
        for column, (model, key) in FAMILY_REFERENCES.items():
            ref = values.get(column)
            if ref is None:
                continue
            owner = session.execute(
                select(model.family_id).where(key == ref)
            ).scalar_one_or_none()
            if owner != family_id:
                logger.warning("Rejected %s %s outside family %s", column, ref, family_id)
                raise PermissionDeniedError(
                    f"permission denied: {column} {ref} is not in family {family_id}"
                )

    # -- dashboard --------------------------------------------------------

    def kids_with_points(self, family_id: str) -> list[Kid]:
        self._require_member(family_id)
        total = func.coalesce(func.sum(PointEntryRow.points), 0).label("total_points")
        stmt = (
            select(UserProfileRow.user_id, UserProfileRow.display_name, total)
            .outerjoin(
                PointEntryRow,
                and_(
                    PointEntryRow.user_id == UserProfileRow.user_id,
                    PointEntryRow.family_id == family_id,
                    PointEntryRow.status == EntryStatus.APPROVED.value,
                ),
            )
            .where(
                UserProfileRow.family_id == family_id,
                UserProfileRow.role == UserRole.KID.value,
            )
            .group_by(UserProfileRow.user_id, UserProfileRow.display_name)
            .order_by(total.desc(), UserProfileRow.display_name)
        )
        with self.client.Session() as session:
            return [
                Kid(id=user_id, display_name=name, total_points=int(points or 0))
                for user_id, name, points in session.execute(stmt)
            ]

    def pending_activities(self, family_id: str) -> list[PendingActivity]:
        self._require_member(family_id)
        stmt = (
            select(PointEntryRow, ActivityRow.name, UserProfileRow.display_name)
            .outerjoin(
                ActivityRow,
                and_(
                    ActivityRow.id == PointEntryRow.activity_id,
                    ActivityRow.family_id == family_id,
                ),
            )
            .outerjoin(
                UserProfileRow,
                and_(
                    UserProfileRow.user_id == PointEntryRow.user_id,
                    UserProfileRow.family_id == family_id,
                ),
            )
            .where(
                PointEntryRow.family_id == family_id,
                PointEntryRow.status == EntryStatus.PENDING.value,
            )
            .order_by(PointEntryRow.submitted_at.desc())
        )
        with self.client.Session() as session:
            return [
                PendingActivity(
                    id=entry.id,
                    activity_name=activity_name or UNKNOWN_ACTIVITY,
                    kid_name=kid_name or UNKNOWN_KID,
                    points=entry.points,
                    submitted_at=to_iso(entry.submitted_at),
                )
                for entry, activity_name, kid_name in session.execute(stmt)
            ]

    def dashboard_stats(self, family_id: str) -> DashboardStats:
        self._require_member(family_id)

        def count(model, *criteria):
            return (
                select(func.count())
                .select_from(model)
                .where(model.family_id == family_id, *criteria)
                .scalar_subquery()
            )

        # Four independent counts issued in one round trip.
        stmt = select(
            count(UserProfileRow, UserProfileRow.role == UserRole.KID.value),
            count(ActivityRow),
            count(RewardRow),
            count(PointEntryRow, PointEntryRow.status == EntryStatus.PENDING.value),
        )
        with self.client.Session() as session:
            kids, activities, rewards, pending = session.execute(stmt).one()
        return DashboardStats(
            total_kids=kids or 0,
            total_activities=activities or 0,
            total_rewards=rewards or 0,
            pending_approvals=pending or 0,
        )

    # -- activities -------------------------------------------------------

    def list_activities(self, family_id: str) -> list[Activity]:
        self._require_member(family_id)
        stmt = (
            select(ActivityRow)
            .where(ActivityRow.family_id == family_id)
            .order_by(ActivityRow.created_at.desc())
        )
        with self.client.Session() as session:
            return [_to_activity(row) for row in session.execute(stmt).scalars()]

    def create_activity(self, payload: Mapping[str, Any]) -> Activity:
        values = _clean_values(
            "activities",
            payload,
            ACTIVITY_COLUMNS,
            required=("family_id", "name", "category", "points", "created_by"),
        )
        self._require_manager(values["family_id"])
        now = utcnow()
        with self.client.Session() as session:
            self._check_references(session, values["family_id"], values)
            row = ActivityRow(id=new_id(), created_at=now, updated_at=now, **values)
            session.add(row)
            session.commit()
            logger.info("Created activity %s in family %s", row.id, row.family_id)
            return _to_activity(row)

    def update_activity(self, activity_id: str, updates: Mapping[str, Any]) -> Activity:
        values = _clean_values("activities", updates, ACTIVITY_COLUMNS - {"family_id"})
        with self.client.Session() as session:
            row = self._scoped_row(session, ActivityRow, activity_id)
            if not row:
                raise NotFoundError(f"activity {activity_id} not found")
            self._require_manager(row.family_id)
            self._check_references(session, row.family_id, values)
            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            session.commit()
            return _to_activity(row)

    def delete_activity(self, activity_id: str) -> None:
        with self.client.Session() as session:
            row = self._scoped_row(session, ActivityRow, activity_id)
            if not row:
                return
            self._require_manager(row.family_id)
            session.delete(row)
            session.commit()
            logger.info("Deleted activity %s", activity_id)

    # -- rewards ----------------------------------------------------------

    def list_rewards(self, family_id: str) -> list[Reward]:
        self._require_member(family_id)
        stmt = (
            select(RewardRow)
            .where(RewardRow.family_id == family_id)
            .order_by(RewardRow.created_at.desc())
        )
        with self.client.Session() as session:
            return [_to_reward(row) for row in session.execute(stmt).scalars()]

    def create_reward(self, payload: Mapping[str, Any]) -> Reward:
        values = _clean_values(
            "rewards",
            payload,
            REWARD_COLUMNS,
            required=("family_id", "name", "point_cost", "created_by"),
        )
        self._require_manager(values["family_id"])
        now = utcnow()
        with self.client.Session() as session:
            self._check_references(session, values["family_id"], values)
            row = RewardRow(id=new_id(), created_at=now, updated_at=now, **values)
            session.add(row)
            session.commit()
            logger.info("Created reward %s in family %s", row.id, row.family_id)
            return _to_reward(row)

    def update_reward(self, reward_id: str, updates: Mapping[str, Any]) -> Reward:
        values = _clean_values("rewards", updates, REWARD_COLUMNS - {"family_id"})
        with self.client.Session() as session:
            row = self._scoped_row(session, RewardRow, reward_id)
            if not row:
                raise NotFoundError(f"reward {reward_id} not found")
            self._require_manager(row.family_id)
            self._check_references(session, row.family_id, values)
            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            session.commit()
            return _to_reward(row)

    def delete_reward(self, reward_id: str) -> None:
        with self.client.Session() as session:
            row = self._scoped_row(session, RewardRow, reward_id)
            if not row:
                return
            self._require_manager(row.family_id)
            session.delete(row)
            session.commit()
            logger.info("Deleted reward %s", reward_id)

    # -- point entries ----------------------------------------------------

    def list_point_entries(self, family_id: str, user_id: Optional[str] = None) -> list[PointEntry]:
        self._require_member(family_id)
        stmt = select(PointEntryRow).where(PointEntryRow.family_id == family_id)
        if user_id:
            stmt = stmt.where(PointEntryRow.user_id == user_id)
        stmt = stmt.order_by(PointEntryRow.submitted_at.desc())
        with self.client.Session() as session:
            return [_to_point_entry(row) for row in session.execute(stmt).scalars()]

    def create_point_entry(self, payload: Mapping[str, Any]) -> PointEntry:
        values = _clean_values(
            "point_entries",
            payload,
            ENTRY_COLUMNS,
            required=("family_id", "user_id", "points"),
        )
        self._require_self_or_manager(values["family_id"], values["user_id"])
        if values.get("status") is None:
            values["status"] = EntryStatus.APPROVED.value
        if values.get("submitted_at") is None:
            values["submitted_at"] = utcnow()
        with self.client.Session() as session:
            self._check_references(session, values["family_id"], values)
            row = PointEntryRow(id=new_id(), **values)
            session.add(row)
            session.commit()
            logger.info(
                "Recorded %s points for %s (%s)", row.points, row.user_id, row.status
            )
            return _to_point_entry(row)

    def update_point_entry(self, entry_id: str, updates: Mapping[str, Any]) -> PointEntry:
        if APPROVAL_COLUMNS & set(updates):
            raise BackendError("status changes must go through approve_point_entry")
        values = _clean_values(
            "point_entries", updates, ENTRY_COLUMNS - {"family_id"} - APPROVAL_COLUMNS
        )
        with self.client.Session() as session:
            row = self._scoped_row(session, PointEntryRow, entry_id)
            if not row:
                raise NotFoundError(f"point entry {entry_id} not found")
            self._require_manager(row.family_id)
            self._check_references(session, row.family_id, values)
            for key, value in values.items():
                setattr(row, key, value)
            session.commit()
            return _to_point_entry(row)

    def approve_point_entry(self, entry_id: str, approved: bool, approved_by: str) -> PointEntry:
        with self.client.Session() as session:
            row = self._scoped_row(session, PointEntryRow, entry_id)
            if not row:
                raise NotFoundError(f"point entry {entry_id} not found")
            self._require_manager(row.family_id)
            self._check_references(session, row.family_id, {"approved_by": approved_by})
            self._apply_decision(row, approved, approved_by, "point entry")
            session.commit()
            logger.info("Point entry %s %s by %s", entry_id, row.status, approved_by)
            return _to_point_entry(row)

    # -- redemptions ------------------------------------------------------

    def list_redemptions(
        self, family_id: str, user_id: Optional[str] = None
    ) -> list[RewardRedemption]:
        self._require_member(family_id)
        stmt = select(RewardRedemptionRow).where(RewardRedemptionRow.family_id == family_id)
        if user_id:
            stmt = stmt.where(RewardRedemptionRow.user_id == user_id)
        stmt = stmt.order_by(RewardRedemptionRow.requested_at.desc())
        with self.client.Session() as session:
            return [_to_redemption(row) for row in session.execute(stmt).scalars()]

    def create_redemption(self, payload: Mapping[str, Any]) -> RewardRedemption:
        values = _clean_values(
            "reward_redemptions",
            payload,
            REDEMPTION_COLUMNS,
            required=("family_id", "user_id", "reward_id", "points_spent"),
        )
        self._require_self_or_manager(values["family_id"], values["user_id"])
        if values.get("status") is None:
            values["status"] = EntryStatus.PENDING.value
        if values.get("requested_at") is None:
            values["requested_at"] = utcnow()
        with self.client.Session() as session:
            self._check_references(session, values["family_id"], values)
            row = RewardRedemptionRow(id=new_id(), **values)
            session.add(row)
            session.commit()
            logger.info(
                "Redemption %s requested by %s for %s points",
                row.id,
                row.user_id,
                row.points_spent,
            )
            return _to_redemption(row)

    def approve_redemption(
        self, redemption_id: str, approved: bool, approved_by: str
    ) -> RewardRedemption:
        with self.client.Session() as session:
            row = self._scoped_row(session, RewardRedemptionRow, redemption_id)
            if not row:
                raise NotFoundError(f"reward redemption {redemption_id} not found")
            self._require_manager(row.family_id)
            self._check_references(session, row.family_id, {"approved_by": approved_by})
            self._apply_decision(row, approved, approved_by, "reward redemption")
            session.commit()
            logger.info("Redemption %s %s by %s", redemption_id, row.status, approved_by)
            return _to_redemption(row)

    @staticmethod
    def _apply_decision(row, approved: bool, approved_by: str, label: str) -> None:
        target = EntryStatus.APPROVED if approved else EntryStatus.REJECTED
        # pending -> approved/rejected; repeating the same decision re-stamps.
        if row.status not in (EntryStatus.PENDING.value, target.value):
            raise BackendError(f"{label} {row.id} is already {row.status}")
        row.status = target.value
        row.approved_at = utcnow()
        row.approved_by = approved_by
