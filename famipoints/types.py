"""
Data shapes shared by the auth/data services, the store and the REST server.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import StrEnum
from typing import Any, Generic, List, Mapping, Optional, TypeVar

T = TypeVar("T")


class UserRole(StrEnum):
    PARENT = "parent"
    KID = "kid"
    ADMIN = "admin"


class ActivityCategory(StrEnum):
    OBLIGATION = "obligation"
    NICE_TO_HAVE = "nice_to_have"
    FORBIDDEN = "forbidden"


class EntryStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AuthEvent(StrEnum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_UP = "SIGNED_UP"
    SIGNED_OUT = "SIGNED_OUT"


# Roles allowed to manage family content and approve entries.
MANAGER_ROLES = frozenset({UserRole.PARENT, UserRole.ADMIN})


def snake_to_camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


class _Record:
    """Mixin giving dataclasses a tolerant dict round-trip."""

    # Maps wire (camelCase) keys onto field names for the few shapes that
    # use them on the wire.
    _WIRE_ALIASES: Mapping[str, str] = {}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]):
        names = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in payload.items():
            name = cls._WIRE_ALIASES.get(key, key)
            if name in names:
                values[name] = value
        return cls(**values)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class AuthUser(_Record):
    id: str
    email: Optional[str] = None
    role: Optional[UserRole] = None
    family_id: Optional[str] = None
    display_name: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self):
        if self.role is not None:
            self.role = UserRole(self.role)


@dataclass
class AuthSession(_Record):
    user: Optional[AuthUser] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AuthSession":
        user = payload.get("user")
        return cls(user=AuthUser.from_dict(user) if user else None)


@dataclass
class Family(_Record):
    id: str
    name: str
    created_by: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class UserProfile(_Record):
    user_id: str
    email: str
    display_name: str
    role: UserRole
    family_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self):
        self.role = UserRole(self.role)


@dataclass
class Activity(_Record):
    id: str
    family_id: str
    name: str
    category: ActivityCategory
    points: int
    created_by: str
    description: Optional[str] = None
    requires_approval: bool = False
    deadline: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self):
        self.category = ActivityCategory(self.category)


@dataclass
class Reward(_Record):
    id: str
    family_id: str
    name: str
    point_cost: int
    created_by: str
    description: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class PointEntry(_Record):
    id: str
    family_id: str
    user_id: str
    points: int
    status: EntryStatus = EntryStatus.APPROVED
    activity_id: Optional[str] = None
    reward_id: Optional[str] = None
    submitted_at: Optional[str] = None
    approved_at: Optional[str] = None
    approved_by: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self):
        self.status = EntryStatus(self.status)


@dataclass
class RewardRedemption(_Record):
    id: str
    family_id: str
    user_id: str
    reward_id: str
    points_spent: int
    status: EntryStatus = EntryStatus.PENDING
    requested_at: Optional[str] = None
    approved_at: Optional[str] = None
    approved_by: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self):
        self.status = EntryStatus(self.status)


@dataclass
class Kid(_Record):
    id: str
    display_name: str
    total_points: int = 0


@dataclass
class PendingActivity(_Record):
    id: str
    activity_name: str
    kid_name: str
    points: int
    submitted_at: Optional[str] = None


@dataclass
class DashboardStats(_Record):
    total_kids: int = 0
    total_activities: int = 0
    total_rewards: int = 0
    pending_approvals: int = 0

    _WIRE_ALIASES = {
        "totalKids": "total_kids",
        "totalActivities": "total_activities",
        "totalRewards": "total_rewards",
        "pendingApprovals": "pending_approvals",
    }

    def to_wire(self) -> dict:
        return {snake_to_camel(key): value for key, value in self.as_dict().items()}


@dataclass
class ApiResponse(Generic[T]):
    """Single-item envelope: exactly one of ``data``/``error`` is meaningful."""

    data: Optional[T] = None
    error: Optional[str] = None

    def __post_init__(self):
        if self.error is not None and self.data is not None:
            raise ValueError("an envelope carrying an error must not carry data")

    @classmethod
    def ok(cls, data: Optional[T] = None) -> "ApiResponse[T]":
        return cls(data=data, error=None)

    @classmethod
    def fail(cls, error: str) -> "ApiResponse[T]":
        return cls(data=None, error=error)


@dataclass
class ApiListResponse(Generic[T]):
    """List envelope with an optional total ``count``."""

    data: Optional[List[T]] = None
    error: Optional[str] = None
    count: Optional[int] = None

    def __post_init__(self):
        if self.error is not None and self.data is not None:
            raise ValueError("an envelope carrying an error must not carry data")

    @classmethod
    def ok(cls, data: List[T], count: Optional[int] = None) -> "ApiListResponse[T]":
        return cls(data=data, error=None, count=count)

    @classmethod
    def fail(cls, error: str) -> "ApiListResponse[T]":
        return cls(data=None, error=error)


@dataclass
class Subscription:
    """Handle returned by ``on_auth_state_change``."""

    _cancel: Any = field(repr=False)
    active: bool = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._cancel()
