"""
Pydantic request bodies for the REST server.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from famipoints.types import ActivityCategory, EntryStatus, UserRole


class _Body(BaseModel):
    model_config = ConfigDict(extra="forbid")

    def to_values(self) -> dict:
        """Only the fields the client actually sent."""
        return self.model_dump(exclude_unset=True, mode="json")


class SignInPayload(_Body):
    email: str
    password: str


class SignUpPayload(_Body):
    email: str
    password: str
    displayName: str = Field(..., min_length=1)
    role: UserRole


class ApprovalPayload(_Body):
    approved: bool
    approvedBy: str


class ActivityCreate(_Body):
    family_id: str
    name: str
    category: ActivityCategory
    points: int
    created_by: str
    description: Optional[str] = None
    requires_approval: bool = False
    deadline: Optional[str] = None


class ActivityUpdate(_Body):
    name: Optional[str] = None
    category: Optional[ActivityCategory] = None
    points: Optional[int] = None
    created_by: Optional[str] = None
    description: Optional[str] = None
    requires_approval: Optional[bool] = None
    deadline: Optional[str] = None


class RewardCreate(_Body):
    family_id: str
    name: str
    point_cost: int = Field(..., ge=0)
    created_by: str
    description: Optional[str] = None


class RewardUpdate(_Body):
    name: Optional[str] = None
    point_cost: Optional[int] = Field(default=None, ge=0)
    created_by: Optional[str] = None
    description: Optional[str] = None


class PointEntryCreate(_Body):
    family_id: str
    user_id: str
    points: int
    activity_id: Optional[str] = None
    reward_id: Optional[str] = None
    status: Optional[EntryStatus] = None
    submitted_at: Optional[str] = None
    approved_at: Optional[str] = None
    approved_by: Optional[str] = None
    notes: Optional[str] = None


class PointEntryUpdate(_Body):
    points: Optional[int] = None
    activity_id: Optional[str] = None
    reward_id: Optional[str] = None
    notes: Optional[str] = None


class RedemptionCreate(_Body):
    family_id: str
    user_id: str
    reward_id: str
    points_spent: int
    status: Optional[EntryStatus] = None
    requested_at: Optional[str] = None
    approved_at: Optional[str] = None
    approved_by: Optional[str] = None
    notes: Optional[str] = None
