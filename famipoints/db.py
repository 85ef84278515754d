"""
Embedded store: SQLAlchemy schema plus the client that owns auth and session state.

Any SQLAlchemy URL works (Postgres in production, SQLite for tests).
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from passlib.context import CryptContext
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from famipoints.errors import AuthError, BackendError, InvalidCredentialsError
from famipoints.events import AuthStateEmitter
from famipoints.types import (
    ActivityCategory,
    AuthUser,
    EntryStatus,
    Family,
    UserProfile,
    UserRole,
)

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

MIN_PASSWORD_LENGTH = 6

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError as exc:
        raise BackendError(f"invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _in_set(column: str, values) -> str:
    allowed = ", ".join(f"'{v.value}'" for v in values)
    return f"{column} IN ({allowed})"


class AuthUserRow(Base):
    __tablename__ = "auth_users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class FamilyRow(Base):
    __tablename__ = "families"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    created_by = Column(String, ForeignKey("auth_users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class UserProfileRow(Base):
    __tablename__ = "user_profiles"
    __table_args__ = (CheckConstraint(_in_set("role", UserRole), name="ck_profile_role"),)

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("auth_users.id"), nullable=False, unique=True, index=True)
    email = Column(String, nullable=False)
    display_name = Column(String, nullable=False)
    role = Column(String, nullable=False)
    family_id = Column(String, ForeignKey("families.id", ondelete="CASCADE"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ActivityRow(Base):
    __tablename__ = "activities"
    __table_args__ = (
        CheckConstraint(_in_set("category", ActivityCategory), name="ck_activity_category"),
    )

    id = Column(String, primary_key=True)
    family_id = Column(String, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=False)
    points = Column(Integer, nullable=False)
    requires_approval = Column(Boolean, nullable=False, default=False)
    deadline = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String, ForeignKey("user_profiles.user_id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class RewardRow(Base):
    __tablename__ = "rewards"
    __table_args__ = (CheckConstraint("point_cost >= 0", name="ck_reward_point_cost"),)

    id = Column(String, primary_key=True)
    family_id = Column(String, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    point_cost = Column(Integer, nullable=False)
    created_by = Column(String, ForeignKey("user_profiles.user_id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class PointEntryRow(Base):
    __tablename__ = "point_entries"
    __table_args__ = (CheckConstraint(_in_set("status", EntryStatus), name="ck_entry_status"),)

    id = Column(String, primary_key=True)
    family_id = Column(String, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("user_profiles.user_id"), nullable=False, index=True)
    activity_id = Column(String, ForeignKey("activities.id", ondelete="SET NULL"), nullable=True)
    reward_id = Column(String, ForeignKey("rewards.id", ondelete="SET NULL"), nullable=True)
    points = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=EntryStatus.APPROVED.value)
    submitted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(String, ForeignKey("user_profiles.user_id"), nullable=True)
    notes = Column(Text, nullable=True)


class RewardRedemptionRow(Base):
    __tablename__ = "reward_redemptions"
    __table_args__ = (CheckConstraint(_in_set("status", EntryStatus), name="ck_redemption_status"),)

    id = Column(String, primary_key=True)
    family_id = Column(String, ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("user_profiles.user_id"), nullable=False, index=True)
    reward_id = Column(String, ForeignKey("rewards.id"), nullable=False)
    points_spent = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=EntryStatus.PENDING.value)
    requested_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(String, ForeignKey("user_profiles.user_id"), nullable=True)
    notes = Column(Text, nullable=True)


def to_profile(row: UserProfileRow) -> UserProfile:
    return UserProfile(
        user_id=row.user_id,
        email=row.email,
        display_name=row.display_name,
        role=UserRole(row.role),
        family_id=row.family_id,
        created_at=to_iso(row.created_at),
        updated_at=to_iso(row.updated_at),
    )


def to_family(row: FamilyRow) -> Family:
    return Family(
        id=row.id,
        name=row.name,
        created_by=row.created_by,
        created_at=to_iso(row.created_at),
        updated_at=to_iso(row.updated_at),
    )


def _to_auth_user(user: AuthUserRow, profile: Optional[UserProfileRow]) -> AuthUser:
    if profile is None:
        return AuthUser(id=user.id, email=user.email, created_at=to_iso(user.created_at))
    return AuthUser(
        id=user.id,
        email=user.email,
        role=UserRole(profile.role),
        family_id=profile.family_id,
        display_name=profile.display_name,
        created_at=to_iso(profile.created_at),
        updated_at=to_iso(profile.updated_at),
    )


class DatabaseClient:
    """
    SQLAlchemy-backed client for the embedded store.

    Owns the signed-in session and its auth-state listeners, the way a
    backend-as-a-service client library does; row access goes through
    ``for_user`` so every query is evaluated against the acting user.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("database_url is required for DatabaseClient")
        engine_kwargs: dict[str, Any] = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite:"):
                # One shared connection so every session sees the same database.
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

        self.session_user: Optional[AuthUser] = None
        self.auth_events = AuthStateEmitter()

    # -- auth -------------------------------------------------------------

    def register(
        self, email: str, password: str, display_name: str, role: UserRole | str
    ) -> AuthUser:
        """
        Create credentials and a profile; parents also get their own family.

        Everything is written in one transaction, so a failure leaves no
        partial account behind.
        """
        try:
            role = UserRole(role)
        except ValueError as exc:
            raise AuthError(f"invalid role: {role}") from exc
        email = (email or "").strip().lower()
        if not email:
            raise AuthError("Email is required")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise AuthError(
                f"Password should be at least {MIN_PASSWORD_LENGTH} characters"
            )

        now = utcnow()
        with self.Session() as session:
            existing = session.execute(
                select(AuthUserRow).where(AuthUserRow.email == email)
            ).scalar_one_or_none()
            if existing:
                raise AuthError("User already registered")

            user = AuthUserRow(
                id=new_id(),
                email=email,
                password_hash=pwd_context.hash(password),
                created_at=now,
            )
            session.add(user)
            session.flush()
            family_id = None
            if role == UserRole.PARENT:
                family_id = user.id
                session.add(
                    FamilyRow(
                        id=family_id,
                        name=f"{display_name}'s Family",
                        created_by=user.id,
                        created_at=now,
                        updated_at=now,
                    )
                )
                session.flush()
            profile = UserProfileRow(
                user_id=user.id,
                email=email,
                display_name=display_name,
                role=role.value,
                family_id=family_id,
                created_at=now,
                updated_at=now,
            )
            session.add(profile)
            session.commit()
            logger.info("Registered %s user %s", role.value, user.id)
            return _to_auth_user(user, profile)

    def authenticate(self, email: str, password: str) -> AuthUser:
        email = (email or "").strip().lower()
        with self.Session() as session:
            user = session.execute(
                select(AuthUserRow).where(AuthUserRow.email == email)
            ).scalar_one_or_none()
            if not user or not pwd_context.verify(password or "", user.password_hash):
                raise InvalidCredentialsError("Invalid login credentials")
            profile = self._profile_row(session, user.id)
            return _to_auth_user(user, profile)

    def load_user(self, user_id: str) -> Optional[AuthUser]:
        with self.Session() as session:
            user = session.get(AuthUserRow, user_id)
            if not user:
                return None
            return _to_auth_user(user, self._profile_row(session, user_id))

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        with self.Session() as session:
            row = self._profile_row(session, user_id)
            return to_profile(row) if row else None

    def get_family(self, family_id: str) -> Optional[Family]:
        with self.Session() as session:
            row = session.get(FamilyRow, family_id)
            return to_family(row) if row else None

    @staticmethod
    def _profile_row(session: Session, user_id: str) -> Optional[UserProfileRow]:
        return session.execute(
            select(UserProfileRow).where(UserProfileRow.user_id == user_id)
        ).scalar_one_or_none()

    # -- rows -------------------------------------------------------------

    def for_user(self, actor: Optional[AuthUser]) -> "FamilyStore":
        """Return a store view evaluated against ``actor``'s family and role."""
        from famipoints.store import FamilyStore

        return FamilyStore(self, actor)

    def current_store(self) -> "FamilyStore":
        return self.for_user(self.session_user)

    def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        self.engine.dispose()
