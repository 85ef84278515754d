"""
Authentication service: one contract, an embedded-store and a REST variant.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from famipoints.db import DatabaseClient
from famipoints.errors import BackendError
from famipoints.events import AuthStateCallback, AuthStateEmitter
from famipoints.http_client import RestApiClient
from famipoints.types import (
    ApiResponse,
    AuthEvent,
    AuthSession,
    AuthUser,
    Subscription,
    UserRole,
)

logger = logging.getLogger(__name__)


class AuthService(Protocol):
    """Session management, credential flows and profile lookup."""

    def get_session(self) -> AuthSession:
        ...

    def on_auth_state_change(self, callback: AuthStateCallback) -> Subscription:
        ...

    def sign_in(self, email: str, password: str) -> ApiResponse[AuthUser]:
        ...

    def sign_up(
        self, email: str, password: str, display_name: str, role: UserRole | str
    ) -> ApiResponse[AuthUser]:
        ...

    def sign_out(self) -> ApiResponse[None]:
        ...

    def fetch_user_profile(self, user_id: str) -> ApiResponse[AuthUser]:
        ...


class DatabaseAuthService:
    """
    Auth against the embedded store.

    The session and its listeners belong to the ``DatabaseClient``; this
    service drives them and layers the profile lookup on top.
    """

    def __init__(self, client: DatabaseClient):
        self.client = client

    def get_session(self) -> AuthSession:
        return AuthSession(user=self.client.session_user)

    def on_auth_state_change(self, callback: AuthStateCallback) -> Subscription:
        return self.client.auth_events.subscribe(callback)

    def sign_in(self, email: str, password: str) -> ApiResponse[AuthUser]:
        try:
            user = self.client.authenticate(email, password)
        except (BackendError, SQLAlchemyError) as exc:
            logger.warning("Sign-in failed for %s: %s", email, exc)
            return ApiResponse.fail(str(exc))
        self._start_session(AuthEvent.SIGNED_IN, user)
        return ApiResponse.ok(user)

    def sign_up(
        self, email: str, password: str, display_name: str, role: UserRole | str
    ) -> ApiResponse[AuthUser]:
        try:
            user = self.client.register(email, password, display_name, role)
        except (BackendError, SQLAlchemyError) as exc:
            logger.warning("Sign-up failed for %s: %s", email, exc)
            return ApiResponse.fail(str(exc))
        self._start_session(AuthEvent.SIGNED_UP, user)
        return ApiResponse.ok(user)

    def sign_out(self) -> ApiResponse[None]:
        user = self.client.session_user
        self.client.session_user = None
        if user:
            logger.info("Signed out %s", user.id)
        self.client.auth_events.emit(AuthEvent.SIGNED_OUT, None)
        return ApiResponse.ok(None)

    def fetch_user_profile(self, user_id: str) -> ApiResponse[AuthUser]:
        try:
            profile = self.client.get_profile(user_id)
        except SQLAlchemyError as exc:
            logger.exception("Profile lookup failed for %s", user_id)
            return ApiResponse.fail(str(exc))
        if profile is None:
            # A missing profile is not an error; the caller gets a bare user.
            return ApiResponse.ok(AuthUser(id=user_id))
        return ApiResponse.ok(
            AuthUser(
                id=user_id,
                email=profile.email,
                role=profile.role,
                family_id=profile.family_id,
                display_name=profile.display_name,
                created_at=profile.created_at,
                updated_at=profile.updated_at,
            )
        )

    def _start_session(self, event: AuthEvent, user: AuthUser) -> None:
        self.client.session_user = user
        logger.info("%s: %s", event.value, user.id)
        self.client.auth_events.emit(event, AuthSession(user=user))


class RestApiAuthService:
    """
    Auth against the remote API.

    Listeners are local: they fire only as a side effect of this client's
    own sign-in/up/out and never learn about server-side invalidation.
    """

    def __init__(self, api: RestApiClient):
        self.api = api
        self._events = AuthStateEmitter()

    def get_session(self) -> AuthSession:
        if not self.api.token_store.get():
            return AuthSession(user=None)
        result = self.api.call("GET", "/auth/me")
        if result.error or not result.data:
            return AuthSession(user=None)
        try:
            return AuthSession(user=AuthUser.from_dict(result.data))
        except (TypeError, ValueError):
            logger.exception("Unexpected /auth/me payload")
            return AuthSession(user=None)

    def on_auth_state_change(self, callback: AuthStateCallback) -> Subscription:
        return self._events.subscribe(callback)

    def sign_in(self, email: str, password: str) -> ApiResponse[AuthUser]:
        result = self.api.call("POST", "/auth/signin", {"email": email, "password": password})
        return self._accept_session(AuthEvent.SIGNED_IN, result)

    def sign_up(
        self, email: str, password: str, display_name: str, role: UserRole | str
    ) -> ApiResponse[AuthUser]:
        body = {
            "email": email,
            "password": password,
            "displayName": display_name,
            "role": str(role),
        }
        result = self.api.call("POST", "/auth/signup", body)
        return self._accept_session(AuthEvent.SIGNED_UP, result)

    def sign_out(self) -> ApiResponse[None]:
        if self.api.token_store.get():
            # Best effort; the local session ends regardless of the reply.
            result = self.api.call("POST", "/auth/signout")
            if result.error:
                logger.warning("Server sign-out failed: %s", result.error)
        self.api.token_store.clear()
        self._events.emit(AuthEvent.SIGNED_OUT, None)
        return ApiResponse.ok(None)

    def fetch_user_profile(self, user_id: str) -> ApiResponse[AuthUser]:
        result = self.api.call("GET", f"/auth/profile/{user_id}")
        if result.error:
            return ApiResponse.fail(result.error)
        return ApiResponse.ok(AuthUser.from_dict(result.data) if result.data else None)

    def _accept_session(self, event: AuthEvent, result: ApiResponse) -> ApiResponse[AuthUser]:
        if result.error:
            return ApiResponse.fail(result.error)
        data = result.data if isinstance(result.data, dict) else {}
        token: Optional[str] = data.get("token")
        if not token or not isinstance(data.get("user"), dict):
            return ApiResponse.fail("Malformed auth response")
        try:
            user = AuthUser.from_dict(data["user"])
        except (TypeError, ValueError):
            return ApiResponse.fail("Malformed auth response")
        self.api.token_store.set(token)
        logger.info("%s: %s", event.value, user.id)
        self._events.emit(event, AuthSession(user=user))
        return ApiResponse.ok(user)
