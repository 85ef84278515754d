"""
HTTP client for the remote REST API plus client-side token storage.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

import requests

from famipoints.errors import NetworkError
from famipoints.types import ApiListResponse, ApiResponse

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "API request failed"


class TokenStore(Protocol):
    """Where the bearer token of the signed-in user lives between calls."""

    def get(self) -> Optional[str]:
        ...

    def set(self, token: str) -> None:
        ...

    def clear(self) -> None:
        ...


@dataclass
class InMemoryTokenStore:
    """Process-local token storage for tests and short-lived clients."""

    token: Optional[str] = None

    def get(self) -> Optional[str]:
        return self.token

    def set(self, token: str) -> None:
        self.token = token

    def clear(self) -> None:
        self.token = None


class FileTokenStore:
    """Persists the token in a small JSON file so sessions survive restarts."""

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def get(self) -> Optional[str]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f).get("auth_token")
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable token file %s", self.path)
            return None

    def set(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"auth_token": token}, f)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class RestApiClient:
    """
    Issues one JSON request per call and converts the reply into an envelope.

    The bearer token is read from ``token_store`` on every call, so a token
    written by sign-in is used by the very next request. Before any session
    exists the API key is sent instead.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        token_store: Optional[TokenStore] = None,
        http: Any = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.token_store = token_store if token_store is not None else InMemoryTokenStore()
        self.http = http if http is not None else requests.Session()
        self.timeout = timeout

    def close(self) -> None:
        self.http.close()

    def _headers(self) -> dict[str, str]:
        token = self.token_store.get() or self.api_key
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }

    def _request(self, method: str, endpoint: str, body: Any = None, params: Optional[dict] = None):
        """Return ``(ok, payload)``; raise ``NetworkError`` on transport failure."""
        url = f"{self.base_url}{endpoint}"
        kwargs: dict[str, Any] = {"headers": self._headers()}
        if body is not None:
            kwargs["json"] = body
        if params:
            kwargs["params"] = params
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        try:
            response = self.http.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise NetworkError(str(exc) or exc.__class__.__name__) from exc

        ok = 200 <= response.status_code < 300
        try:
            payload = response.json() if response.content else {}
        except ValueError as exc:
            if not ok:
                return False, {}
            raise NetworkError(f"invalid JSON from {method} {endpoint}") from exc
        if not isinstance(payload, dict):
            payload = {}
        return ok, payload

    def call(
        self, method: str, endpoint: str, body: Any = None, params: Optional[dict] = None
    ) -> ApiResponse[Any]:
        try:
            ok, payload = self._request(method, endpoint, body, params)
        except NetworkError as exc:
            logger.warning("%s %s failed: %s", method, endpoint, exc)
            return ApiResponse.fail(str(exc))
        if not ok:
            return ApiResponse.fail(payload.get("message") or DEFAULT_ERROR_MESSAGE)
        return ApiResponse.ok(payload.get("data"))

    def call_list(
        self, method: str, endpoint: str, body: Any = None, params: Optional[dict] = None
    ) -> ApiListResponse[Any]:
        try:
            ok, payload = self._request(method, endpoint, body, params)
        except NetworkError as exc:
            logger.warning("%s %s failed: %s", method, endpoint, exc)
            return ApiListResponse.fail(str(exc))
        if not ok:
            return ApiListResponse.fail(payload.get("message") or DEFAULT_ERROR_MESSAGE)
        return ApiListResponse(data=payload.get("data"), error=None, count=payload.get("count"))
