"""Managed backend interfaces and the Supabase implementation.

The client data helpers only need a handful of operations from the managed
backend, so they depend on two narrow interfaces instead of a full SDK
client:

DataBackend
    Row operations on a table: ``insert``, ``select``, ``upsert``,
    ``delete``.
AuthBackend
    Session operations: ``get_user``, ``sign_in``, ``sign_up``,
    ``sign_out``, ``on_auth_state_change``.

:class:`SupabaseBackend` implements both over Supabase's REST surface
(PostgREST under ``/rest/v1`` and GoTrue under ``/auth/v1``) with an
``httpx.AsyncClient``.  It keeps the signed-in session in memory, the way the
mobile client keeps it in device storage.

PostgREST conventions used here:

- filters are query parameters of the form ``column=eq.value``
  (``column=is.null`` for ``None``)
- ``Prefer: return=representation`` makes writes return the stored rows
- upserts add ``on_conflict=<column>`` and
  ``Prefer: resolution=merge-duplicates``
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from cutmatch.core.config import CutMatchConfig
from cutmatch.core.errors import BackendError, ConfigurationError

logger = logging.getLogger(__name__)

AuthStateCallback = Callable[[str, dict | None], None]

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"


class AuthUser(BaseModel):
    """The authenticated user as reported by the auth service."""

    model_config = ConfigDict(extra="allow")

    id: str
    email: str | None = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)


class DataBackend(ABC):
    """Row operations needed by the client data helpers."""

    @abstractmethod
    async def insert(self, table: str, rows: list[dict]) -> list[dict]:
        """Insert rows and return them as stored."""

    @abstractmethod
    async def select(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        """Return rows matching all equality ``filters``."""

    @abstractmethod
    async def upsert(self, table: str, rows: list[dict], *, on_conflict: str) -> list[dict]:
        """Insert rows, updating existing rows that collide on ``on_conflict``."""

    @abstractmethod
    async def delete(self, table: str, *, filters: dict[str, Any]) -> list[dict]:
        """Delete rows matching all equality ``filters`` and return them."""


class AuthBackend(ABC):
    """Session operations needed by the client data helpers."""

    def __init__(self) -> None:
        self._auth_listeners: list[AuthStateCallback] = []

    @abstractmethod
    async def get_user(self) -> AuthUser | None:
        """Return the signed-in user, or ``None`` without a valid session."""

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> dict:
        """Sign in with email and password; returns the session payload."""

    @abstractmethod
    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> dict:
        """Register a user; returns the user/session payload."""

    @abstractmethod
    async def sign_out(self) -> None:
        """End the current session."""

    def on_auth_state_change(self, callback: AuthStateCallback) -> Callable[[], None]:
        """Register ``callback(event, session)`` for sign-in/sign-out events.

        Returns:
            A function that unregisters the callback.
        """
        self._auth_listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._auth_listeners:
                self._auth_listeners.remove(callback)

        return unsubscribe

    def _emit_auth_event(self, event: str, session: dict | None) -> None:
        for callback in list(self._auth_listeners):
            try:
                callback(event, session)
            except Exception as e:
                logger.warning(f"Auth state listener failed on {event}: {e}")


def _filter_params(filters: dict[str, Any] | None) -> dict[str, str]:
    params: dict[str, str] = {}
    for column, value in (filters or {}).items():
        if value is None:
            params[column] = "is.null"
        elif isinstance(value, bool):
            params[column] = f"eq.{str(value).lower()}"
        else:
            params[column] = f"eq.{value}"
    return params


def _error_from_response(response: httpx.Response) -> BackendError:
    """Build a :class:`BackendError` from a PostgREST or GoTrue error body."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    message = (
        body.get("message")
        or body.get("msg")
        or body.get("error_description")
        or body.get("error")
        or f"Backend returned HTTP {response.status_code}"
    )
    code = body.get("code") or body.get("error_code")
    return BackendError(
        str(message),
        detail=f"{response.request.method} {response.request.url.path} -> {response.status_code}",
        code=str(code) if code is not None else None,
        upstream_status=response.status_code,
    )


class SupabaseBackend(DataBackend, AuthBackend):
    """Supabase REST client implementing :class:`DataBackend` and
    :class:`AuthBackend`.

    Args:
        url: Project URL (``https://<ref>.supabase.co``).
        anon_key: Public anon key.
        http_client: Optional pre-built client.  Its ``base_url`` must be
            the project URL.
        timeout: Request timeout in seconds for the owned client.
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        super().__init__()
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=self.url, timeout=timeout)
        self._session: dict | None = None

    @classmethod
    def from_config(cls, app_config: CutMatchConfig, **kwargs: Any) -> SupabaseBackend:
        if not app_config.supabase_url or not app_config.supabase_anon_key:
            raise ConfigurationError(
                "Supabase is not configured",
                detail="set EXPO_PUBLIC_SUPABASE_URL and EXPO_PUBLIC_SUPABASE_ANON_KEY",
            )
        return cls(app_config.supabase_url, app_config.supabase_anon_key, **kwargs)

    @property
    def session(self) -> dict | None:
        return self._session

    @property
    def access_token(self) -> str | None:
        return self._session.get("access_token") if self._session else None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token or self.anon_key}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._http.request(
                method, path, params=params, json=json, headers=self._headers(headers)
            )
        except httpx.HTTPError as e:
            raise BackendError(
                "Unable to reach the data service", detail=f"{method} {path}: {e}"
            ) from e

        if response.is_error:
            raise _error_from_response(response)
        return response

    @staticmethod
    def _rows(response: httpx.Response) -> list[dict]:
        if not response.content:
            return []
        body = response.json()
        if isinstance(body, list):
            return body
        return [body] if isinstance(body, dict) else []

    # ------------------------------------------------------------------
    # DataBackend
    # ------------------------------------------------------------------

    async def insert(self, table: str, rows: list[dict]) -> list[dict]:
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=rows,
            headers={"Prefer": "return=representation"},
        )
        return self._rows(response)

    async def select(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        params: dict[str, Any] = {"select": "*", **_filter_params(filters)}
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = limit
        response = await self._request("GET", f"/rest/v1/{table}", params=params)
        return self._rows(response)

    async def upsert(self, table: str, rows: list[dict], *, on_conflict: str) -> list[dict]:
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            params={"on_conflict": on_conflict},
            json=rows,
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        return self._rows(response)

    async def delete(self, table: str, *, filters: dict[str, Any]) -> list[dict]:
        if not filters:
            raise ValueError("delete requires at least one filter")
        response = await self._request(
            "DELETE",
            f"/rest/v1/{table}",
            params=_filter_params(filters),
            headers={"Prefer": "return=representation"},
        )
        return self._rows(response)

    # ------------------------------------------------------------------
    # AuthBackend
    # ------------------------------------------------------------------

    async def get_user(self) -> AuthUser | None:
        if not self.access_token:
            return None
        try:
            response = await self._request("GET", "/auth/v1/user")
        except BackendError as e:
            # An expired or revoked token is the same as no session.
            if e.upstream_status in (401, 403):
                logger.info("Stored session is no longer valid; clearing it")
                self._session = None
                return None
            raise
        return AuthUser.model_validate(response.json())

    async def sign_in(self, email: str, password: str) -> dict:
        response = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = response.json()
        self._session = session
        self._emit_auth_event(SIGNED_IN, session)
        return session

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> dict:
        payload: dict[str, Any] = {"email": email, "password": password}
        if metadata:
            payload["data"] = metadata
        response = await self._request("POST", "/auth/v1/signup", json=payload)
        data = response.json()
        # Projects without email confirmation return a session straight away.
        if isinstance(data, dict) and data.get("access_token"):
            self._session = data
            self._emit_auth_event(SIGNED_IN, data)
        return data

    async def sign_out(self) -> None:
        if self.access_token:
            try:
                await self._request("POST", "/auth/v1/logout")
            finally:
                self._session = None
        self._emit_auth_event(SIGNED_OUT, None)
