"""User data helpers: favorites, profiles, shared style links, and auth.

:class:`UserDataService` maps each user action one-to-one onto a backend
operation.  User-scoped operations (favorites, profile) first resolve the
signed-in user and raise :class:`~cutmatch.core.errors.AuthenticationRequired`
before any write when there is none.  Shared style links can be created
anonymously and are readable by anyone who has the share id.

Every failure is logged here and re-raised; errors that are not already part
of the CutMatch taxonomy are wrapped in
:class:`~cutmatch.core.errors.BackendError`.

Tables
------
``favorites``
    One row per (user_id, style_id).
``profiles``
    One row per user_id; written with upsert.
``shared_styles``
    One immutable row per share_id.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from pydantic import BaseModel

from cutmatch.client.analytics import AnalyticsService, random_base36
from cutmatch.client.backend import AuthBackend, AuthStateCallback, AuthUser, DataBackend
from cutmatch.core.errors import (
    AuthenticationRequired,
    BackendError,
    CutMatchError,
    NotFoundError,
    ValidationError,
)
from cutmatch.core.models import Favorite, SharedStyleLink, UserProfile

logger = logging.getLogger(__name__)

FAVORITES_TABLE = "favorites"
PROFILES_TABLE = "profiles"
SHARED_STYLES_TABLE = "shared_styles"


def generate_share_id(now_ms: int | None = None) -> str:
    """Return ``<epoch ms>-<9 random base-36 chars>``."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{now_ms}-{random_base36(9)}"


def style_snapshot(style: BaseModel | dict[str, Any]) -> dict[str, Any]:
    """Copy a style (catalog entry, generation result, or plain dict) to JSON."""
    if isinstance(style, BaseModel):
        return style.model_dump(mode="json", by_alias=True)
    return dict(style)


def _snapshot_id(snapshot: dict[str, Any]) -> str:
    style_id = snapshot.get("id") or snapshot.get("styleId") or snapshot.get("style_id")
    if not style_id:
        raise ValidationError("style has no id")
    return str(style_id)


@contextmanager
def _logged(action: str) -> Iterator[None]:
    try:
        yield
    except CutMatchError as e:
        logger.error(f"Error {action}: {e.message}")
        raise
    except Exception as e:
        logger.error(f"Error {action}: {e}")
        raise BackendError(detail=f"{action}: {e}") from e


class UserDataService:
    """Client-side persistence and auth operations.

    Args:
        data: Row-level backend.
        auth: Session backend.
        analytics: Optional sink notified of favorites and shares.
        share_base_url: Prefix of public share links.
    """

    def __init__(
        self,
        data: DataBackend,
        auth: AuthBackend,
        *,
        analytics: AnalyticsService | None = None,
        share_base_url: str = "https://cutmatch.app/shared",
    ) -> None:
        self.data = data
        self.auth = auth
        self.analytics = analytics
        self.share_base_url = share_base_url.rstrip("/")

    async def _require_user(self) -> AuthUser:
        user = await self.auth.get_user()
        if user is None:
            raise AuthenticationRequired()
        return user

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    async def save_favorite_style(
        self, style: BaseModel | dict[str, Any], personal_note: str = ""
    ) -> dict:
        """Save a style to the signed-in user's favorites.

        Returns:
            The stored favorite row.

        Raises:
            AuthenticationRequired: No user is signed in.
            ValidationError: The style has no id.
            BackendError: The backend rejected the write (for example a
                duplicate favorite).
        """
        with _logged("saving favorite style"):
            user = await self._require_user()
            snapshot = style_snapshot(style)
            favorite = Favorite(
                user_id=user.id,
                style_id=_snapshot_id(snapshot),
                style_name=snapshot.get("name"),
                style_data=snapshot,
                personal_note=personal_note,
            )
            row = favorite.model_dump(mode="json")
            rows = await self.data.insert(FAVORITES_TABLE, [row])

        if self.analytics is not None:
            self.analytics.style_favorited(favorite.style_id, favorite.style_name)
        return rows[0] if rows else row

    async def get_favorite_styles(self) -> list[dict]:
        """Return the signed-in user's favorites, newest first."""
        with _logged("fetching favorite styles"):
            user = await self._require_user()
            return await self.data.select(
                FAVORITES_TABLE,
                filters={"user_id": user.id},
                order_by="created_at",
                descending=True,
            )

    async def remove_favorite_style(self, style_id: str) -> list[dict]:
        """Remove one style from the signed-in user's favorites.

        Returns:
            The deleted rows (empty when the style was not a favorite).
        """
        with _logged("removing favorite style"):
            user = await self._require_user()
            removed = await self.data.delete(
                FAVORITES_TABLE, filters={"user_id": user.id, "style_id": style_id}
            )

        if removed and self.analytics is not None:
            self.analytics.style_unfavorited(style_id, removed[0].get("style_name"))
        return removed

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def save_user_profile(self, profile_data: dict[str, Any]) -> dict:
        """Create or update the signed-in user's profile."""
        with _logged("saving user profile"):
            user = await self._require_user()
            profile = UserProfile.model_validate({**profile_data, "user_id": user.id})
            row = profile.model_dump(mode="json")
            rows = await self.data.upsert(PROFILES_TABLE, [row], on_conflict="user_id")
            return rows[0] if rows else row

    async def get_user_profile(self) -> dict:
        """Return the signed-in user's profile, or ``{}`` when none exists."""
        with _logged("fetching user profile"):
            user = await self._require_user()
            rows = await self.data.select(PROFILES_TABLE, filters={"user_id": user.id}, limit=1)
            return rows[0] if rows else {}

    # ------------------------------------------------------------------
    # Shared links
    # ------------------------------------------------------------------

    def share_url(self, share_id: str) -> str:
        return f"{self.share_base_url}/{share_id}"

    async def create_shared_style_link(
        self, style: BaseModel | dict[str, Any], personal_note: str = ""
    ) -> dict:
        """Publish an immutable snapshot of a style.

        Signing in is optional; anonymous links have a null ``user_id``.

        Returns:
            The stored row plus a ``share_url`` key.
        """
        user = await self.get_current_user()
        with _logged("creating shared style link"):
            snapshot = style_snapshot(style)
            link = SharedStyleLink(
                share_id=generate_share_id(),
                user_id=user.id if user else None,
                style_data=snapshot,
                personal_note=personal_note,
            )
            row = link.model_dump(mode="json")
            rows = await self.data.insert(SHARED_STYLES_TABLE, [row])

        if self.analytics is not None:
            self.analytics.style_shared(
                str(snapshot.get("id", "")), snapshot.get("name"), method="link"
            )
        stored = rows[0] if rows else row
        return {**stored, "share_url": self.share_url(link.share_id)}

    async def get_shared_style(self, share_id: str) -> dict:
        """Fetch a shared style by id.  No authentication is required.

        Raises:
            NotFoundError: No link exists with this id.
        """
        with _logged("fetching shared style"):
            rows = await self.data.select(
                SHARED_STYLES_TABLE, filters={"share_id": share_id}, limit=1
            )
            if not rows:
                raise NotFoundError(f"Shared style {share_id} not found")
            return rows[0]

    # ------------------------------------------------------------------
    # Auth passthroughs
    # ------------------------------------------------------------------

    async def sign_in_with_email(self, email: str, password: str) -> dict:
        with _logged("signing in"):
            return await self.auth.sign_in(email, password)

    async def sign_up_with_email(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> dict:
        with _logged("signing up"):
            return await self.auth.sign_up(email, password, metadata)

    async def sign_out(self) -> None:
        with _logged("signing out"):
            await self.auth.sign_out()

    async def get_current_user(self) -> AuthUser | None:
        """Return the signed-in user, or ``None`` on any failure."""
        try:
            return await self.auth.get_user()
        except Exception as e:
            logger.error(f"Error getting current user: {e}")
            return None

    def on_auth_state_change(self, callback: AuthStateCallback) -> Callable[[], None]:
        return self.auth.on_auth_state_change(callback)
