"""Shared pytest fixtures for CutMatch tests."""

from __future__ import annotations

import asyncio
import base64
import io
import shutil
import tempfile
from pathlib import Path
from typing import Any, Generator

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from cutmatch.api.main import create_app
from cutmatch.api.middleware import SlidingWindowRateLimiter
from cutmatch.client.backend import SIGNED_IN, SIGNED_OUT, AuthBackend, AuthUser, DataBackend
from cutmatch.core.catalog import StyleCatalog
from cutmatch.core.config import CutMatchConfig
from cutmatch.core.errors import BackendError
from cutmatch.core.generation import GenerationClient
from cutmatch.core.models import StyleDefinition

STUB_IMAGE_URL = "https://replicate.delivery/pbxt/stub/output.png"


@pytest.fixture
def anyio_backend() -> str:
    """Run ``@pytest.mark.anyio`` tests on asyncio only."""
    return "asyncio"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config() -> CutMatchConfig:
    """Configuration isolated from the developer's environment and .env file.

    Returns:
        CutMatchConfig with a dummy Replicate token and a limit of 10.
    """
    return CutMatchConfig(
        _env_file=None,
        environment="test",
        allowed_origins="http://localhost:3000,https://cutmatch.app",
        rate_limit_per_minute=10,
        rate_limit_window_seconds=60,
        replicate_api_token="r8_test_token",
        generation_timeout_seconds=5,
        supabase_url="https://project.supabase.co",
        supabase_anon_key="anon-key",
        google_analytics_id="G-TEST123",
        google_analytics_api_secret="ga-secret",
    )


@pytest.fixture
def catalog() -> StyleCatalog:
    """Small catalog including the ``fade-001`` style used by the API tests."""
    styles = [
        StyleDefinition(
            id="fade-001",
            name="Classic Fade",
            prompt_text="Photo of a person with a classic fade haircut, front view",
            category="short",
        ),
        StyleDefinition(
            id="bob-002",
            name="Sleek Bob",
            prompt_text="Photo of a person with a sleek bob, front view",
            category="medium",
        ),
        StyleDefinition(
            id="braids-003",
            name="Box Braids",
            prompt_text="Photo of a person with facup box braids, front view",
            category="protective",
            hair_type="coily",
        ),
    ]
    return StyleCatalog(
        styles,
        {
            "short": ["fade-001"],
            "medium": ["bob-002"],
            "protective": ["braids-003"],
            "fade": ["fade-001"],
        },
    )


def make_png_bytes(size: tuple[int, int] = (8, 8), mode: str = "RGB") -> bytes:
    buffer = io.BytesIO()
    color = (200, 120, 80) if mode == "RGB" else 0
    Image.new(mode, size, color=color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_base64() -> str:
    """Bare base64 of a tiny PNG."""
    return base64.b64encode(make_png_bytes()).decode("ascii")


@pytest.fixture
def png_data_uri(png_base64: str) -> str:
    return f"data:image/png;base64,{png_base64}"


@pytest.fixture
def huge_png_data_uri() -> str:
    """A 20000x20000 1-bit PNG: well under the byte limit, far over any sane pixel count."""
    raw = make_png_bytes(size=(20000, 20000), mode="1")
    return f"data:image/png;base64,{base64.b64encode(raw).decode('ascii')}"


class StubReplicate:
    """Stand-in for ``replicate.Client`` recording every ``async_run`` call."""

    def __init__(self, output: Any = None, error: Exception | None = None, delay: float = 0.0):
        self.output = [STUB_IMAGE_URL] if output is None else output
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, dict]] = []

    async def async_run(self, model: str, input: dict) -> Any:
        self.calls.append((model, input))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.output


@pytest.fixture
def stub_replicate() -> StubReplicate:
    return StubReplicate()


@pytest.fixture
def make_stub() -> type[StubReplicate]:
    """The stub class, for tests that need a failing or slow provider."""
    return StubReplicate


@pytest.fixture
def generator(test_config: CutMatchConfig, stub_replicate: StubReplicate) -> GenerationClient:
    return GenerationClient(test_config, client=stub_replicate)


@pytest.fixture
def test_client(
    test_config: CutMatchConfig, catalog: StyleCatalog, generator: GenerationClient
) -> Generator[TestClient, None, None]:
    """TestClient around an app whose provider is :class:`StubReplicate`."""
    app = create_app(
        test_config,
        catalog=catalog,
        generator=generator,
        limiter=SlidingWindowRateLimiter(test_config.rate_limit_per_minute, 60),
    )
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client


# ---------------------------------------------------------------------------
# In-memory managed backend.
# ---------------------------------------------------------------------------


class FakeBackend(DataBackend, AuthBackend):
    """In-memory :class:`DataBackend` and :class:`AuthBackend`.

    Enforces the unique keys of the real tables (``favorites`` on
    user_id/style_id, ``profiles`` on user_id, ``shared_styles`` on
    share_id) and records every call in ``calls``.
    """

    UNIQUE_KEYS = {
        "favorites": ("user_id", "style_id"),
        "profiles": ("user_id",),
        "shared_styles": ("share_id",),
    }

    def __init__(self) -> None:
        super().__init__()
        self.tables: dict[str, list[dict]] = {}
        self.users: dict[str, dict] = {}
        self.current: AuthUser | None = None
        self.calls: list[tuple[str, str]] = []

    def _key(self, table: str, row: dict) -> tuple:
        return tuple(row.get(column) for column in self.UNIQUE_KEYS.get(table, ()))

    @staticmethod
    def _matches(row: dict, filters: dict | None) -> bool:
        return all(row.get(column) == value for column, value in (filters or {}).items())

    async def insert(self, table: str, rows: list[dict]) -> list[dict]:
        self.calls.append(("insert", table))
        stored = self.tables.setdefault(table, [])
        for row in rows:
            if table in self.UNIQUE_KEYS and any(
                self._key(table, existing) == self._key(table, row) for existing in stored
            ):
                raise BackendError(
                    "duplicate key value violates unique constraint",
                    code="23505",
                    upstream_status=409,
                )
        stored.extend(dict(row) for row in rows)
        return [dict(row) for row in rows]

    async def select(self, table, *, filters=None, order_by=None, descending=False, limit=None):
        self.calls.append(("select", table))
        rows = [dict(r) for r in self.tables.get(table, []) if self._matches(r, filters)]
        if order_by:
            rows.sort(key=lambda r: r.get(order_by) or "", reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def upsert(self, table: str, rows: list[dict], *, on_conflict: str) -> list[dict]:
        self.calls.append(("upsert", table))
        stored = self.tables.setdefault(table, [])
        for row in rows:
            for existing in stored:
                if existing.get(on_conflict) == row.get(on_conflict):
                    existing.update(row)
                    break
            else:
                stored.append(dict(row))
        return [dict(row) for row in rows]

    async def delete(self, table: str, *, filters: dict) -> list[dict]:
        self.calls.append(("delete", table))
        stored = self.tables.get(table, [])
        removed = [r for r in stored if self._matches(r, filters)]
        self.tables[table] = [r for r in stored if not self._matches(r, filters)]
        return removed

    async def get_user(self) -> AuthUser | None:
        return self.current

    async def sign_in(self, email: str, password: str) -> dict:
        user = self.users.get(email)
        if user is None or user["password"] != password:
            raise BackendError(
                "Invalid login credentials", code="invalid_grant", upstream_status=400
            )
        self.current = AuthUser(id=user["id"], email=email)
        session = {"access_token": f"token-{user['id']}", "user": {"id": user["id"]}}
        self._emit_auth_event(SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str, metadata: dict | None = None) -> dict:
        user_id = f"user-{len(self.users) + 1}"
        self.users[email] = {"id": user_id, "password": password, "metadata": metadata or {}}
        return {"user": {"id": user_id, "email": email, "user_metadata": metadata or {}}}

    async def sign_out(self) -> None:
        self.current = None
        self._emit_auth_event(SIGNED_OUT, None)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def signed_in_backend(fake_backend: FakeBackend) -> FakeBackend:
    fake_backend.current = AuthUser(id="user-42", email="ada@example.com")
    return fake_backend
