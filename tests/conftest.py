from __future__ import annotations

import inspect
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from garage_backend.config import settings
from garage_backend.db import dispose_engine_cache, get_engine, init_db, reset_engine_cache


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
async def _isolated_database(  # pyright: ignore[reportUnusedFunction]
    anyio_backend: object,  # noqa: ARG001
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> AsyncGenerator[None, None]:
    # Every test gets its own SQLite file and local object directory.
    _ = anyio_backend
    monkeypatch.setattr(settings, "database_url", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setattr(settings, "attachments_local_dir", str(tmp_path / "objects"))
    monkeypatch.setattr(settings, "storage_backend", "local")
    monkeypatch.setattr(settings, "storage_public_base_url", "http://test")
    reset_engine_cache()
    await init_db()

    yield

    # Prefer the async engine disposal so sqlite worker threads get shut down
    # while the event loop is still alive.
    try:
        engine = get_engine()
    except Exception:
        engine = None

    if engine is not None:
        try:
            result = engine.dispose()
            if inspect.isawaitable(result):
                await result
        except Exception:
            # Best-effort: fall back to sync pool dispose below.
            pass

    dispose_engine_cache()


def pytest_sessionfinish(session: object, exitstatus: int) -> None:  # noqa: ARG001
    # Safety net: close cached engine so CI can exit cleanly.
    _ = session, exitstatus
    dispose_engine_cache()
