"""Shared fixtures: module-scoped DB template eliminates per-test init_db overhead."""

import shutil

import pytest

from boardpilot.storage.sqlite_store import SqliteStore
from boardpilot.tools.context import ObjectArena, ToolContext, Viewport
from tests.helpers import CANVAS_ID, USER_ID


@pytest.fixture(scope="module")
def _module_db_path(tmp_path_factory):
    """Create one fully-initialized DB per test module as a template."""
    db_path = tmp_path_factory.mktemp("db") / "test.db"
    s = SqliteStore(db_path)
    s.init_db()
    s._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
    s._conn.close()
    return db_path


@pytest.fixture
def db_path(tmp_path, _module_db_path):
    """Copy the template DB into a per-test tmp dir (fast file copy, no init_db)."""
    path = tmp_path / "test.db"
    shutil.copy2(_module_db_path, path)
    return path


@pytest.fixture
def store(db_path):
    """Per-test SqliteStore backed by a pre-initialized DB copy."""
    s = SqliteStore(db_path)
    yield s
    s.close()


@pytest.fixture
def viewport():
    """A 1600x900 viewport centered on the origin."""
    return Viewport(min_x=-800, min_y=-450, max_x=800, max_y=450, center_x=0, center_y=0, scale=1.0)


@pytest.fixture
def ctx(store, viewport):
    """ToolContext over an empty canvas."""
    return ToolContext(store=store, canvas_id=CANVAS_ID, user_id=USER_ID, viewport=viewport)


@pytest.fixture
def make_ctx(store, viewport):
    """Build a ToolContext whose arena mirrors what is currently in the store."""
    def factory(selected_ids=None):
        return ToolContext(
            store=store,
            canvas_id=CANVAS_ID,
            user_id=USER_ID,
            viewport=viewport,
            selected_ids=list(selected_ids or []),
            arena=ObjectArena(store.list_objects(CANVAS_ID)),
        )
    return factory
