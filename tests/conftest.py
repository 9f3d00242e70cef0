# tests/conftest.py

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from zulip_companion.config import Settings
from zulip_companion.core.context import ServiceContext
from zulip_companion.dashboards.dashboard_store import DashboardStore
from zulip_companion.tasks.task_store import TaskStore

from .fakes import FakeGateway

BOT_USER_ID = 99
BOT_EMAIL = "bot@example.com"
REALM = "https://chat.example.com"


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """
    Settings with every value the core reads pinned explicitly.

    Built from from_env() so new fields get their defaults, then overridden so
    the developer's environment cannot leak into tests.
    """
    return replace(
        Settings.from_env(),
        data_dir=tmp_path,
        db_path=tmp_path / "companion.sqlite3",
        zulip_email=BOT_EMAIL,
        zulip_api_key="test-key",
        zulip_realm=REALM,
        context_messages=20,
        event_backoff_seconds=5.0,
        llm_api_key=None,
        llm_models=["model-a", "model-b"],
        llm_max_turns=4,
        extra_headers={},
        tasks_channel="tasks",
        tasks_folder_colocation=True,
        task_emoji="clipboard",
        done_emoji="check",
        refresh_emoji="refresh",
        dashboard_default_interval_seconds=60.0,
        service_overrides={},
    )


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def ctx(gateway: FakeGateway, settings: Settings) -> ServiceContext:
    return ServiceContext(
        client=gateway,
        settings=settings,
        bot_email=BOT_EMAIL,
        bot_user_id=BOT_USER_ID,
        bot_name="Companion",
    )


@pytest.fixture()
def dashboard_store(settings: Settings) -> DashboardStore:
    # Real SQLite: persistence semantics are part of what we test.
    return DashboardStore(settings.db_path)


@pytest.fixture()
def task_store(settings: Settings) -> TaskStore:
    return TaskStore(settings.db_path)
