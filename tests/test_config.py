from __future__ import annotations

import os
from pathlib import Path

import pytest

from zulip_companion.config import ConfigError, Settings

_PREFIXES = (
    "COMPANION_",
    "SERVICE_",
    "ZULIP_",
    "LLM_",
    "OPENAI_",
    "OPENROUTER_",
    "TASK",
    "DONE_",
    "REFRESH_",
    "DASHBOARD_",
    "CONTEXT_",
    "DB_PATH",
)


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for key in list(os.environ):
        if key.startswith(_PREFIXES):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    s = Settings.from_env()

    assert s.db_path == Path(".local/zulip-companion") / "companion.sqlite3"
    assert s.llm_api_key is None
    assert s.llm_models == ["openai/gpt-4o-mini"]
    assert s.context_messages == 20
    assert (s.tasks_channel, s.task_emoji, s.done_emoji, s.refresh_emoji) == ("tasks", "clipboard", "check", "refresh")
    assert s.tasks_folder_colocation is True
    assert s.service_overrides == {}


def test_prefixed_names_win_over_legacy_names(clean_env):
    clean_env.setenv("ZULIP_REALM", "https://legacy.example.com")
    clean_env.setenv("COMPANION_ZULIP_REALM", "https://chat.example.com/")
    clean_env.setenv("ZULIP_USERNAME", "bot@example.com")

    s = Settings.from_env()

    assert s.zulip_realm == "https://chat.example.com"
    assert s.zulip_email == "bot@example.com"


def test_lists_numbers_and_booleans(clean_env):
    clean_env.setenv("LLM_MODELS", "model-a, model-b  model-c")
    clean_env.setenv("CONTEXT_MESSAGES", "lots")
    clean_env.setenv("TASKS_FOLDER_COLOCATION", "off")
    clean_env.setenv("OPENROUTER_API_KEY", "sk-test")

    s = Settings.from_env()

    assert s.llm_models == ["model-a", "model-b", "model-c"]
    assert s.context_messages == 20
    assert s.tasks_folder_colocation is False
    assert s.llm_api_key == "sk-test"


def test_service_toggles(clean_env):
    clean_env.setenv("SERVICE_TASKS", "false")
    clean_env.setenv("SERVICE_DASHBOARDS", "yes")

    s = Settings.from_env()

    assert s.service_enabled("tasks", True) is False
    assert s.service_enabled("dashboards", False) is True
    assert s.service_enabled("other", True) is True


def test_validate_reports_missing_credentials(clean_env):
    s = Settings.from_env()

    with pytest.raises(ConfigError) as exc:
        s.validate()
    assert "ZULIP_USERNAME" in str(exc.value)
    assert "ZULIP_API_KEY" in str(exc.value)
    assert "ZULIP_REALM" in str(exc.value)
