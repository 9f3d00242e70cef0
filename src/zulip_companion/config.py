# src/zulip_companion/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time; `validate()` is called by the entry point.
- Every key accepts the COMPANION_ prefixed name first, then the bare legacy name.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

ENV_PREFIX = "COMPANION"
SERVICE_ENV_PREFIX = "SERVICE_"

load_dotenv(override=False)


class ConfigError(RuntimeError):
    """Required configuration is missing or unusable."""


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_bool(*names: str, default: bool) -> bool:
    raw = _first_env(*names)
    if raw is None:
        return default
    return _parse_bool(raw)


def _env_int(*names: str, default: int) -> int:
    raw = _first_env(*names)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(*names: str, default: float) -> float:
    raw = _first_env(*names)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(*names: str, default: List[str]) -> List[str]:
    raw = _first_env(*names)
    if raw is None:
        return list(default)
    parts = [p.strip() for p in raw.replace(",", " ").split() if p.strip()]
    return parts


def _env_path(*names: str, default: Path) -> Path:
    raw = _first_env(*names)
    if raw is None:
        return default
    return Path(raw).expanduser()


def _service_overrides() -> Dict[str, bool]:
    """Collect SERVICE_<NAME>=true/false toggles from the environment."""
    out: Dict[str, bool] = {}
    for key, raw in os.environ.items():
        if not key.startswith(SERVICE_ENV_PREFIX) or raw is None:
            continue
        name = key[len(SERVICE_ENV_PREFIX):].lower()
        if name:
            out[name] = raw.strip().lower() not in {"false", "0"}
    return out


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    data_dir: Path
    db_path: Path

    # ---- Zulip ----
    zulip_email: str
    zulip_api_key: str
    zulip_realm: str
    zulip_timeout_seconds: float

    # ---- Event loop / replies ----
    context_messages: int
    event_backoff_seconds: float

    # ---- LLM (OpenAI-compatible) ----
    llm_api_key: Optional[str]
    llm_base_url: str
    llm_models: List[str]
    llm_max_turns: int
    llm_connect_timeout_seconds: float
    llm_read_timeout_seconds: float
    extra_headers: Dict[str, str]

    # ---- Tasks ----
    tasks_channel: str
    tasks_folder_colocation: bool
    task_emoji: str
    done_emoji: str

    # ---- Dashboards ----
    refresh_emoji: str
    dashboard_default_interval_seconds: float

    # ---- Services ----
    service_overrides: Dict[str, bool] = field(default_factory=dict)

    @staticmethod
    def from_env() -> "Settings":
        app_name = _first_env(_k("APP_NAME"), default="zulip-companion") or "zulip-companion"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), default=Path(".local/zulip-companion"))
        db_path = _env_path(_k("DB_PATH"), "DB_PATH", default=data_dir / "companion.sqlite3")

        zulip_email = (_first_env(_k("ZULIP_EMAIL"), "ZULIP_USERNAME", "ZULIP_EMAIL", default="") or "").strip()
        zulip_api_key = (_first_env(_k("ZULIP_API_KEY"), "ZULIP_API_KEY", default="") or "").strip()
        zulip_realm = (_first_env(_k("ZULIP_REALM"), "ZULIP_REALM", default="") or "").strip().rstrip("/")

        llm_api_key = _first_env(_k("LLM_API_KEY"), "OPENAI_API_KEY", "OPENROUTER_API_KEY", default=None)
        llm_base_url = _env(_k("LLM_BASE_URL"), _env("LLM_BASE_URL", "https://openrouter.ai/api/v1"))

        http_referer = _first_env(_k("HTTP_REFERER"), "HTTP_REFERER", default="https://example.com") or ""
        title = _first_env(_k("APP_TITLE"), "APP_TITLE", default=app_name) or app_name
        extra_headers = {
            "HTTP-Referer": http_referer,
            "X-Title": title,
        }

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            db_path=db_path,
            zulip_email=zulip_email,
            zulip_api_key=zulip_api_key,
            zulip_realm=zulip_realm,
            zulip_timeout_seconds=_env_float(_k("ZULIP_TIMEOUT_SECONDS"), default=30.0),
            context_messages=_env_int(_k("CONTEXT_MESSAGES"), "CONTEXT_MESSAGES", default=20),
            event_backoff_seconds=_env_float(_k("EVENT_BACKOFF_SECONDS"), default=5.0),
            llm_api_key=llm_api_key,
            llm_base_url=llm_base_url,
            llm_models=_env_list(_k("LLM_MODELS"), "LLM_MODELS", default=["openai/gpt-4o-mini"]),
            llm_max_turns=_env_int(_k("LLM_MAX_TURNS"), "LLM_MAX_TURNS", "CLAUDE_MAX_TURNS", default=10),
            llm_connect_timeout_seconds=_env_float(
                _k("LLM_CONNECT_TIMEOUT_SECONDS"), "LLM_CONNECT_TIMEOUT_SECONDS", default=5.0
            ),
            llm_read_timeout_seconds=_env_float(
                _k("LLM_READ_TIMEOUT_SECONDS"), "LLM_READ_TIMEOUT_SECONDS", default=120.0
            ),
            extra_headers=extra_headers,
            tasks_channel=(_first_env(_k("TASKS_CHANNEL"), "TASKS_CHANNEL", default="tasks") or "tasks").strip(),
            tasks_folder_colocation=_env_bool(
                _k("TASKS_FOLDER_COLOCATION"), "TASKS_FOLDER_COLOCATION", default=True
            ),
            task_emoji=(_first_env(_k("TASK_EMOJI"), "TASK_EMOJI", default="clipboard") or "clipboard").strip(),
            done_emoji=(_first_env(_k("DONE_EMOJI"), "DONE_EMOJI", default="check") or "check").strip(),
            refresh_emoji=(_first_env(_k("REFRESH_EMOJI"), "REFRESH_EMOJI", default="refresh") or "refresh").strip(),
            dashboard_default_interval_seconds=_env_float(
                _k("DASHBOARD_INTERVAL_SECONDS"), "DASHBOARD_INTERVAL_SECONDS", default=60.0
            ),
            service_overrides=_service_overrides(),
        )

    def validate(self) -> None:
        """Raise ConfigError if a required setting is missing."""
        missing: list[str] = []
        if not self.zulip_email:
            missing.append("ZULIP_USERNAME")
        if not self.zulip_api_key:
            missing.append("ZULIP_API_KEY")
        if not self.zulip_realm:
            missing.append("ZULIP_REALM")
        if missing:
            raise ConfigError(f"Missing required environment variable(s): {', '.join(missing)}")

    def service_enabled(self, name: str, default: bool) -> bool:
        key = name.lower().replace("-", "_")
        return self.service_overrides.get(key, default)


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
