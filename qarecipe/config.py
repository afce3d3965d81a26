"""Centralized configuration for the qarecipe webhook service.

Values come from the process environment, after loading a local ``.env``
file. An optional YAML file named by ``QARECIPE_CONFIG_PATH`` supplies
defaults for any key the environment does not set; its top-level keys use
the same names as the environment variables.
"""
import logging
import os
from dataclasses import dataclass
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

SECRET_FILE = ".env"

DEFAULT_REASONING_URL = "http://localhost:3000"
DEFAULT_STORAGE_DSN = "sqlite:///qarecipe.db"
DEFAULT_JIRA_APP_KEY = "com.firstqa.jira"


def _load_yaml_defaults(path: str | None) -> dict[str, Any]:
    """Load the optional YAML defaults file.

    Raises:
        ValueError: If the file is not a YAML mapping.
    """
    if not path:
        return {}
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must be a YAML mapping")
    return data


def _lookup(name: str, defaults: dict[str, Any]) -> str | None:
    raw = os.getenv(name)
    if raw is not None:
        return raw
    value = defaults.get(name)
    return None if value is None else str(value)


def _get_int_env(name: str, default: int, defaults: dict[str, Any] | None = None) -> int:
    """Return integer environment variable value or fallback default."""
    raw = _lookup(name, defaults or {})
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _get_bool_env(name: str, default: bool, defaults: dict[str, Any] | None = None) -> bool:
    raw = _lookup(name, defaults or {})
    if raw is None:
        return default
    value = str(raw).strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    return default


@dataclass(frozen=True)
class Settings:
    reasoning_url: str = DEFAULT_REASONING_URL
    reasoning_timeout: int = 60
    environment: str = "development"
    storage_dsn: str = DEFAULT_STORAGE_DSN
    github_webhook_secret: str | None = None
    github_token: str | None = None
    bitbucket_webhook_secret: str | None = None
    bitbucket_access_token: str | None = None
    jira_app_key: str = DEFAULT_JIRA_APP_KEY
    webhook_port: int = 8081
    max_revisions: int = 250
    include_file_contents: bool = True
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def load_settings() -> Settings:
    """Build :class:`Settings` from ``.env``, the environment and YAML defaults."""
    if os.path.exists(SECRET_FILE):
        logger.info("Loading environment from %s", SECRET_FILE)
        load_dotenv(SECRET_FILE)

    defaults = _load_yaml_defaults(os.getenv("QARECIPE_CONFIG_PATH"))

    settings = Settings(
        reasoning_url=_lookup("QARECIPE_REASONING_URL", defaults) or DEFAULT_REASONING_URL,
        reasoning_timeout=_get_int_env("QARECIPE_REASONING_TIMEOUT", 60, defaults),
        environment=(_lookup("QARECIPE_ENV", defaults) or "development").strip().lower(),
        storage_dsn=_lookup("QARECIPE_STORAGE_DSN", defaults) or DEFAULT_STORAGE_DSN,
        github_webhook_secret=_lookup("GITHUB_WEBHOOK_SECRET", defaults) or None,
        github_token=_lookup("GITHUB_TOKEN", defaults) or None,
        bitbucket_webhook_secret=_lookup("BITBUCKET_WEBHOOK_SECRET", defaults) or None,
        bitbucket_access_token=_lookup("BITBUCKET_ACCESS_TOKEN", defaults) or None,
        jira_app_key=_lookup("JIRA_APP_KEY", defaults) or DEFAULT_JIRA_APP_KEY,
        webhook_port=_get_int_env("WEBHOOK_PORT", 8081, defaults),
        max_revisions=_get_int_env("QARECIPE_MAX_REVISIONS", 250, defaults),
        include_file_contents=_get_bool_env("QARECIPE_INCLUDE_FILES", True, defaults),
        log_level=(_lookup("LOG_LEVEL", defaults) or "INFO").upper(),
    )
    if not settings.github_webhook_secret:
        logger.warning("⚠️ GITHUB_WEBHOOK_SECRET not configured - GitHub webhooks will be rejected")
    if not settings.bitbucket_webhook_secret:
        logger.warning("⚠️ BITBUCKET_WEBHOOK_SECRET not configured - accepting unsigned Bitbucket webhooks")
    return settings
