"""Settings — environment profiles, layered loading and the .env template."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal, Mapping

from pydantic import BaseModel

from gitcore.config import (
    DEFAULT_BRANCH,
    DEFAULT_DIFF_TIMEOUT,
    DEFAULT_EMAIL_DOMAIN,
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_STORAGE_PATH,
)

logger = logging.getLogger(__name__)

# All known configuration keys with defaults
_CONFIG_KEYS: dict[str, dict[str, Any]] = {
    "GITCORE_ENV": {"default": "development", "description": "Environment profile"},
    "GITCORE_STORAGE_PATH": {"default": str(DEFAULT_STORAGE_PATH), "description": "Root of local repository storage"},
    "GITCORE_DATABASE_PATH": {"default": "gitcore.db", "description": "SQLite database path"},
    "GITCORE_ACTIVITY_PATH": {"default": "activity.jsonl", "description": "Activity feed, relative to storage path"},
    "GITCORE_BACKEND": {"default": "native", "description": "Diff/merge backend: native or git"},
    "GITCORE_GIT_BINARY": {"default": "git", "description": "git executable for the git backend"},
    "GITCORE_DIFF_TIMEOUT": {"default": str(int(DEFAULT_DIFF_TIMEOUT)), "description": "Seconds before an external diff is abandoned"},
    "GITCORE_LOCK_TIMEOUT": {"default": str(int(DEFAULT_LOCK_TIMEOUT)), "description": "Seconds to wait for a busy branch"},
    "GITCORE_DEFAULT_BRANCH": {"default": DEFAULT_BRANCH, "description": "Default branch of new repositories"},
    "GITCORE_EMAIL_DOMAIN": {"default": DEFAULT_EMAIL_DOMAIN, "description": "Domain of synthetic author emails"},
    "GITCORE_WEBHOOK_URL": {"default": "", "description": "Webhook notification URL (secret)"},
    "GITCORE_LOG_LEVEL": {"default": "INFO", "description": "Logging level"},
}

_PROFILES: dict[str, dict[str, str]] = {
    "development": {
        "GITCORE_ENV": "development",
        "GITCORE_LOG_LEVEL": "DEBUG",
    },
    "production": {
        "GITCORE_ENV": "production",
        "GITCORE_LOG_LEVEL": "WARNING",
    },
    "testing": {
        "GITCORE_ENV": "testing",
        "GITCORE_LOG_LEVEL": "DEBUG",
        "GITCORE_DATABASE_PATH": ":memory:",
        "GITCORE_BACKEND": "native",
    },
}


class Settings(BaseModel):
    """Typed view of the merged configuration."""

    env: str = "development"
    storage_path: Path = DEFAULT_STORAGE_PATH
    database_path: str = "gitcore.db"
    activity_path: Path = Path("activity.jsonl")
    backend: Literal["native", "git"] = "native"
    git_binary: str = "git"
    diff_timeout: float = DEFAULT_DIFF_TIMEOUT
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    default_branch: str = DEFAULT_BRANCH
    email_domain: str = DEFAULT_EMAIL_DOMAIN
    webhook_url: str = ""
    log_level: str = "INFO"

    @property
    def activity_file(self) -> Path:
        if self.activity_path.is_absolute():
            return self.activity_path
        return self.storage_path / self.activity_path

    @classmethod
    def from_config(cls, config: Mapping[str, str]) -> Settings:
        """Build settings from a flat ``GITCORE_*`` mapping."""
        values = {
            key[len("GITCORE_"):].lower(): value
            for key, value in config.items()
            if key.startswith("GITCORE_") and key in _CONFIG_KEYS
        }
        return cls.model_validate(values)


def generate_env_template(project_path: str | Path) -> Path:
    """Create .env.example with all config keys.

    Returns the path to the generated file.
    """
    root = Path(project_path)
    env_path = root / ".env.example"

    lines = ["# gitcore configuration template", "# Copy to .env and fill in values", ""]
    for key, info in _CONFIG_KEYS.items():
        lines.append(f"# {info['description']}")
        lines.append(f"{key}={info['default']}")
        lines.append("")

    env_path.write_text("\n".join(lines), encoding="utf-8")
    return env_path


def _read_json_layer(path: Path) -> dict[str, str]:
    """Keys from a JSON object file; an unreadable file contributes nothing."""
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        logger.warning("Ignoring unreadable config file %s", path, exc_info=True)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: expected a JSON object", path)
        return {}
    return {str(k): str(v) for k, v in data.items()}


def _read_env_layer(path: Path) -> dict[str, str]:
    """``KEY=value`` lines from a dotenv file; same failure handling as JSON."""
    if not path.is_file():
        return {}
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, ValueError):
        logger.warning("Ignoring unreadable config file %s", path, exc_info=True)
        return {}
    values: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return values


def load_config(project_path: str | Path, environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Load merged config: defaults -> profile -> config.json -> .env -> env vars.

    Returns a flat dict of configuration values.
    """
    environ = os.environ if environ is None else environ
    root = Path(project_path)

    config = {key: str(info["default"]) for key, info in _CONFIG_KEYS.items()}
    config.update(_PROFILES.get(environ.get("GITCORE_ENV", config["GITCORE_ENV"]), {}))
    config.update(_read_json_layer(root / ".gitcore" / "config.json"))
    config.update(_read_env_layer(root / ".env"))
    config.update({key: environ[key] for key in _CONFIG_KEYS if key in environ})
    return config


def load_settings(project_path: str | Path = ".", environ: Mapping[str, str] | None = None) -> Settings:
    """Load and validate :class:`Settings` for *project_path*."""
    return Settings.from_config(load_config(project_path, environ))


def configure_logging(level: str | int = "INFO") -> None:
    """Apply *level* to the ``gitcore`` logger hierarchy."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("gitcore").setLevel(level)
