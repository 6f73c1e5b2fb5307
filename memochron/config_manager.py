"""Configuration management for memochron."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator

from .models import CalendarSource

logger = logging.getLogger(__name__)

ENV_PREFIX = "MEMOCHRON_"


class MemochronSettings(BaseModel):
    """Runtime settings consumed by the ingestion pipeline."""

    sources: list[CalendarSource] = Field(default_factory=list, description="Calendar feeds")
    refresh_interval: int = Field(default=30, description="Refresh interval in minutes")
    snapshot_path: Optional[str] = Field(default=None, description="Snapshot JSON file")
    timezone: Optional[str] = Field(default=None, description="Local IANA timezone")
    vault_root: Optional[str] = Field(default=None, description="Root for relative feed paths")
    request_timeout: int = Field(default=30, description="HTTP read timeout in seconds")
    max_retries: int = Field(default=2, description="HTTP retries on network errors and 5xx")
    retry_backoff_factor: float = Field(default=1.0, description="Base backoff in seconds")
    log_level: str = Field(default="INFO", description="Root log level")

    @field_validator("refresh_interval")
    @classmethod
    def _positive_interval(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("refresh_interval must be > 0")
        return value


def source_from_url(url: str) -> CalendarSource:
    """Build a CalendarSource from a bare URL, naming it after the host or file."""
    parsed = urlparse(url)
    name = parsed.hostname or Path(parsed.path or url).stem or url
    return CalendarSource(url=url, name=name)


def load_sources_file(path: str | Path) -> list[CalendarSource]:
    """Read a JSON list of sources ({"url", "name", "enabled", "color"}).

    Invalid entries are logged and skipped.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"Sources file {path} must contain a JSON list")

    sources = []
    for entry in data:
        try:
            sources.append(CalendarSource.model_validate(entry))
        except ValidationError as e:
            logger.warning("Skipping invalid source entry %r: %s", entry, e)
    return sources


class ConfigManager:
    """Manages application configuration from environment variables and .env files."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        try:
            content = self.env_file_path.read_text(encoding="utf-8")
        except OSError:
            logger.debug("Failed to read .env file (continuing): %s", self.env_file_path, exc_info=True)
            return []

        set_keys = []
        for raw_line in content.splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, val = line.split("=", 1)
            key = key.strip()
            val = val.strip().strip('"').strip("'")
            if key and key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))
        return set_keys

    def build_config_from_env(self) -> dict[str, Any]:
        """Build a configuration dictionary from MEMOCHRON_* environment variables.

        Recognizes:
        - MEMOCHRON_ICS_URLS -> 'sources' (comma separated URLs or paths)
        - MEMOCHRON_SOURCES_FILE -> 'sources' (JSON list, appended)
        - MEMOCHRON_REFRESH_INTERVAL -> 'refresh_interval' (minutes)
        - MEMOCHRON_SNAPSHOT_PATH -> 'snapshot_path'
        - MEMOCHRON_TIMEZONE -> 'timezone'
        - MEMOCHRON_VAULT_ROOT -> 'vault_root'
        - MEMOCHRON_REQUEST_TIMEOUT -> 'request_timeout' (seconds)
        - MEMOCHRON_LOG_LEVEL -> 'log_level'
        """
        cfg: dict[str, Any] = {}
        sources: list[CalendarSource] = []

        urls = os.environ.get(f"{ENV_PREFIX}ICS_URLS", "")
        sources.extend(source_from_url(u.strip()) for u in urls.split(",") if u.strip())

        sources_file = os.environ.get(f"{ENV_PREFIX}SOURCES_FILE")
        if sources_file:
            try:
                sources.extend(load_sources_file(sources_file))
            except (OSError, ValueError) as e:
                logger.warning("Cannot read %sSOURCES_FILE=%r: %s", ENV_PREFIX, sources_file, e)

        if sources:
            cfg["sources"] = sources

        for key, name in (("refresh_interval", "REFRESH_INTERVAL"), ("request_timeout", "REQUEST_TIMEOUT")):
            raw = os.environ.get(f"{ENV_PREFIX}{name}")
            if not raw:
                continue
            try:
                value = int(raw)
            except ValueError:
                logger.warning("Invalid %s%s=%r; ignoring", ENV_PREFIX, name, raw)
                continue
            if value <= 0:
                logger.warning("Invalid %s%s=%r; must be > 0", ENV_PREFIX, name, raw)
                continue
            cfg[key] = value

        for key, name in (
            ("snapshot_path", "SNAPSHOT_PATH"),
            ("timezone", "TIMEZONE"),
            ("vault_root", "VAULT_ROOT"),
            ("log_level", "LOG_LEVEL"),
        ):
            value = os.environ.get(f"{ENV_PREFIX}{name}")
            if value:
                cfg[key] = value

        return cfg

    def load_settings(self) -> MemochronSettings:
        """Load .env file and build settings from the environment.

        This is the main entry point for loading configuration.
        """
        self.load_env_file()
        return MemochronSettings(**self.build_config_from_env())
