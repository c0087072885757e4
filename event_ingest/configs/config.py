"""Configuration loader for the event ingestion pipeline."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import yaml

from event_ingest.configs.settings import Settings, get_settings
from event_ingest.schemas.pipeline import ScraperSource

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\$\{([A-Z0-9_]+)\}")


def substitute_settings(content: str, settings: Settings) -> str:
    """
    Replace ``${NAME}`` placeholders with values from settings.

    Unknown placeholders and unset values are left untouched so the YAML
    still parses and the problem is visible in the loaded config.
    """
    values = settings.model_dump()

    def _replace(match: re.Match) -> str:
        value = values.get(match.group(1))
        if value is None:
            return match.group(0)
        # Handle SecretStr
        if hasattr(value, "get_secret_value"):
            return value.get_secret_value()
        return str(value)

    return _PLACEHOLDER_RE.sub(_replace, content)


class Config:
    """Configuration for the event ingestion pipeline."""

    CONFIG_DIR = Path(__file__).parent.resolve()

    @classmethod
    def load_pipeline_config(
        cls,
        path: Path | str | None = None,
        *,
        settings: Settings | None = None,
    ) -> dict:
        """Load the YAML configuration declaring pipeline sources."""
        settings = settings or get_settings()
        config_path = Path(path) if path else settings.PIPELINE_CONFIG_PATH
        if not config_path.exists():
            raise FileNotFoundError(f"Missing config at {config_path}")

        with open(config_path, encoding="utf-8") as f:
            content = substitute_settings(f.read(), settings)

        return yaml.safe_load(content) or {}


def load_sources(config: dict[str, Any]) -> list[ScraperSource]:
    """
    Build ScraperSource models from the ``sources`` section of a config.

    Invalid entries are logged and skipped so one typo doesn't take down
    every other source.
    """
    sources: list[ScraperSource] = []
    defaults = config.get("defaults") or {}
    for entry in config.get("sources") or []:
        merged = {**defaults, **entry}
        try:
            sources.append(ScraperSource.model_validate(merged))
        except ValueError as e:
            logger.error(f"Skipping invalid source {entry.get('id', '<no id>')}: {e}")
    return sources
