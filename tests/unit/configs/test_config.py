"""
Unit tests for the config module.

Tests for pipeline YAML loading, settings substitution and source parsing.
"""

from pathlib import Path

import pytest
from pydantic import SecretStr

from event_ingest.configs.config import Config, load_sources, substitute_settings
from event_ingest.configs.settings import Settings
from event_ingest.schemas.event import TimeMode
from event_ingest.schemas.pipeline import ExtractionStrategy, FetcherType


class TestConfigPaths:
    """Tests for Config path attributes."""

    def test_config_dir_is_path(self):
        """CONFIG_DIR should be a Path object."""
        assert isinstance(Config.CONFIG_DIR, Path)

    def test_config_dir_exists(self):
        """CONFIG_DIR should exist."""
        assert Config.CONFIG_DIR.exists()


class TestLoadPipelineConfig:
    """Tests for load_pipeline_config method."""

    def test_returns_dict(self):
        """The bundled config loads as a dictionary."""
        config = Config.load_pipeline_config()
        assert isinstance(config, dict)

    def test_config_has_sources(self):
        """Config should have sources section."""
        config = Config.load_pipeline_config()
        assert config["sources"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config.load_pipeline_config(tmp_path / "nope.yaml")

    def test_settings_substitution(self, tmp_path):
        """Placeholders are filled from the given settings."""
        path = tmp_path / "pipeline.yaml"
        path.write_text("global:\n  agent: ${GEOCODER_USER_AGENT}\n  key: ${SCRAPER_PROXY_API_KEY}\n")
        settings = Settings(GEOCODER_USER_AGENT="my-agent", SCRAPER_PROXY_API_KEY=SecretStr("secret"))

        config = Config.load_pipeline_config(path, settings=settings)

        assert config["global"] == {"agent": "my-agent", "key": "secret"}

    def test_unknown_placeholder_left_alone(self):
        assert substitute_settings("x: ${NOT_A_SETTING}", Settings()) == "x: ${NOT_A_SETTING}"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert Config.load_pipeline_config(path) == {}


class TestLoadSources:
    """Tests for load_sources()."""

    def test_bundled_sources(self):
        sources = load_sources(Config.load_pipeline_config())
        by_id = {s.id: s for s in sources}

        assert by_id["melkweg"].preferred_strategy == ExtractionStrategy.HYDRATION
        assert by_id["foodhallen"].strategy == "venue_listing"
        assert by_id["foodhallen"].default_time_mode == TimeMode.WINDOW
        assert by_id["paradiso"].fetcher_type == FetcherType.STATIC

    def test_defaults_are_merged(self):
        config = {
            "defaults": {"city": "utrecht", "category": "music"},
            "sources": [{"id": "a", "name": "A", "url": "https://a.example"}],
        }
        (source,) = load_sources(config)
        assert source.city == "utrecht"
        assert source.category == "music"

    def test_invalid_entry_skipped(self):
        config = {
            "sources": [
                {"id": "bad", "name": "Bad"},
                {"id": "good", "name": "Good", "url": "https://good.example", "city": "amsterdam"},
            ]
        }
        assert [s.id for s in load_sources(config)] == ["good"]

    def test_no_sources(self):
        assert load_sources({}) == []
