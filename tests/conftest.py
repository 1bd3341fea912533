"""
Shared fixtures for Repology Watcher tests.

Provides common test fixtures for use across all test modules.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from repology_watcher.config import AppConfig, FeedConfig, StateConfig
from repology_watcher.entries import EntryMapper
from repology_watcher.feed import FeedStore

# Path to test fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"

FIELDS = ["version", "origversion", "status"]


@pytest.fixture
def fixtures_dir() -> Path:
    """Return path to fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture
def sample_config_path(fixtures_dir: Path) -> Path:
    """Return path to sample config file."""
    return fixtures_dir / "sample_config.yaml"


@pytest.fixture
def api_response(fixtures_dir: Path) -> list[dict[str, Any]]:
    """Return a recorded Repology project response."""
    return json.loads((fixtures_dir / "repology_response.json").read_text())


@pytest.fixture
def fields() -> list[str]:
    """Return the default monitored fields."""
    return list(FIELDS)


@pytest.fixture
def now() -> datetime:
    """Return a fixed run timestamp."""
    return datetime(2025, 9, 22, 12, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def feed_config() -> FeedConfig:
    """Create a feed configuration with a fixed link."""
    return FeedConfig(
        title="Hashcat Repository Monitor",
        link="https://github.com/example/watcher",
        description="Test feed",
        max_items=50,
    )


@pytest.fixture
def feed_store(feed_config: FeedConfig) -> FeedStore:
    """Create a feed store."""
    return FeedStore(feed_config)


@pytest.fixture
def mapper(feed_config: FeedConfig) -> EntryMapper:
    """Create an entry mapper for hashcat."""
    return EntryMapper(feed_config, project_name="hashcat", display_name="Hashcat")


@pytest.fixture
def app_config(tmp_path: Path, feed_config: FeedConfig) -> AppConfig:
    """
    Create an app configuration writing into a temporary directory.

    Returns
    -------
    AppConfig
        Configuration with the state file under ``tmp_path``.
    """
    return AppConfig(
        state=StateConfig(state_path=str(tmp_path / "state.json")),
        feed=feed_config,
    )
