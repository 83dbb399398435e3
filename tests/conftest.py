"""Shared pytest fixtures for leadcms-sync tests."""

import json
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest
from dotenv import load_dotenv

from leadcms_sync.config import Config

load_dotenv()


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live LeadCMS instance",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live LeadCMS instance"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        # --run-live given: do not skip live tests
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture
def mock_config():
    """Create a Config instance for tests that never touch the disk."""
    return Config(
        url="https://cms.example.com",
        api_key="test-key",
        default_language="en",
    )


@pytest.fixture
def mirror_config(tmp_path: Path) -> Config:
    """Config whose mirror directories all live under ``tmp_path``."""
    return Config(
        url="https://cms.example.com",
        api_key="test-key",
        default_language="en",
        content_dir=str(tmp_path / ".leadcms" / "content"),
        media_dir=str(tmp_path / "public" / "media"),
        comments_dir=str(tmp_path / ".leadcms" / "comments"),
        email_templates_dir=str(tmp_path / ".leadcms" / "email-templates"),
        settings_dir=str(tmp_path / ".leadcms" / "settings"),
        page_size=100,
    )


@pytest.fixture
def mock_http_response():
    """Factory fixture for creating ``requests.Response`` mocks."""

    def _create_response(
        status_code: int = 200,
        json_data: Any = None,
        headers: dict[str, str] | None = None,
    ):
        response = Mock()
        response.status_code = status_code
        response.headers = headers or {}
        response.url = "https://cms.example.com/api"
        response.content = (
            json.dumps(json_data).encode() if json_data is not None else b""
        )
        response.json.return_value = json_data
        response.raise_for_status.return_value = None
        return response

    return _create_response

