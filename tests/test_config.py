"""Tests for leadcms_sync.config -- env-var config loading and validation.

NOT to be confused with test_config_loader.py (the YAML config file)
or test_config_schema.py (Pydantic models). This tests the bootstrap
path: validate_config() and load_config().
"""

import logging
from pathlib import Path

import pytest

from leadcms_sync.config import Config, load_config, validate_config

_ENV_KEYS = (
    "LEADCMS_URL",
    "NEXT_PUBLIC_LEADCMS_URL",
    "LEADCMS_API_KEY",
    "LEADCMS_DEFAULT_LANGUAGE",
    "NEXT_PUBLIC_LEADCMS_DEFAULT_LANGUAGE",
    "LEADCMS_CONTENT_DIR",
    "LEADCMS_MEDIA_DIR",
    "LEADCMS_COMMENTS_DIR",
    "LEADCMS_EMAIL_TEMPLATES_DIR",
    "LEADCMS_SETTINGS_DIR",
    "LEADCMS_PAGE_SIZE",
    "LEADCMS_TIMEOUT",
    "LEADCMS_DEBUG",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Start every test without LEADCMS_* variables from the shell or .env."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config() -- URL format and range checks."""

    def test_valid_config(self):
        config = Config(url="https://cms.example.com", api_key="key")
        validate_config(config)  # should not raise

    def test_http_url_valid(self):
        config = Config(url="http://localhost:5000")
        validate_config(config)

    def test_invalid_url_no_scheme(self):
        config = Config(url="cms.example.com")
        with pytest.raises(
            ValueError, match="must start with http:// or https://"
        ):
            validate_config(config)

    def test_invalid_url_ftp_scheme(self):
        config = Config(url="ftp://cms.example.com")
        with pytest.raises(
            ValueError, match="must start with http:// or https://"
        ):
            validate_config(config)

    def test_empty_host_url(self):
        """URL with scheme but no hostname should be rejected."""
        config = Config(url="https://")
        with pytest.raises(ValueError, match="must include a hostname"):
            validate_config(config)

    def test_trailing_slash_stripped(self):
        config = Config(url="https://cms.example.com/")
        validate_config(config)
        assert config.url == "https://cms.example.com"

    def test_whitespace_url_stripped_before_scheme_check(self):
        config = Config(url="  https://cms.example.com  ")
        validate_config(config)
        assert config.url == "https://cms.example.com"

    def test_empty_language_rejected(self):
        config = Config(url="https://cms.example.com", default_language="  ")
        with pytest.raises(ValueError, match="Default language cannot be empty"):
            validate_config(config)

    @pytest.mark.parametrize("size", [0, 1001])
    def test_page_size_out_of_range(self, size):
        config = Config(url="https://cms.example.com", page_size=size)
        with pytest.raises(ValueError, match="Invalid page size"):
            validate_config(config)

    @pytest.mark.parametrize("timeout", [0, 601])
    def test_timeout_out_of_range(self, timeout):
        config = Config(url="https://cms.example.com", timeout=timeout)
        with pytest.raises(ValueError, match="Invalid timeout"):
            validate_config(config)

    def test_blank_api_key_becomes_none(self):
        config = Config(url="https://cms.example.com", api_key="   ")
        validate_config(config)
        assert config.api_key is None

    def test_missing_api_key_logged_at_debug(self, caplog):
        config = Config(url="https://cms.example.com")
        with caplog.at_level(logging.DEBUG, logger="leadcms_sync.config"):
            validate_config(config)
        assert "No LEADCMS_API_KEY configured" in caplog.text


# -------------------------------------------------------------------------
# Config.entity_dir()
# -------------------------------------------------------------------------


class TestEntityDir:
    def test_relative_dir_resolved_against_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = Config(url="https://cms.example.com")
        assert config.entity_dir("content") == tmp_path / ".leadcms" / "content"
        assert config.entity_dir("media") == tmp_path / "public" / "media"

    def test_email_templates_key_uses_dash(self, tmp_path):
        config = Config(
            url="https://cms.example.com",
            email_templates_dir=str(tmp_path / "emails"),
        )
        assert config.entity_dir("email-templates") == tmp_path / "emails"

    def test_unknown_kind_raises(self):
        config = Config(url="https://cms.example.com")
        with pytest.raises(ValueError, match="Unknown entity kind 'pages'"):
            config.entity_dir("pages")


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config() -- env var loading, CLI overrides, parsing."""

    def test_load_from_env_vars(self, monkeypatch):
        monkeypatch.setenv("LEADCMS_URL", "https://cms.example.com")
        monkeypatch.setenv("LEADCMS_API_KEY", "secret")
        monkeypatch.setenv("LEADCMS_DEFAULT_LANGUAGE", "de")

        config = load_config()

        assert config.url == "https://cms.example.com"
        assert config.api_key == "secret"
        assert config.default_language == "de"

    def test_next_public_url_accepted(self, monkeypatch):
        monkeypatch.setenv("NEXT_PUBLIC_LEADCMS_URL", "https://public.example.com")
        config = load_config()
        assert config.url == "https://public.example.com"

    def test_leadcms_url_wins_over_next_public(self, monkeypatch):
        monkeypatch.setenv("LEADCMS_URL", "https://primary.example.com")
        monkeypatch.setenv("NEXT_PUBLIC_LEADCMS_URL", "https://public.example.com")
        assert load_config().url == "https://primary.example.com"

    def test_cli_args_override_env(self, monkeypatch):
        monkeypatch.setenv("LEADCMS_URL", "https://env.example.com")
        monkeypatch.setenv("LEADCMS_API_KEY", "env-key")

        config = load_config(url="https://cli.example.com", api_key="cli-key")

        assert config.url == "https://cli.example.com"
        assert config.api_key == "cli-key"

    def test_missing_url_raises(self):
        with pytest.raises(ValueError, match="LeadCMS URL not found"):
            load_config()

    def test_anonymous_when_no_key(self, monkeypatch):
        monkeypatch.setenv("LEADCMS_URL", "https://cms.example.com")
        assert load_config().api_key is None

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("LEADCMS_URL", "https://cms.example.com")
        config = load_config()
        assert config.default_language == "en"
        assert config.page_size == 100
        assert config.timeout == 60
        assert config.debug is False
        assert config.content_dir == ".leadcms/content"
        assert config.media_dir == "public/media"

    def test_directory_env_vars(self, monkeypatch):
        monkeypatch.setenv("LEADCMS_URL", "https://cms.example.com")
        monkeypatch.setenv("LEADCMS_CONTENT_DIR", "site/content")
        monkeypatch.setenv("LEADCMS_EMAIL_TEMPLATES_DIR", "site/emails")

        config = load_config()

        assert config.content_dir == "site/content"
        assert config.email_templates_dir == "site/emails"

    # --- Boolean env var parsing ---

    @pytest.mark.parametrize(
        "value", ["true", "1", "yes", "on", "TRUE", "True", "YES"]
    )
    def test_debug_truthy_values(self, monkeypatch, value):
        monkeypatch.setenv("LEADCMS_URL", "https://cms.example.com")
        monkeypatch.setenv("LEADCMS_DEBUG", value)
        assert load_config().debug is True

    @pytest.mark.parametrize(
        "value", ["false", "0", "no", "off", "FALSE", "random"]
    )
    def test_debug_falsy_values(self, monkeypatch, value):
        monkeypatch.setenv("LEADCMS_URL", "https://cms.example.com")
        monkeypatch.setenv("LEADCMS_DEBUG", value)
        assert load_config().debug is False

    def test_debug_cli_flag_wins(self, monkeypatch):
        monkeypatch.setenv("LEADCMS_URL", "https://cms.example.com")
        monkeypatch.setenv("LEADCMS_DEBUG", "false")
        assert load_config(debug=True).debug is True

    # --- Numeric env var parsing ---

    def test_page_size_from_env(self, monkeypatch):
        monkeypatch.setenv("LEADCMS_URL", "https://cms.example.com")
        monkeypatch.setenv("LEADCMS_PAGE_SIZE", "10")
        assert load_config().page_size == 10

    def test_page_size_non_numeric(self, monkeypatch):
        monkeypatch.setenv("LEADCMS_URL", "https://cms.example.com")
        monkeypatch.setenv("LEADCMS_PAGE_SIZE", "abc")
        with pytest.raises(ValueError, match="Invalid LEADCMS_PAGE_SIZE 'abc'"):
            load_config()

    def test_page_size_zero(self, monkeypatch):
        monkeypatch.setenv("LEADCMS_URL", "https://cms.example.com")
        monkeypatch.setenv("LEADCMS_PAGE_SIZE", "0")
        with pytest.raises(ValueError, match="between 1 and 1000"):
            load_config()

    def test_timeout_too_large(self, monkeypatch):
        monkeypatch.setenv("LEADCMS_URL", "https://cms.example.com")
        monkeypatch.setenv("LEADCMS_TIMEOUT", "601")
        with pytest.raises(ValueError, match="Invalid LEADCMS_TIMEOUT '601'"):
            load_config()


# -------------------------------------------------------------------------
# YAML fallbacks
# -------------------------------------------------------------------------


class TestYamlFallbacks:
    """YAML values apply only when CLI and env leave a field unset."""

    def test_fallback_url_used(self):
        config = load_config(yaml_fallbacks={"url": "https://yaml.example.com"})
        assert config.url == "https://yaml.example.com"

    def test_env_beats_fallback(self, monkeypatch):
        monkeypatch.setenv("LEADCMS_URL", "https://env.example.com")
        config = load_config(yaml_fallbacks={"url": "https://yaml.example.com"})
        assert config.url == "https://env.example.com"

    def test_fallback_numbers_and_dirs(self):
        config = load_config(
            yaml_fallbacks={
                "url": "https://yaml.example.com",
                "page_size": 25,
                "timeout": 30,
                "content_dir": "content",
                "debug": True,
            }
        )
        assert config.page_size == 25
        assert config.timeout == 30
        assert config.content_dir == "content"
        assert config.debug is True

    def test_env_page_size_beats_fallback(self, monkeypatch):
        monkeypatch.setenv("LEADCMS_PAGE_SIZE", "7")
        config = load_config(
            yaml_fallbacks={"url": "https://yaml.example.com", "page_size": 25}
        )
        assert config.page_size == 7

    def test_fallback_out_of_range_rejected(self):
        with pytest.raises(ValueError, match="Invalid page size"):
            load_config(
                yaml_fallbacks={"url": "https://yaml.example.com", "page_size": 5000}
            )

    def test_fallback_dir_resolves(self, tmp_path):
        config = load_config(
            yaml_fallbacks={
                "url": "https://yaml.example.com",
                "settings_dir": str(tmp_path / "settings"),
            }
        )
        assert config.entity_dir("settings") == Path(tmp_path / "settings")
