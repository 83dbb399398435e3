"""Unified configuration schema for leadcms_sync.

Defines Pydantic models for the YAML config structure with dedicated
sections for the LeadCMS connection, mirror directories, and logging.
Includes an adapter that flattens the validated model into the fallback
dict consumed by ``load_config()``.

Usage:
    from leadcms_sync.config_schema import build_config, to_fallbacks

    raw = load_config_file()
    unified = build_config(raw)
    config = load_config(url=args.url, yaml_fallbacks=to_fallbacks(unified))
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class LeadCMSConfig(BaseModel):
    """LeadCMS connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    url: str | None = Field(default=None, description="LeadCMS base URL")
    api_key: str | None = Field(
        default=None, description="API key for authenticated endpoints"
    )
    default_language: str | None = Field(
        default=None, description="Language stored at the mirror root"
    )
    page_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Items requested per sync page (1-1000)",
    )
    timeout: int = Field(
        default=60,
        ge=1,
        le=600,
        description="Read timeout for every request in seconds (1-600)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


class DirectoriesConfig(BaseModel):
    """Local mirror directories, one per entity kind."""

    content: str | None = None
    media: str | None = None
    comments: str | None = None
    email_templates: str | None = None
    settings: str | None = None

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    leadcms: LeadCMSConfig = Field(default_factory=LeadCMSConfig)
    directories: DirectoriesConfig = Field(
        default_factory=DirectoriesConfig
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_config_file()``.

    Handles missing sections gracefully -- anything absent gets defaults.

    Args:
        raw_data: Parsed configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> load_config() fallbacks
# ---------------------------------------------------------------------------


def to_fallbacks(unified: UnifiedConfig) -> dict:
    """Flatten a ``UnifiedConfig`` into the ``yaml_fallbacks`` dict.

    Only values that were actually set are included so that built-in
    defaults in ``load_config()`` still apply.

    Args:
        unified: The unified config produced by ``build_config()``.

    Returns:
        Dict keyed the way ``load_config()`` expects (``url``,
        ``api_key``, ``content_dir``, ...).
    """
    fallbacks: dict = {}
    section = unified.leadcms
    for key in ("url", "api_key", "default_language"):
        value = getattr(section, key)
        if value:
            fallbacks[key] = value
    fields_set = section.model_fields_set
    for key in ("page_size", "timeout", "debug"):
        if key in fields_set:
            fallbacks[key] = getattr(section, key)

    for key, value in unified.directories.model_dump().items():
        if value:
            fallbacks[f"{key}_dir"] = value

    return fallbacks
