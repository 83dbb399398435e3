"""Runtime configuration for the LeadCMS sync engine.

Reads LeadCMS connection settings and mirror directories from CLI args,
environment variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    LEADCMS_URL: LeadCMS instance URL (required; NEXT_PUBLIC_LEADCMS_URL accepted)
    LEADCMS_API_KEY: API key for authenticated entity kinds (optional)
    LEADCMS_DEFAULT_LANGUAGE: Language stored at the mirror root (default: en)
    LEADCMS_CONTENT_DIR: Content mirror (default: .leadcms/content)
    LEADCMS_MEDIA_DIR: Media mirror (default: public/media)
    LEADCMS_COMMENTS_DIR: Comments mirror (default: .leadcms/comments)
    LEADCMS_EMAIL_TEMPLATES_DIR: Email template mirror (default: .leadcms/email-templates)
    LEADCMS_SETTINGS_DIR: Settings mirror (default: .leadcms/settings)
    LEADCMS_PAGE_SIZE: Items per sync page (optional, default: 100)
    LEADCMS_TIMEOUT: Read timeout in seconds (optional, default: 60)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_DIRECTORIES = {
    "content": ".leadcms/content",
    "media": "public/media",
    "comments": ".leadcms/comments",
    "email_templates": ".leadcms/email-templates",
    "settings": ".leadcms/settings",
}


@dataclass
class Config:
    url: str
    api_key: str | None = None
    default_language: str = "en"
    content_dir: str = DEFAULT_DIRECTORIES["content"]
    media_dir: str = DEFAULT_DIRECTORIES["media"]
    comments_dir: str = DEFAULT_DIRECTORIES["comments"]
    email_templates_dir: str = DEFAULT_DIRECTORIES["email_templates"]
    settings_dir: str = DEFAULT_DIRECTORIES["settings"]
    page_size: int = 100
    timeout: int = 60
    debug: bool = False

    def entity_dir(self, kind: str) -> Path:
        """Return the absolute mirror directory for an entity kind.

        *kind* is an ``EntityKind`` member or its string value.
        """
        dirs = {
            "content": self.content_dir,
            "media": self.media_dir,
            "comments": self.comments_dir,
            "email-templates": self.email_templates_dir,
            "settings": self.settings_dir,
        }
        try:
            raw = dirs[kind]
        except KeyError:
            raise ValueError(f"Unknown entity kind '{kind}'") from None
        return Path(raw).expanduser().resolve()


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If URL format is invalid or a field is out of range.
    """
    config.url = config.url.strip()

    if not config.url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid LeadCMS URL '{config.url}': must start with http:// or https://"
        )

    parsed = urlparse(config.url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid LeadCMS URL '{config.url}': URL must include a hostname"
        )

    config.url = config.url.removesuffix("/")

    if not config.default_language.strip():
        raise ValueError(
            "Default language cannot be empty. Set LEADCMS_DEFAULT_LANGUAGE."
        )
    config.default_language = config.default_language.strip()

    if not (1 <= config.page_size <= 1000):
        raise ValueError(
            f"Invalid page size {config.page_size}: must be between 1 and 1000"
        )

    if not (1 <= config.timeout <= 600):
        raise ValueError(
            f"Invalid timeout {config.timeout}: must be between 1 and 600 seconds"
        )

    if config.api_key is not None and not config.api_key.strip():
        config.api_key = None

    if config.api_key is None:
        logger.debug(
            "No LEADCMS_API_KEY configured; only anonymous entity kinds can sync"
        )


def _int_setting(
    env_key: str, fallback: object, default: int, low: int, high: int
) -> int:
    """Resolve a numeric setting from env > YAML > default."""
    raw = os.getenv(env_key)
    if raw is not None:
        try:
            value = int(raw)
        except ValueError:
            raise ValueError(
                f"Invalid {env_key} '{raw}': must be a number between {low} and {high}"
            ) from None
        if not (low <= value <= high):
            raise ValueError(
                f"Invalid {env_key} '{raw}': must be a number between {low} and {high}"
            )
        return value
    if fallback is not None:
        return int(fallback)  # type: ignore[call-overload]
    return default


def load_config(
    url: str | None = None,
    api_key: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        url: Override LeadCMS URL (takes precedence over env var and YAML).
        api_key: Override API key (takes precedence over env var and YAML).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict of values from the YAML config file.
            Used as fallback when CLI arg and env var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If the URL is missing after checking all sources, or a
            numeric setting is out of range.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > default ---

    leadcms_url = (
        url
        or os.getenv("LEADCMS_URL")
        or os.getenv("NEXT_PUBLIC_LEADCMS_URL")
        or fb.get("url")
    )
    if not leadcms_url:
        raise ValueError(
            "LeadCMS URL not found. Set LEADCMS_URL environment variable, "
            "pass --url CLI argument, or add 'url' to config.yml."
        )

    final_api_key = api_key or os.getenv("LEADCMS_API_KEY") or fb.get("api_key")

    language = (
        os.getenv("LEADCMS_DEFAULT_LANGUAGE")
        or os.getenv("NEXT_PUBLIC_LEADCMS_DEFAULT_LANGUAGE")
        or fb.get("default_language")
        or "en"
    )

    dirs = {}
    for key, default in DEFAULT_DIRECTORIES.items():
        env_key = f"LEADCMS_{key.upper()}_DIR"
        dirs[key] = os.getenv(env_key) or fb.get(f"{key}_dir") or default

    # --- Boolean fields: CLI > env > YAML > default ---

    if debug:
        final_debug = True
    else:
        env_debug = os.getenv("LEADCMS_DEBUG")
        if env_debug is not None:
            final_debug = env_debug.lower() in ("true", "1", "yes", "on")
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    page_size = _int_setting(
        "LEADCMS_PAGE_SIZE", fb.get("page_size"), 100, 1, 1000
    )
    timeout = _int_setting("LEADCMS_TIMEOUT", fb.get("timeout"), 60, 1, 600)

    config = Config(
        url=leadcms_url,
        api_key=final_api_key,
        default_language=language,
        content_dir=dirs["content"],
        media_dir=dirs["media"],
        comments_dir=dirs["comments"],
        email_templates_dir=dirs["email_templates"],
        settings_dir=dirs["settings"],
        page_size=page_size,
        timeout=timeout,
        debug=final_debug,
    )

    validate_config(config)

    return config
