"""
YAML configuration file for leadcms_sync.

A project keeps its settings in ``.leadcms/config.yml``; the
``LEADCMS_SYNC_CONFIG`` environment variable points at another file.
String values may reference the environment as ``${VAR}`` or
``${VAR:-default}``, which keeps the API key out of the file.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "LEADCMS_SYNC_CONFIG"
PROJECT_CONFIG_NAMES = ("config.yml", "config.yaml")

# ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: Any) -> Any:
    """Replace ``${VAR}`` and ``${VAR:-default}`` in every nested string.

    An unset or empty variable falls back to *default* when one is given,
    otherwise to the empty string.
    """
    if isinstance(value, dict):
        return {k: interpolate_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]
    if not isinstance(value, str):
        return value

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) if match.group(2) is not None else ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def find_config_file() -> Path | None:
    """Return the config file in use, or ``None``.

    ``LEADCMS_SYNC_CONFIG`` wins when set, even if the file is missing, so
    a typo surfaces as an error instead of silently using another file.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser().resolve()
    for name in PROJECT_CONFIG_NAMES:
        candidate = Path.cwd() / ".leadcms" / name
        if candidate.exists():
            return candidate
    return None


def load_config_file() -> dict[str, Any]:
    """Parse the config file; ``{}`` when there is none.

    Raises:
        ValueError: If the file is missing, is not valid YAML, or its root
            is not a mapping.
    """
    path = find_config_file()
    if path is None:
        logger.debug("No config file found; using zero-config defaults")
        return {}
    if not path.is_file():
        raise ValueError(f"Config file not found: {path}")

    logger.debug("Loading config: %s", path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Config file {path} must hold a mapping, not {type(data).__name__}"
        )
    return interpolate_env_vars(data)


_STARTER_CONFIG = """\
# leadcms-sync configuration
#
# Connection settings can also come from environment variables:
#   LEADCMS_URL, LEADCMS_API_KEY, LEADCMS_DEFAULT_LANGUAGE
#
# leadcms:
#   url: https://cms.example.com
#   api_key: ${LEADCMS_API_KEY}
#   default_language: en
#   page_size: 100
#   timeout: 60
#
# directories:
#   content: .leadcms/content
#   media: public/media
#   comments: .leadcms/comments
#   email_templates: .leadcms/email-templates
#   settings: .leadcms/settings
#
# logging:
#   level: INFO
#   file: null
"""


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a starter file if none exists.

    Args:
        target: Path to create.  Defaults to ``CWD / .leadcms / config.yml``.
    """
    existing = find_config_file()
    if existing is not None and existing.exists():
        logger.debug("Config file already exists: %s", existing)
        return existing

    config_path = target or existing or Path.cwd() / ".leadcms" / "config.yml"
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path
