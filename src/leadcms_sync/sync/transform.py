"""Remote record -> mirror file transforms and path rules.

Each entity kind has a path rule (where a record lives on disk) and a
renderer (what the file contains).  Both are pure functions of the record
plus configuration, which is what lets the reconciler recompute a target
path and compare it with wherever the identifier index found the record.

File layouts:

* content       ``<root>/[<lang>/]<type>/<slug>.mdx|.json``
* email         ``<root>/[<lang>/]<group-slug>/<name-slug>.html``
* comments      ``<root>/[<lang>/]<commentable-type>/<commentable-id>.json``
* media         ``<root>/<scope-uid>/<name>``
* settings      ``<root>/[<lang>/]settings.json``

``<lang>/`` is present only for languages other than the default one.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from .models import RemoteRecord

logger = logging.getLogger(__name__)

MDX = "MDX"
JSON_FORMAT = "JSON"

CONTENT_SYSTEM_FIELDS = frozenset({"body", "isLocal"})
EMAIL_SYSTEM_FIELDS = frozenset(
    {"bodyTemplate", "isLocal", "emailGroup", "emailGroupId"}
)
COMMENT_NESTED_FIELDS = frozenset({"content", "parent", "contact"})
TRACKED_SETTING_PREFIX = "AI.SiteProfile."

_API_MEDIA = re.compile(r"(^|[\s\"'()\[\]>])/api/media/")
_BODY_FRONT_MATTER = re.compile(r"\A---\n(.*?)\n---\n?", re.S)
_YAML_HEADER = re.compile(r"\A\ufeff?---\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.S)
_HTML_HEADER = re.compile(r"\A\s*<!--\s*---\r?\n(.*?)\r?\n---\s*-->[ \t]*(?:\r?\n)?", re.S)
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_ISO_FRACTION = re.compile(r"(\.\d{1,6})\d*")

_TIMESTAMP_TAG = "tag:yaml.org,2002:timestamp"


# ---------------------------------------------------------------------------
# YAML with timestamps kept as strings
# ---------------------------------------------------------------------------


class _FrontMatterLoader(yaml.SafeLoader):
    """SafeLoader that leaves ISO timestamps as plain strings."""


class _FrontMatterDumper(yaml.SafeDumper):
    """SafeDumper that writes timestamp-looking strings unquoted."""


for _cls in (_FrontMatterLoader, _FrontMatterDumper):
    _cls.yaml_implicit_resolvers = {
        first: [(tag, rx) for tag, rx in resolvers if tag != _TIMESTAMP_TAG]
        for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
    }


def load_yaml(text: str) -> Any:
    return yaml.load(text, Loader=_FrontMatterLoader)


def dump_yaml(data: dict[str, Any]) -> str:
    """Serialize front matter, keeping key order and never folding lines."""
    return yaml.dump(
        data,
        Dumper=_FrontMatterDumper,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=4096,
    )


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def replace_api_media_paths(value: Any) -> Any:
    """Rewrite ``/api/media/`` references to the public ``/media/`` path.

    Only references at a token boundary are rewritten, so a URL such as
    ``https://cdn/x/api/media/`` stays intact.  Recurses into lists and
    dicts.
    """
    if isinstance(value, str):
        return _API_MEDIA.sub(r"\1/media/", value)
    if isinstance(value, list):
        return [replace_api_media_paths(v) for v in value]
    if isinstance(value, dict):
        return {k: replace_api_media_paths(v) for k, v in value.items()}
    return value


def filter_null_values(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def slugify(value: str) -> str:
    """Lowercase, collapse non-alphanumerics to ``-``, trim dashes."""
    return _NON_ALNUM.sub("-", value.lower().strip()).strip("-")


def language_dir(
    root: Path, language: str | None, default_language: str
) -> Path:
    """Return *root* or ``root/<language>`` for non-default languages."""
    if language and language != default_language:
        _check_segment(language)
        return root / language
    return root


def _check_segment(segment: str) -> None:
    if segment in ("", ".", "..") or "\\" in segment:
        raise ValueError(f"Unsafe path segment '{segment}'")


def _safe_relative(relative: str) -> list[str]:
    parts = [p for p in relative.split("/") if p != ""]
    if not parts:
        raise ValueError(f"Empty path '{relative}'")
    for part in parts:
        _check_segment(part)
    return parts


def split_header(text: str) -> tuple[str, str] | None:
    """Split a header-plus-body file into (header, body).

    The header keeps its delimiters (``---`` front matter or the
    ``<!-- --- ... --- -->`` comment) and its trailing newline, so
    ``header + body == text``.  Returns ``None`` when *text* has no
    header.
    """
    match = _YAML_HEADER.match(text) or _HTML_HEADER.match(text)
    if match is None:
        return None
    return text[: match.end()], text[match.end():]


def header_block(text: str) -> str | None:
    """Return the metadata inside a file's header, without delimiters."""
    match = _YAML_HEADER.match(text) or _HTML_HEADER.match(text)
    return match.group(1) if match else None


def split_body_front_matter(body: str) -> tuple[dict[str, Any], str]:
    """Separate front matter embedded at the top of a remote body.

    Returns:
        ``(front_matter, remaining_body)``; unparseable front matter is
        logged and treated as empty.
    """
    match = _BODY_FRONT_MATTER.match(body)
    if match is None:
        return {}, body
    try:
        data = load_yaml(match.group(1))
    except yaml.YAMLError as exc:
        logger.warning("Failed to parse body front matter: %s", exc)
        data = {}
    if not isinstance(data, dict):
        data = {}
    return data, body[match.end():]


# ---------------------------------------------------------------------------
# Content (articles, pages, components)
# ---------------------------------------------------------------------------


def content_format(record: RemoteRecord, type_map: dict[str, str]) -> str:
    """Return ``"MDX"`` or ``"JSON"``; unknown types default to MDX."""
    return JSON_FORMAT if type_map.get(record.type or "") == JSON_FORMAT else MDX


def content_path(
    root: Path,
    record: RemoteRecord,
    type_map: dict[str, str],
    default_language: str,
) -> Path:
    """Compute where a content record lives.

    Records are grouped by content type under their language directory;
    a record without a type sits directly in the language directory.

    Raises:
        ValueError: If the record has no usable slug or an unsafe type.
    """
    if not record.slug:
        raise ValueError(f"Content {record.id} has no slug")
    parts = _safe_relative(record.slug)
    ext = ".json" if content_format(record, type_map) == JSON_FORMAT else ".mdx"
    base = language_dir(root, record.language, default_language)
    if record.type:
        if "/" in record.type:
            raise ValueError(f"Unsafe content type '{record.type}'")
        _check_segment(record.type)
        base = base / record.type
    return base.joinpath(*parts[:-1], parts[-1] + ext)


def render_content(record: RemoteRecord, type_map: dict[str, str]) -> str:
    """Render a content record as MDX or JSON file text."""
    if content_format(record, type_map) == JSON_FORMAT:
        return _render_json(record)
    return _render_mdx(record)


def _render_mdx(record: RemoteRecord) -> str:
    front_matter, content = split_body_front_matter(record.body or "")

    merged = {**record.to_api(), **front_matter}
    for key in CONTENT_SYSTEM_FIELDS:
        merged.pop(key, None)
    merged = replace_api_media_paths(filter_null_values(merged))

    text = "\n" + replace_api_media_paths(content).strip()
    if not text.endswith("\n"):
        text += "\n"
    return f"---\n{dump_yaml(merged)}---\n{text}"


def _render_json(record: RemoteRecord) -> str:
    try:
        data = json.loads(record.body) if record.body else {}
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    merged = replace_api_media_paths(data)
    for key, value in record.to_api().items():
        if key not in CONTENT_SYSTEM_FIELDS:
            merged[key] = replace_api_media_paths(value)
    return json.dumps(filter_null_values(merged), indent=2, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Email templates
# ---------------------------------------------------------------------------


def email_template_path(
    root: Path, record: RemoteRecord, default_language: str
) -> Path:
    """Compute ``[<lang>/]<group>/<name>.html`` for an email template."""
    group = record.get("emailGroup")
    group_name = group.get("name") if isinstance(group, dict) else None
    folder = "ungrouped"
    if group_name:
        folder = slugify(str(group_name)) or str(group_name)
        _check_segment(folder)

    file_name = slugify(record.name or "template")
    if not file_name:
        file_name = (
            f"template-{record.id}" if record.id is not None else "template"
        )

    base = language_dir(root, record.language, default_language)
    return base / folder / f"{file_name}.html"


def render_email_template(record: RemoteRecord) -> str:
    """Render an email template as HTML with a commented YAML header."""
    metadata = {
        key: replace_api_media_paths(value)
        for key, value in record.to_api().items()
        if key not in EMAIL_SYSTEM_FIELDS
    }
    group = record.get("emailGroup")
    if isinstance(group, dict) and group.get("name"):
        metadata["groupName"] = group["name"]

    body = replace_api_media_paths(record.get("bodyTemplate") or "")
    header = f"<!--\n---\n{dump_yaml(filter_null_values(metadata))}---\n-->"
    return f"{header}\n{body}" if body else f"{header}\n"


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


def comment_path(
    root: Path, comment: RemoteRecord, default_language: str
) -> Path:
    """Compute the container file for a comment's commentable entity.

    Raises:
        ValueError: If the comment lacks ``commentableType`` or
            ``commentableId``.
    """
    commentable_type = comment.get("commentableType")
    commentable_id = comment.get("commentableId")
    if not commentable_type or commentable_id is None:
        raise ValueError(f"Comment {comment.id} has no commentable entity")
    type_dir = str(commentable_type).lower()
    _check_segment(type_dir)
    _check_segment(str(commentable_id))
    base = language_dir(root, comment.language, default_language)
    return base / type_dir / f"{commentable_id}.json"


def to_stored_comment(comment: RemoteRecord) -> dict[str, Any]:
    """Return the wire dict without nested content/parent/contact objects."""
    return {
        k: v
        for k, v in comment.to_api().items()
        if k not in COMMENT_NESTED_FIELDS
    }


def _created_at_key(entry: dict[str, Any]) -> tuple[datetime, int]:
    raw = str(entry.get("createdAt") or "")
    try:
        moment = datetime.fromisoformat(
            _ISO_FRACTION.sub(r"\1", raw, count=1).replace("Z", "+00:00")
        )
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
    except ValueError:
        moment = datetime.min.replace(tzinfo=timezone.utc)
    entry_id = entry.get("id")
    return moment, entry_id if isinstance(entry_id, int) else 0


def render_comments(comments: list[dict[str, Any]]) -> str:
    """Render a container sorted by ``createdAt`` then ``id``."""
    ordered = sorted(comments, key=_created_at_key)
    return json.dumps(ordered, indent=2, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------


def media_path(root: Path, location: str) -> Path:
    """Map ``/api/media/<scope>/<name>`` to ``<root>/<scope>/<name>``."""
    relative = re.sub(r"^/?api/media/", "", location)
    return root.joinpath(*_safe_relative(relative))


def media_path_for_deletion(root: Path, scope_uid: str, name: str) -> Path:
    return root.joinpath(*_safe_relative(scope_uid), *_safe_relative(name))


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def is_tracked_setting(key: str) -> bool:
    return key.startswith(TRACKED_SETTING_PREFIX)


def settings_path(
    root: Path, language: str | None, default_language: str
) -> Path:
    return language_dir(root, language, default_language) / "settings.json"


def render_settings(values: dict[str, Any]) -> str:
    """Render a language's tracked settings as a key-sorted JSON map."""
    ordered = {k: values[k] for k in sorted(values)}
    return json.dumps(ordered, indent=2, ensure_ascii=False) + "\n"
