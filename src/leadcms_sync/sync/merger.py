"""Three-way merge of a local mirror file with a remote update.

Uses the ``merge3`` library (the diff3 algorithm used by Bazaar/Breezy)
on lines, and ``difflib`` for unified diffs in debug output.

Key design choices:

* **Fast path** -- when the local file still equals the rendered base
  snapshot (modulo line endings, trailing whitespace and timestamp
  precision) the remote text is taken as-is.
* **Header/body split** -- for header-plus-body files the header block
  and the body are merged separately, so a metadata-only edit on one side
  and a body-only edit on the other never touch the same region.
* **Server-controlled lines** -- inside a conflict, ``createdAt`` /
  ``updatedAt`` lines always take the remote value; a conflict made only of
  such lines is not a conflict.
* Conflict markers are ``<<<<<<< local``, ``=======``, ``>>>>>>> remote``.
  The caller always gets a complete document back, never an exception.
"""

from __future__ import annotations

import difflib
import re

from merge3 import Merge3

from .models import MergeResult
from .transform import split_header

LOCAL_MARKER = "<<<<<<< local"
MID_MARKER = "======="
REMOTE_MARKER = ">>>>>>> remote"

SERVER_CONTROLLED_LINE = re.compile(r"^\s*(updatedAt|createdAt)\s*:")

_TRAILING_SPACE = re.compile(r"\s+\n")
_TS_TRUNCATE = re.compile(
    r"(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{1,6})\d*Z"
)
_TS_TRAILING_ZEROS = re.compile(
    r"(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d+?)0+Z"
)
_TS_ZERO_FRACTION = re.compile(
    r"(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})\.0Z"
)


def normalize_for_comparison(content: str) -> str:
    """Normalise text so formatting noise does not count as an edit.

    1. ``\\r\\n`` -> ``\\n``.
    2. Whitespace before a newline is dropped (blank runs collapse).
    3. ISO timestamps: fraction truncated to 6 digits, trailing zeros
       stripped, an all-zero fraction removed.
    4. Trailing whitespace removed.
    """
    text = content.replace("\r\n", "\n")
    text = _TRAILING_SPACE.sub("\n", text)
    text = _TS_TRUNCATE.sub(r"\1Z", text)
    text = _TS_TRAILING_ZEROS.sub(r"\1Z", text)
    text = _TS_ZERO_FRACTION.sub(r"\1Z", text)
    return text.rstrip()


def is_locally_modified(base: str, local: str) -> bool:
    """Return ``True`` if *local* differs from the rendered *base*."""
    return normalize_for_comparison(base) != normalize_for_comparison(local)


def has_conflict_markers(text: str) -> bool:
    return LOCAL_MARKER in text and REMOTE_MARKER in text


def three_way_merge(base: str, local: str, remote: str) -> MergeResult:
    """Line-based diff3 merge of *local* and *remote* against *base*.

    Args:
        base: The common ancestor (rendered base snapshot).
        local: The current local file content.
        remote: The rendered new remote value.

    Returns:
        A ``MergeResult``; conflicting regions are wrapped in markers and
        counted.
    """
    m3 = Merge3(base.split("\n"), local.split("\n"), remote.split("\n"))

    out: list[str] = []
    conflicts = 0
    for group in m3.merge_groups():
        kind = group[0]
        if kind in ("unchanged", "same", "a", "b"):
            out.extend(group[1])
            continue

        # ("conflict", base_lines, local_lines, remote_lines)
        local_lines, remote_lines = group[2], group[3]
        resolved = [
            line for line in remote_lines if SERVER_CONTROLLED_LINE.match(line)
        ]
        local_rest = [
            line for line in local_lines if not SERVER_CONTROLLED_LINE.match(line)
        ]
        remote_rest = [
            line for line in remote_lines if not SERVER_CONTROLLED_LINE.match(line)
        ]
        out.extend(resolved)
        if not local_rest and not remote_rest:
            continue
        conflicts += 1
        out.append(LOCAL_MARKER)
        out.extend(local_rest)
        out.append(MID_MARKER)
        out.extend(remote_rest)
        out.append(REMOTE_MARKER)

    return MergeResult(
        merged_text="\n".join(out),
        success=conflicts == 0,
        conflict_count=conflicts,
    )


def reconcile(base: str, local: str, remote: str) -> MergeResult:
    """Combine a local file with a remote update given their common base.

    Takes the fast path when the local file is unmodified; otherwise
    merges, splitting header from body when all three versions have one.
    """
    if not is_locally_modified(base, local):
        return MergeResult(merged_text=remote, success=True, conflict_count=0)

    splits = [split_header(text) for text in (base, local, remote)]
    if all(s is not None for s in splits):
        (base_h, base_b), (local_h, local_b), (remote_h, remote_b) = splits  # type: ignore[misc]
        header = three_way_merge(base_h, local_h, remote_h)
        body = three_way_merge(base_b, local_b, remote_b)
        count = header.conflict_count + body.conflict_count
        return MergeResult(
            merged_text=header.merged_text + body.merged_text,
            success=count == 0,
            conflict_count=count,
        )

    return three_way_merge(base, local, remote)


def generate_diff(
    old_content: str,
    new_content: str,
    label_old: str = "old",
    label_new: str = "new",
) -> str:
    """Generate a unified diff between two strings.

    Returns:
        A unified diff string.  Empty string if the contents are identical.
    """
    diff_lines = difflib.unified_diff(
        old_content.splitlines(True),
        new_content.splitlines(True),
        fromfile=label_old,
        tofile=label_new,
    )
    return "".join(diff_lines)
