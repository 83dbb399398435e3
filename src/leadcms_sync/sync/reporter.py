"""Sync report formatting functions.

Provides human-readable and machine-readable output for pull runs:

- ``format_sync_report`` -- full per-kind summary with file listings.
- ``report_to_json`` -- structured dict for ``--json`` output.
- ``format_status_report`` / ``status_to_json`` -- the read-only status
  check, grouped by file status.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from .models import FileStatus

if TYPE_CHECKING:
    from .models import StatusEntry, StatusReport, SyncReport

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    Sections are only included when they contain at least one result.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines = [report.summary(), ""]

    sections = (
        ("Created:", report.created),
        ("Updated:", report.updated),
        ("Merged:", report.merged),
        ("Deleted:", report.deleted),
    )
    for title, results in sections:
        if not results:
            continue
        lines.append(title)
        for r in results:
            lines.append(f"  {r.path or r.record_id}")
        lines.append("")

    if report.conflicts:
        lines.append("Conflicts (resolve the markers by hand):")
        for r in report.conflicts:
            lines.append(f"  {r.path}: {r.conflict_count} region(s)")
        lines.append("")

    if report.errors:
        lines.append("Skipped:")
        for r in report.errors:
            lines.append(f"  {r.record_id}: {r.error}")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with kind, cursor info, counts, and per-result details.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "id": r.record_id,
            "path": r.path,
            "action": r.action.value,
            "success": r.success,
        }
        if r.conflict_count:
            entry["conflicts"] = r.conflict_count
        if r.error:
            entry["error"] = r.error
        results_list.append(entry)

    return {
        "kind": report.kind.value,
        "force_overwrite": report.force_overwrite,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "pages": report.pages,
        "cursor_committed": report.cursor_committed,
        "error": report.error,
        "counts": {
            "total": len(report.results),
            "created": len(report.created),
            "updated": len(report.updated),
            "merged": len(report.merged),
            "conflicts": len(report.conflicts),
            "deleted": len(report.deleted),
            "skipped": report.skipped_count,
        },
        "results": results_list,
    }


# ------------------------------------------------------------------
# Status check
# ------------------------------------------------------------------

_STATUS_TITLES = (
    (FileStatus.MODIFIED, "Modified (local file differs from remote):"),
    (FileStatus.MOVED, "Moved (remote slug, type or language changed):"),
    (FileStatus.REMOTE_ONLY, "Remote only (a pull would create):"),
    (FileStatus.LOCAL_ONLY, "Local only (not on the server):"),
)


def _entry_label(entry: StatusEntry) -> str:
    label = entry.path
    if entry.target:
        label += f" -> {entry.target}"
    if entry.record_id is not None:
        label += f" (id {entry.record_id})"
    return label


def format_status_report(report: StatusReport, show_diff: bool = False) -> str:
    """Format a status check grouped by file status.

    In-sync files are only counted.  With *show_diff*, each entry's diff
    follows its line.
    """
    lines = [f"Status for '{report.kind.value}'", ""]

    groups: dict[FileStatus, list[StatusEntry]] = defaultdict(list)
    for entry in report.entries:
        groups[entry.status].append(entry)

    for status, title in _STATUS_TITLES:
        if status not in groups:
            continue
        lines.append(title)
        for entry in groups[status]:
            lines.append(f"  {_entry_label(entry)}")
            if show_diff and entry.diff:
                lines.extend(
                    f"    {line}" for line in entry.diff.rstrip("\n").splitlines()
                )
        lines.append("")

    in_sync = len(groups.get(FileStatus.IN_SYNC, []))
    if in_sync:
        lines.append(f"In sync: {in_sync} file(s)")
    if not report.changed:
        lines.append("Mirror matches the server.")

    return "\n".join(lines).rstrip()


def status_to_json(report: StatusReport) -> dict:
    """Convert a status check to a structured dict for JSON serialisation."""
    entries = []
    for e in report.entries:
        entry: dict = {"id": e.record_id, "path": e.path, "status": e.status.value}
        if e.target:
            entry["target"] = e.target
        if e.diff:
            entry["diff"] = e.diff
        entries.append(entry)

    counts = {status.value: 0 for status in FileStatus}
    for e in report.entries:
        counts[e.status.value] += 1

    return {
        "kind": report.kind.value,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "pages": report.pages,
        "counts": counts,
        "entries": entries,
    }
