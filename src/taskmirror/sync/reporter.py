"""Pass report formatting functions.

- ``format_pass_report`` -- human-readable post-pass summary.
- ``report_to_json`` -- structured dict for HTTP and ``--json`` output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import PassReport


def format_pass_report(report: PassReport) -> str:
    """Format a complete pass report as human-readable text.

    Sections are only included when they contain at least one result.

    Args:
        report: The completed pass report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = "Sync pass report"
    if report.interrupted:
        header += " (INTERRUPTED)"
    lines.append(header)
    lines.append(f"Started: {report.started_at.isoformat()}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at.isoformat()}")
    lines.append("")

    counts = report.counts()
    lines.append(
        f"Mirrored {counts['total']} items: "
        f"{counts['created']} created, {counts['updated']} updated, "
        f"{counts['failed']} failed"
    )
    lines.append("")

    if report.created:
        lines.append("Created:")
        for r in report.created:
            lines.append(f"  {r.external_item_id} -> task {r.task_id}")
        lines.append("")

    if report.failed:
        lines.append("Failed:")
        for r in report.failed:
            kind = f" [{r.error_kind}]" if r.error_kind else ""
            lines.append(f"  {r.external_item_id}{kind}: {r.error}")
        lines.append("")

    if not report.index_saved:
        lines.append(f"WARNING: task index not saved: {report.index_error}")
        lines.append("")

    return "\n".join(lines).rstrip("\n")


def report_to_json(report: PassReport) -> dict[str, Any]:
    """Convert a pass report into a JSON-serialisable dict."""
    data = report.model_dump(mode="json", by_alias=True)
    data["counts"] = report.counts()
    return data
