"""Report rendering — compliance states and test results as table/JSON/CSV/HTML.

Rows are plain dicts; ``columns`` fixes their order.  Every format handles
an empty row list and still produces a well-formed document.
"""
from __future__ import annotations

import csv
import io
import json
import os
from datetime import datetime, timezone
from typing import Any, Iterable

from jinja2 import Environment, FileSystemLoader, select_autoescape

from schemas.domain import ComplianceState, TestResult

FORMATS = ("table", "json", "csv", "html")

COMPLIANCE_COLUMNS = ["resource_id", "policy_definition_name", "policy_assignment_name", "compliance_state", "timestamp"]
RESULT_COLUMNS = ["case_name", "policy_name", "status", "expected_state", "actual_state", "duration_ms", "message"]


# ── Row projections ───────────────────────────────────────────────

def compliance_rows(states: Iterable[ComplianceState]) -> list[dict[str, Any]]:
    return [
        {
            "resource_id": s.resource_id,
            "policy_definition_name": s.policy_definition_name,
            "policy_assignment_name": s.policy_assignment_name,
            "compliance_state": s.compliance_state,
            "timestamp": s.timestamp,
        }
        for s in states
    ]


def result_rows(results: Iterable[TestResult]) -> list[dict[str, Any]]:
    return [
        {
            "case_name": r.case_name,
            "policy_name": r.policy_name,
            "status": r.status.value,
            "expected_state": r.expected_state,
            "actual_state": r.actual_state,
            "duration_ms": r.duration_ms,
            "message": r.message,
        }
        for r in results
    ]


def summarize(rows: list[dict[str, Any]], key: str) -> dict[str, int]:
    """Count rows by the value of *key* (e.g. compliance_state or status)."""
    counts: dict[str, int] = {}
    for row in rows:
        val = str(row.get(key, ""))
        counts[val] = counts.get(val, 0) + 1
    return dict(sorted(counts.items()))


# ── Formats ───────────────────────────────────────────────────────

def _cell(value: Any) -> str:
    return "" if value is None else str(value)


def render_table(rows: list[dict[str, Any]], columns: list[str], title: str = "") -> str:
    widths = {c: len(c) for c in columns}
    for row in rows:
        for c in columns:
            widths[c] = max(widths[c], len(_cell(row.get(c))))

    lines = []
    if title:
        lines.append(title)
    lines.append("  ".join(c.ljust(widths[c]) for c in columns).rstrip())
    lines.append("  ".join("-" * widths[c] for c in columns))
    if not rows:
        lines.append("(no rows)")
    for row in rows:
        lines.append("  ".join(_cell(row.get(c)).ljust(widths[c]) for c in columns).rstrip())
    return "\n".join(lines) + "\n"


def render_json(rows: list[dict[str, Any]], columns: list[str], title: str = "", summary_key: str | None = None) -> str:
    payload = {
        "title": title,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "count": len(rows),
        "summary": summarize(rows, summary_key) if summary_key else {},
        "rows": [{c: row.get(c) for c in columns} for row in rows],
    }
    return json.dumps(payload, indent=2, default=str) + "\n"


def render_csv(rows: list[dict[str, Any]], columns: list[str]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=columns, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({c: _cell(row.get(c)) for c in columns})
    return buf.getvalue()


def render_html(rows: list[dict[str, Any]], columns: list[str], title: str = "", summary_key: str | None = None,
                template_name: str = "report_template.html") -> str:
    env = Environment(
        loader=FileSystemLoader(os.path.dirname(__file__)),
        autoescape=select_autoescape(["html", "xml"]),
    )
    template = env.get_template(template_name)
    return template.render(
        title=title or "Azure Policy Report",
        generated_at=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
        columns=columns,
        rows=[[_cell(row.get(c)) for c in columns] for row in rows],
        summary=summarize(rows, summary_key) if summary_key else {},
    )


def render_rows(
    rows: list[dict[str, Any]],
    columns: list[str],
    fmt: str = "table",
    *,
    title: str = "",
    summary_key: str | None = None,
) -> str:
    fmt = fmt.lower()
    if fmt == "table":
        return render_table(rows, columns, title)
    if fmt == "json":
        return render_json(rows, columns, title, summary_key)
    if fmt == "csv":
        return render_csv(rows, columns)
    if fmt == "html":
        return render_html(rows, columns, title, summary_key)
    raise ValueError(f"Unsupported output format '{fmt}'. Allowed: {', '.join(FORMATS)}")
