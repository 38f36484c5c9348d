"""Tests for reporting — table/JSON/CSV/HTML rendering, JUnit XML and report files.

Verifies:
  - Empty datasets render well-formed, contentless reports in every format
  - Rows keep column order; summaries count by status
  - HTML output is escaped
  - JUnit counts failures and skips
  - save_report writes timestamped files with the right extension
"""
from __future__ import annotations

import csv
import io
import json
import xml.etree.ElementTree as ET

import pytest

from reporting.junit import render_junit
from reporting.render import (
    COMPLIANCE_COLUMNS,
    FORMATS,
    RESULT_COLUMNS,
    compliance_rows,
    render_rows,
    result_rows,
    summarize,
)
from reporting.report_store import save_report
from schemas.domain import ComplianceState, TestResult, TestStatus


@pytest.fixture
def states():
    return [
        ComplianceState("/sub/rg/st1", "deny-storage-http", "deny-storage-http-assignment", "NonCompliant", "t1"),
        ComplianceState("/sub/rg/st2", "deny-storage-http", "deny-storage-http-assignment", "Compliant", "t2"),
        ComplianceState("/sub/rg/st3", "audit-storage-min-tls", "a2", "NonCompliant", "t3"),
    ]


@pytest.fixture
def results():
    return [
        TestResult("c1", "deny-storage-http", TestStatus.PASSED, "NonCompliant", "Denied", "ok", duration_ms=1200),
        TestResult("c2", "audit-storage-min-tls", TestStatus.FAILED, "NonCompliant", "Compliant", "mismatch",
                   resource_id="/sub/rg/st9", duration_ms=800),
        TestResult("c3", "audit-storage-min-tls", TestStatus.SKIPPED, "Compliant", message="no Azure session"),
    ]


# ── Empty datasets ────────────────────────────────────────────────

@pytest.mark.parametrize("fmt", FORMATS)
def test_empty_dataset_renders(fmt):
    out = render_rows([], COMPLIANCE_COLUMNS, fmt, title="Empty", summary_key="compliance_state")
    assert out


def test_empty_json_is_well_formed():
    payload = json.loads(render_rows([], COMPLIANCE_COLUMNS, "json", title="Empty"))
    assert payload["count"] == 0
    assert payload["rows"] == []
    assert payload["summary"] == {}


def test_empty_csv_is_header_only():
    out = render_rows([], COMPLIANCE_COLUMNS, "csv")
    assert out.strip().split(",") == COMPLIANCE_COLUMNS


def test_empty_table_and_html():
    assert "(no rows)" in render_rows([], RESULT_COLUMNS, "table")
    html = render_rows([], RESULT_COLUMNS, "html", title="Empty")
    assert "No rows to report." in html
    assert html.count("<th>") == len(RESULT_COLUMNS)


def test_empty_junit():
    root = ET.fromstring(render_junit([]).split("?>", 1)[1])
    suite = root.find("testsuite")
    assert suite.get("tests") == "0" and suite.get("failures") == "0"


# ── Populated datasets ────────────────────────────────────────────

def test_summarize(states):
    rows = compliance_rows(states)
    assert summarize(rows, "compliance_state") == {"Compliant": 1, "NonCompliant": 2}


def test_json_rows_and_summary(results):
    payload = json.loads(render_rows(result_rows(results), RESULT_COLUMNS, "json", summary_key="status"))
    assert payload["count"] == 3
    assert payload["summary"] == {"Failed": 1, "Passed": 1, "Skipped": 1}
    assert list(payload["rows"][0]) == RESULT_COLUMNS
    assert payload["rows"][1]["status"] == "Failed"


def test_csv_columns_in_order(states):
    out = render_rows(compliance_rows(states), COMPLIANCE_COLUMNS, "csv")
    rows = list(csv.DictReader(io.StringIO(out)))
    assert len(rows) == 3
    assert rows[0]["resource_id"] == "/sub/rg/st1"
    assert rows[2]["compliance_state"] == "NonCompliant"


def test_table_aligns_columns(states):
    lines = render_rows(compliance_rows(states), COMPLIANCE_COLUMNS, "table", title="T").splitlines()
    assert lines[0] == "T"
    assert lines[1].startswith("resource_id")
    assert set(lines[2].replace(" ", "")) == {"-"}
    assert len(lines) == 6


def test_html_is_escaped_and_classed():
    rows = [{"case_name": "<script>", "policy_name": "p", "status": "Failed"}]
    html = render_rows(rows, RESULT_COLUMNS, "html", summary_key="status")
    assert "<script>" not in html
    assert "&lt;script&gt;" in html
    assert 'class="Failed"' in html


def test_unknown_format():
    with pytest.raises(ValueError, match="Unsupported output format 'xlsx'"):
        render_rows([], RESULT_COLUMNS, "xlsx")


def test_junit_counts(results):
    xml = render_junit(results)
    assert xml.startswith("<?xml")
    suite = ET.fromstring(xml.split("?>", 1)[1]).find("testsuite")
    assert suite.get("tests") == "3"
    assert suite.get("failures") == "1"
    assert suite.get("skipped") == "1"
    assert suite.get("time") == "2.000"
    failed = [c for c in suite.findall("testcase") if c.find("failure") is not None]
    assert len(failed) == 1
    assert failed[0].get("name") == "c2"
    assert "actual=Compliant" in failed[0].find("failure").text


# ── Report files ──────────────────────────────────────────────────

@pytest.mark.parametrize("fmt,ext", [("table", "txt"), ("json", "json"), ("csv", "csv"),
                                     ("html", "html"), ("junit", "xml")])
def test_save_report_extensions(tmp_path, fmt, ext):
    path = save_report(tmp_path / "reports", "policy tests!", fmt, "content")
    assert path.endswith(f".{ext}")
    assert "policy_tests-" in path
    with open(path, encoding="utf-8") as f:
        assert f.read() == "content"
