"""JUnit XML for policy test results, so CI can show them natively."""
from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Iterable

from schemas.domain import TestResult, TestStatus


def render_junit(results: Iterable[TestResult], suite_name: str = "azure-policy-tests") -> str:
    results = list(results)
    failures = sum(1 for r in results if r.status == TestStatus.FAILED)
    skipped = sum(1 for r in results if r.status == TestStatus.SKIPPED)
    total_s = sum(r.duration_ms for r in results) / 1000.0

    suite = ET.Element("testsuite", {
        "name": suite_name,
        "tests": str(len(results)),
        "failures": str(failures),
        "errors": "0",
        "skipped": str(skipped),
        "time": f"{total_s:.3f}",
    })
    for r in results:
        case = ET.SubElement(suite, "testcase", {
            "classname": r.policy_name,
            "name": r.case_name,
            "time": f"{r.duration_ms / 1000.0:.3f}",
        })
        if r.status == TestStatus.FAILED:
            failure = ET.SubElement(case, "failure", {"message": r.message})
            failure.text = f"expected={r.expected_state} actual={r.actual_state or '(none)'} resource={r.resource_id}"
        elif r.status == TestStatus.SKIPPED:
            ET.SubElement(case, "skipped", {"message": r.message})

    root = ET.Element("testsuites")
    root.append(suite)
    ET.indent(root)
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode") + "\n"
