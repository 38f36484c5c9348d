# policy_store/validator.py: structural checks for policy definition JSON.
"""Local validation of policy definition files.

Nothing here evaluates a policy rule; Azure does that.  The validator only
guarantees that each file would be accepted by the policyDefinitions API
and that the harness can read its effect.

Every file is checked independently and the outcome is aggregated into a
``ValidationReport`` so one broken file never hides the others.

Usage
~~~~~
    from policy_store.validator import validate_directory
    report = validate_directory("policy_store/definitions")
    print_validation_report(report)
    sys.exit(0 if report.ok else 1)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from policy_store.loader import PolicyDefinitionError, list_definition_files, read_document
from schemas.domain import KNOWN_EFFECTS, ValidationResult, parameter_reference

REQUIRED_PATHS: tuple[tuple[str, ...], ...] = (
    ("name",),
    ("properties", "displayName"),
    ("properties", "policyRule", "if"),
    ("properties", "policyRule", "then"),
)

_MODES = ("all", "indexed")
_PARAMETER_TYPES = ("string", "array", "object", "boolean", "integer", "float", "datetime")
_EFFECTS_LOWER = {e.lower() for e in KNOWN_EFFECTS}


def _lookup(doc: Any, path: tuple[str, ...]) -> Any:
    node = doc
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return None
        node = node[key]
    return node


def validate_document(doc: dict[str, Any]) -> list[str]:
    """Return a list of human-readable problems (empty when valid)."""
    errors: list[str] = []

    # ── 1.  Required keys ─────────────────────────────────────────
    for path in REQUIRED_PATHS:
        val = _lookup(doc, path)
        if val is None or (isinstance(val, str) and not val.strip()):
            errors.append(f"missing required key '{'.'.join(path)}'")

    props = doc.get("properties") if isinstance(doc.get("properties"), dict) else {}

    # ── 2.  Parameters ────────────────────────────────────────────
    params = props.get("parameters") or {}
    if not isinstance(params, dict):
        errors.append("'properties.parameters' must be an object")
        params = {}
    for pname, pdef in params.items():
        ptype = pdef.get("type") if isinstance(pdef, dict) else None
        if not ptype:
            errors.append(f"parameter '{pname}' has no type")
        elif str(ptype).lower() not in _PARAMETER_TYPES:
            errors.append(f"parameter '{pname}' has unsupported type '{ptype}'")

    # ── 3.  Mode ──────────────────────────────────────────────────
    mode = props.get("mode")
    if mode is not None:
        if not isinstance(mode, str) or not (mode.lower() in _MODES or mode.startswith("Microsoft.")):
            errors.append(f"unsupported mode '{mode}'")

    # ── 4.  Effect ────────────────────────────────────────────────
    then = _lookup(doc, ("properties", "policyRule", "then"))
    if isinstance(then, dict):
        effect = then.get("effect")
        ref = parameter_reference(effect)
        if effect is None:
            errors.append("missing required key 'properties.policyRule.then.effect'")
        elif ref is not None:
            if ref not in params:
                errors.append(f"effect references undeclared parameter '{ref}'")
        elif str(effect).lower() not in _EFFECTS_LOWER:
            errors.append(f"unknown effect '{effect}'")
    elif then is not None:
        errors.append("'properties.policyRule.then' must be an object")

    return errors


def validate_definition_file(path: str | Path) -> ValidationResult:
    path = Path(path)
    try:
        doc = read_document(path)
    except PolicyDefinitionError as e:
        return ValidationResult(path=path, ok=False, errors=[e.reason])
    errors = validate_document(doc)
    return ValidationResult(path=path, ok=not errors, errors=errors)


@dataclass
class ValidationReport:
    results: list[ValidationResult] = field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return len(self.results) - self.passed

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def failures(self) -> list[ValidationResult]:
        return [r for r in self.results if not r.ok]


def validate_directory(root: str | Path | None = None) -> ValidationReport:
    return ValidationReport(results=[validate_definition_file(p) for p in list_definition_files(root)])


def print_validation_report(report: ValidationReport) -> None:
    """Pretty-print per-file results and the pass/fail summary."""
    print("\n  ── Policy Definition Validation ──────────")
    for r in report.results:
        icon = "✓" if r.ok else "✗"
        print(f"    {icon} {r.path}")
        for err in r.errors:
            print(f"        • {err}")
    print(f"\n  {report.passed}/{len(report.results)} file(s) valid, {report.failed} failed")
    print()
