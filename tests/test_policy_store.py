"""Tests for policy_store — loading and structural validation of definitions.

Verifies:
  - Every bundled definition parses and passes validation
  - Effect resolution through "[parameters('effect')]" defaults
  - Per-file errors (bad JSON, missing keys, unknown effect, bad mode)
  - One broken file never hides the others in a directory report
  - Duplicate definition names are rejected
  - Non-object sections fail loading with a per-file reason
"""
from __future__ import annotations

import json

import pytest

from policy_store.loader import (
    DEFINITIONS_DIR,
    PolicyDefinitionError,
    list_definition_files,
    load_definition,
    load_definitions,
)
from policy_store.validator import (
    print_validation_report,
    validate_definition_file,
    validate_directory,
    validate_document,
)
from schemas.domain import PolicyDefinition


def _doc(**props):
    base = {
        "displayName": "Test policy",
        "mode": "Indexed",
        "parameters": {},
        "policyRule": {
            "if": {"field": "type", "equals": "Microsoft.Storage/storageAccounts"},
            "then": {"effect": "Audit"},
        },
    }
    base.update(props)
    return {"name": "test-policy", "properties": base}


def _write(path, doc):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(doc) if not isinstance(doc, str) else doc, encoding="utf-8")
    return path


# ── Bundled definitions ───────────────────────────────────────────

def test_bundled_definitions_are_valid():
    report = validate_directory()
    assert report.results, "no bundled definitions found"
    assert report.ok, [(str(r.path), r.errors) for r in report.failures()]


def test_bundled_definitions_load_with_effects():
    definitions = load_definitions()
    assert {"deny-storage-http", "audit-storage-min-tls", "audit-keyvault-purge-protection"} <= set(definitions)

    deny = definitions["deny-storage-http"]
    assert deny.effect == "Deny"
    assert deny.effect_parameter == "effect"
    assert deny.category == "Storage"
    assert deny.source_path.parent.parent == DEFINITIONS_DIR

    fixed = definitions["audit-keyvault-purge-protection"]
    assert fixed.effect == "Audit"
    assert fixed.effect_parameter is None


def test_to_arm_body_is_verbatim():
    d = load_definitions()["audit-storage-min-tls"]
    props = d.to_arm_body()["properties"]
    assert props["policyRule"] == d.policy_rule
    assert props["parameters"]["minimumTlsVersion"]["defaultValue"] == "TLS1_2"
    assert props["mode"] == d.mode


# ── Discovery ─────────────────────────────────────────────────────

def test_list_definition_files_recursive_and_sorted(tmp_path):
    _write(tmp_path / "b" / "two.json", _doc())
    _write(tmp_path / "a" / "one.json", _doc())
    (tmp_path / "notes.txt").write_text("ignored")
    files = list_definition_files(tmp_path)
    assert [f.name for f in files] == ["one.json", "two.json"]


def test_list_definition_files_single_file(tmp_path):
    f = _write(tmp_path / "p.json", _doc())
    assert list_definition_files(f) == [f]


def test_list_definition_files_missing_path(tmp_path):
    with pytest.raises(FileNotFoundError):
        list_definition_files(tmp_path / "nope")


# ── Per-document validation ───────────────────────────────────────

def test_valid_document_has_no_errors():
    assert validate_document(_doc()) == []


def test_missing_required_keys():
    doc = {"name": "x", "properties": {"policyRule": {"if": {}}}}
    errors = validate_document(doc)
    assert "missing required key 'properties.displayName'" in errors
    assert "missing required key 'properties.policyRule.then'" in errors


def test_effect_case_insensitive():
    doc = _doc(policyRule={"if": {"field": "type", "equals": "x"}, "then": {"effect": "deny"}})
    assert validate_document(doc) == []


def test_unknown_effect():
    doc = _doc(policyRule={"if": {"field": "type", "equals": "x"}, "then": {"effect": "Block"}})
    assert validate_document(doc) == ["unknown effect 'Block'"]


def test_effect_reference_must_be_declared():
    doc = _doc(policyRule={"if": {"field": "type", "equals": "x"}, "then": {"effect": "[parameters('effect')]"}})
    assert validate_document(doc) == ["effect references undeclared parameter 'effect'"]


def test_parameter_without_type():
    doc = _doc(parameters={"effect": {"defaultValue": "Audit"}})
    assert "parameter 'effect' has no type" in validate_document(doc)


@pytest.mark.parametrize("mode,ok", [
    ("All", True),
    ("indexed", True),
    ("Microsoft.KeyVault.Data", True),
    ("Everything", False),
])
def test_mode(mode, ok):
    assert (validate_document(_doc(mode=mode)) == []) is ok


def test_invalid_json_reports_path_and_reason(tmp_path):
    f = _write(tmp_path / "broken.json", "{not json")
    result = validate_definition_file(f)
    assert not result.ok
    assert result.path == f
    assert result.errors[0].startswith("invalid JSON")


def test_directory_report_aggregates(tmp_path, capsys):
    _write(tmp_path / "good.json", _doc())
    _write(tmp_path / "bad.json", _doc(mode="Everything"))
    _write(tmp_path / "broken.json", "[")
    report = validate_directory(tmp_path)
    assert (report.passed, report.failed, report.ok) == (1, 2, False)
    assert {r.path.name for r in report.failures()} == {"bad.json", "broken.json"}

    print_validation_report(report)
    out = capsys.readouterr().out
    assert "1/3 file(s) valid, 2 failed" in out


# ── Loading ───────────────────────────────────────────────────────

def test_load_definition_missing_name(tmp_path):
    f = _write(tmp_path / "p.json", {"properties": {}})
    with pytest.raises(PolicyDefinitionError, match="name"):
        load_definition(f)


def test_duplicate_names_rejected(tmp_path):
    _write(tmp_path / "a.json", _doc())
    _write(tmp_path / "b.json", _doc())
    with pytest.raises(PolicyDefinitionError, match="duplicate definition name 'test-policy'"):
        load_definitions(tmp_path)


def test_properties_must_be_an_object(tmp_path):
    f = _write(tmp_path / "bad.json", {"name": "bad", "properties": ["oops"]})
    with pytest.raises(PolicyDefinitionError, match="'properties' must be an object") as exc:
        load_definitions(tmp_path)
    assert exc.value.path == f


@pytest.mark.parametrize("key", ["policyRule", "parameters", "metadata"])
def test_nested_sections_must_be_objects(tmp_path, key):
    f = _write(tmp_path / "bad.json", _doc(**{key: ["oops"]}))
    with pytest.raises(PolicyDefinitionError, match=f"'properties.{key}' must be an object"):
        load_definition(f)


def test_effect_with_malformed_parameter_is_unresolved():
    d = PolicyDefinition(
        name="p", display_name="P",
        policy_rule={"if": {}, "then": {"effect": "[parameters('effect')]"}},
        parameters={"effect": "Audit"},
    )
    assert d.effect is None
    assert d.effect_parameter == "effect"
    assert PolicyDefinition(name="p", display_name="P", policy_rule={"then": ["Deny"]}).effect is None
