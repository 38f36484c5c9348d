"""CLI smoke tests for policyctl.

Verifies:
  - validate exits 0 for the bundled definitions, 1 for a broken file
  - Hard errors print a single ✗ line and exit 1
  - test without an Azure session skips every case and exits 0
  - install-modules failures exit 1
  - A malformed definition file exits 1 with its path and reason
"""
from __future__ import annotations

import json

import pytest

import policyctl
from harness import environment
from harness.cases import load_cases
from schemas.domain import TestStatus
from tooling.module_installer import InstallOutcome, ModuleRequirement


def test_validate_bundled_definitions(capsys):
    assert policyctl.main(["validate"]) == 0
    assert "0 failed" in capsys.readouterr().out


def test_validate_broken_file(tmp_path, capsys):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    assert policyctl.main(["validate", "--policy-path", str(broken)]) == 1
    assert "invalid JSON" in capsys.readouterr().out


def test_missing_policy_path_is_hard_error(tmp_path, capsys):
    assert policyctl.main(["validate", "--policy-path", str(tmp_path / "nope")]) == 1
    assert capsys.readouterr().err.startswith("✗ Policy path not found")


def test_test_without_context_skips(monkeypatch, tmp_path, capsys):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(environment, "get_subscription_id", lambda: None)
    assert policyctl.main(["test", "--output-format", "json"]) == 0
    out = capsys.readouterr().out
    payload = json.loads(out[out.index("{"):out.rindex("}") + 1])
    assert payload["count"] == len(load_cases())
    assert payload["summary"] == {TestStatus.SKIPPED.value: len(load_cases())}


def test_test_without_context_can_fail(monkeypatch, tmp_path, capsys):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(environment, "get_subscription_id", lambda: None)
    assert policyctl.main(["test", "--fail-if-no-context"]) == 1
    assert "✗" in capsys.readouterr().err


def test_install_modules_failure_exits_1(monkeypatch, capsys):
    def failing(requirements, max_retries, retry_delay, raise_on_failure=True):
        return [InstallOutcome(r, installed=False, attempts=max_retries, errors=["boom"]) for r in requirements]

    monkeypatch.setattr(policyctl, "install_modules", failing)
    assert policyctl.main(["install-modules", "--module", "pip:nothing-here", "--max-retries", "2"]) == 1
    captured = capsys.readouterr()
    assert "attempts=2" in captured.out
    assert "pip:nothing-here (2 attempts)" in captured.err


def test_install_modules_success(monkeypatch):
    monkeypatch.setattr(
        policyctl, "install_modules",
        lambda reqs, *a, **kw: [InstallOutcome(r, installed=True, attempts=1) for r in reqs],
    )
    assert policyctl.main(["install-modules"]) == 0


def test_unknown_subcommand_exits_2():
    with pytest.raises(SystemExit) as exc:
        policyctl.main(["frobnicate"])
    assert exc.value.code == 2


def test_parameters_must_be_object():
    with pytest.raises(ValueError, match="JSON object"):
        policyctl._parameters("[1, 2]")
    assert policyctl._parameters('{"effect": "Audit"}') == {"effect": "Audit"}


def test_scope_precedence():
    assert policyctl._scope("s", "rg", "/custom") == "/custom"
    assert policyctl._scope("s", "rg") == "/subscriptions/s/resourceGroups/rg"
    assert policyctl._scope("s", None) == "/subscriptions/s"


def test_module_requirement_spec_in_cli(monkeypatch):
    seen: list[ModuleRequirement] = []

    def record(reqs, *a, **kw):
        seen.extend(reqs)
        return [InstallOutcome(r, installed=True, attempts=1) for r in reqs]

    monkeypatch.setattr(policyctl, "install_modules", record)
    policyctl.main(["install-modules", "--module", "az-extension:resource-graph==2.1.0"])
    assert seen == [ModuleRequirement("resource-graph", "2.1.0", "az-extension")]


def test_malformed_definition_is_hard_error(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    defs = tmp_path / "defs"
    defs.mkdir()
    (defs / "bad.json").write_text(json.dumps({"name": "bad", "properties": ["oops"]}))
    assert policyctl.main(["test", "--policy-path", str(defs)]) == 1
    err = capsys.readouterr().err
    assert err.startswith("✗ ")
    assert "bad.json: 'properties' must be an object" in err
