"""Terraform path — render tfvars for the bundled module and run the CLI.

The module under ``terraform/`` is a thin wrapper around
``azurerm_policy_definition`` and ``azurerm_subscription_policy_assignment``;
everything policy-specific comes in through ``terraform.tfvars.json``.
"""
from __future__ import annotations

import json
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Any, Callable, Iterable

from schemas.domain import PolicyDefinition

_log = logging.getLogger(__name__)

MODULE_DIR = Path(__file__).resolve().parent.parent / "terraform"
TFVARS_NAME = "terraform.tfvars.json"

Runner = Callable[..., subprocess.CompletedProcess]


class TerraformError(Exception):
    def __init__(self, command: list[str], returncode: int, stderr: str):
        self.command = command
        self.returncode = returncode
        tail = "\n".join(stderr.strip().splitlines()[-5:])
        super().__init__(f"{' '.join(command)} exited {returncode}: {tail}")


def build_tfvars(
    definitions: Iterable[PolicyDefinition],
    subscription_id: str,
    *,
    assign: bool = True,
    effect: str | None = None,
) -> dict[str, Any]:
    policies: dict[str, Any] = {}
    for d in definitions:
        entry: dict[str, Any] = {
            "display_name": d.display_name,
            "description": d.description,
            "mode": d.mode,
            "metadata": json.dumps(d.metadata),
            "parameters": json.dumps(d.parameters),
            "policy_rule": json.dumps(d.policy_rule),
            "assign": assign,
            "assignment_parameters": "{}",
        }
        if assign and effect and d.effect_parameter:
            entry["assignment_parameters"] = json.dumps({d.effect_parameter: {"value": effect}})
        policies[d.name] = entry
    return {"subscription_id": subscription_id, "policies": policies}


def render_tfvars(definitions: Iterable[PolicyDefinition], subscription_id: str, workdir: str | Path = MODULE_DIR,
                  **kwargs) -> Path:
    path = Path(workdir) / TFVARS_NAME
    with open(path, "w", encoding="utf-8") as f:
        json.dump(build_tfvars(definitions, subscription_id, **kwargs), f, indent=2)
    _log.info("Wrote %s", path)
    return path


class TerraformRunner:
    """Shells out to ``terraform``; one command, one pass, no retry."""

    def __init__(self, workdir: str | Path = MODULE_DIR, *, binary: str = "terraform", runner: Runner = subprocess.run):
        self.workdir = Path(workdir)
        self.binary = binary
        self._run = runner

    def available(self) -> bool:
        return shutil.which(self.binary) is not None

    def _exec(self, *args: str) -> str:
        cmd = [self.binary, *args]
        _log.info("Running %s in %s", " ".join(cmd), self.workdir)
        proc = self._run(cmd, cwd=str(self.workdir), capture_output=True, text=True)
        if proc.returncode != 0:
            raise TerraformError(cmd, proc.returncode, proc.stderr or "")
        return proc.stdout or ""

    def init(self) -> str:
        return self._exec("init", "-input=false")

    def plan(self, out: str = "tfplan") -> str:
        return self._exec("plan", "-input=false", f"-out={out}")

    def apply(self, plan_file: str | None = "tfplan") -> str:
        if plan_file:
            return self._exec("apply", "-input=false", plan_file)
        return self._exec("apply", "-input=false", "-auto-approve")

    def destroy(self) -> str:
        return self._exec("destroy", "-input=false", "-auto-approve")
