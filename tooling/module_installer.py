"""Install the CLI extensions and Python packages a CI runner needs.

Each requirement gets at most ``max_retries`` attempts with a fixed
``retry_delay_seconds`` pause between them.  There is no backoff and no
jitter, and no pause after the final attempt.
"""
from __future__ import annotations

import logging
import subprocess
import sys
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Literal

_log = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]

# Extensions and packages the harness and its CI jobs use.
DEFAULT_REQUIREMENTS_SPEC = [
    "az-extension:resource-graph",
    "pip:azure-identity",
    "pip:azure-mgmt-resourcegraph",
]


@dataclass(frozen=True)
class ModuleRequirement:
    name: str
    version: str | None = None
    kind: Literal["az-extension", "pip"] = "pip"

    @classmethod
    def parse(cls, spec: str) -> "ModuleRequirement":
        """``[kind:]name[==version]``, e.g. ``az-extension:resource-graph`` or ``pip:requests==2.32.3``."""
        kind = "pip"
        if ":" in spec:
            kind, spec = spec.split(":", 1)
            if kind not in ("az-extension", "pip"):
                raise ValueError(f"Unknown module kind '{kind}' (expected az-extension or pip)")
        name, _, version = spec.partition("==")
        if not name.strip():
            raise ValueError(f"Empty module name in '{spec}'")
        return cls(name=name.strip(), version=version.strip() or None, kind=kind)  # type: ignore[arg-type]

    def command(self) -> list[str]:
        if self.kind == "az-extension":
            cmd = ["az", "extension", "add", "--name", self.name, "--upgrade", "--yes"]
            if self.version:
                cmd += ["--version", self.version]
            return cmd
        target = f"{self.name}=={self.version}" if self.version else self.name
        return [sys.executable, "-m", "pip", "install", "--disable-pip-version-check", target]

    def __str__(self) -> str:
        return f"{self.kind}:{self.name}" + (f"=={self.version}" if self.version else "")


@dataclass
class InstallOutcome:
    requirement: ModuleRequirement
    installed: bool
    attempts: int
    errors: list[str] = field(default_factory=list)


class ModuleInstallError(Exception):
    def __init__(self, failures: list[InstallOutcome]):
        self.failures = failures
        names = ", ".join(f"{o.requirement} ({o.attempts} attempts)" for o in failures)
        super().__init__(f"Failed to install: {names}")


def _install_one(
    req: ModuleRequirement,
    max_retries: int,
    retry_delay_seconds: float,
    runner: Runner,
    sleep: Callable[[float], None],
) -> InstallOutcome:
    outcome = InstallOutcome(requirement=req, installed=False, attempts=0)
    for attempt in range(1, max_retries + 1):
        outcome.attempts = attempt
        try:
            proc = runner(req.command(), capture_output=True, text=True)
        except OSError as e:
            err = str(e)
        else:
            if proc.returncode == 0:
                outcome.installed = True
                _log.info("Installed %s (attempt %d/%d)", req, attempt, max_retries)
                return outcome
            err = (proc.stderr or proc.stdout or f"exit {proc.returncode}").strip()[:300]

        outcome.errors.append(err)
        _log.warning("Install of %s failed (attempt %d/%d): %s", req, attempt, max_retries, err)
        if attempt < max_retries:
            sleep(retry_delay_seconds)
    return outcome


def install_modules(
    requirements: Iterable[ModuleRequirement],
    max_retries: int = 3,
    retry_delay_seconds: float = 5,
    *,
    runner: Runner = subprocess.run,
    sleep: Callable[[float], None] = time.sleep,
    raise_on_failure: bool = True,
) -> list[InstallOutcome]:
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")
    if retry_delay_seconds < 0:
        raise ValueError("retry_delay_seconds must not be negative")

    outcomes = [_install_one(r, max_retries, retry_delay_seconds, runner, sleep) for r in requirements]
    failures = [o for o in outcomes if not o.installed]
    if failures and raise_on_failure:
        raise ModuleInstallError(failures)
    return outcomes


def print_install_summary(outcomes: list[InstallOutcome]) -> None:
    for o in outcomes:
        icon = "✓" if o.installed else "✗"
        print(f"    {icon} {str(o.requirement):<40s} attempts={o.attempts}")
        if not o.installed and o.errors:
            print(f"        last error: {o.errors[-1]}")
