"""Policy definition store — discovers and loads policy JSON from disk.

Usage:
    from policy_store.loader import load_definitions
    defs = load_definitions()
    defs["deny-storage-http"].effect   # "Deny"

Definitions live under ``policy_store/definitions/<category>/<name>.json``
in the same shape ``az policy definition show`` exports:
``{"name": ..., "properties": {"displayName": ..., "policyRule": {...}}}``.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from schemas.domain import PolicyDefinition

_log = logging.getLogger(__name__)

DEFINITIONS_DIR = Path(__file__).parent / "definitions"


class PolicyDefinitionError(Exception):
    """Raised when a definition file cannot be read or parsed."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


def list_definition_files(root: str | Path | None = None) -> list[Path]:
    """All ``*.json`` files under *root*, sorted for stable output."""
    base = Path(root) if root else DEFINITIONS_DIR
    if base.is_file():
        return [base]
    if not base.is_dir():
        raise FileNotFoundError(f"Policy path not found: {base}")
    return sorted(p for p in base.rglob("*.json") if p.is_file())


def read_document(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            doc = json.load(f)
    except json.JSONDecodeError as e:
        raise PolicyDefinitionError(path, f"invalid JSON (line {e.lineno}, column {e.colno}): {e.msg}") from e
    except OSError as e:
        raise PolicyDefinitionError(path, f"unreadable: {e}") from e
    if not isinstance(doc, dict):
        raise PolicyDefinitionError(path, "top-level JSON value must be an object")
    return doc


def load_definition(path: str | Path) -> PolicyDefinition:
    path = Path(path)
    doc = read_document(path)
    if not doc.get("name"):
        raise PolicyDefinitionError(path, "missing required key 'name'")
    props = doc.get("properties", {})
    if not isinstance(props, dict):
        raise PolicyDefinitionError(path, "'properties' must be an object")
    for key in ("policyRule", "parameters", "metadata"):
        if not isinstance(props.get(key) or {}, dict):
            raise PolicyDefinitionError(path, f"'properties.{key}' must be an object")
    return PolicyDefinition.from_document(doc, source_path=path)


def load_definitions(root: str | Path | None = None) -> dict[str, PolicyDefinition]:
    """Load every definition under *root*, keyed by definition name."""
    definitions: dict[str, PolicyDefinition] = {}
    for path in list_definition_files(root):
        definition = load_definition(path)
        existing = definitions.get(definition.name)
        if existing is not None:
            raise PolicyDefinitionError(
                path, f"duplicate definition name '{definition.name}' (also in {existing.source_path})"
            )
        definitions[definition.name] = definition
    _log.debug("Loaded %d policy definition(s) from %s", len(definitions), root or DEFINITIONS_DIR)
    return definitions
