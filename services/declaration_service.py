# ============================================================================
# DECLARATION SERVICE
# ============================================================================
# STATUS: Core - Stack declaration loading and variable binding
# PURPOSE: Load YAML declarations, bind variables from files/env/flags
# CREATED: 16 OCT 2026
# ============================================================================
"""
Declaration Service

Loads stack declarations from YAML. A stack is either a single file or a
directory whose *.yaml / *.yml files are merged (variables and nodes are
concatenated; a variable or node declared twice is an error).

Variable values are bound with increasing precedence:
    declared defaults < variable files < STACKGRAPH_VAR_<name> env < --var flags

Stack files are stored in the stacks/ directory.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import yaml
from pydantic import ValidationError

from core.errors import DeclarationError, DuplicateNodeError, MissingVariableError
from core.models import StackDeclaration

logger = logging.getLogger(__name__)

VAR_ENV_PREFIX = "STACKGRAPH_VAR_"


class DeclarationService:
    """Service for loading stack declarations."""

    def __init__(self, stacks_dir: Optional[str] = None):
        """
        Initialize declaration service.

        Args:
            stacks_dir: Directory containing named stacks.
                        Defaults to ./stacks/
        """
        if stacks_dir:
            self.stacks_dir = Path(stacks_dir)
        else:
            self.stacks_dir = Path(__file__).parent.parent / "stacks"

    def resolve_path(self, source: str) -> Path:
        """A filesystem path, or the name of a stack under stacks_dir."""
        path = Path(source)
        if path.exists():
            return path
        named = self.stacks_dir / source
        if named.exists():
            return named
        raise DeclarationError(f"No stack file or directory named '{source}'")

    def list_stacks(self) -> List[str]:
        if not self.stacks_dir.exists():
            return []
        return sorted(
            p.stem if p.is_file() else p.name
            for p in self.stacks_dir.iterdir()
            if p.is_dir() or p.suffix in (".yaml", ".yml")
        )

    def load(self, source: str) -> StackDeclaration:
        """
        Load a stack declaration.

        Args:
            source: YAML file, directory of YAML files, or stack name

        Raises:
            DeclarationError: malformed YAML or model
            DuplicateNodeError: node declared in two files
        """
        path = self.resolve_path(source)
        files = self._yaml_files(path)
        if not files:
            raise DeclarationError("no YAML files found", source=str(path))

        merged: Dict[str, Any] = {"variables": {}, "nodes": []}
        seen_nodes: Dict[str, Path] = {}

        for yaml_file in files:
            data = self._load_yaml(yaml_file)

            stack = data.get("stack")
            if stack:
                if merged.get("stack") and merged["stack"] != stack:
                    raise DeclarationError(
                        f"stack name '{stack}' conflicts with '{merged['stack']}'",
                        source=str(yaml_file),
                    )
                merged["stack"] = stack
            if data.get("description") and not merged.get("description"):
                merged["description"] = data["description"]

            for name, definition in (data.get("variables") or {}).items():
                if name in merged["variables"]:
                    raise DeclarationError(f"variable '{name}' declared twice", source=str(yaml_file))
                merged["variables"][name] = definition

            for node in data.get("nodes") or []:
                if isinstance(node, dict) and "kind" in node and "label" in node:
                    key = f"{node['kind']}.{node['label']}"
                    if key in seen_nodes:
                        raise DuplicateNodeError(key)
                    seen_nodes[key] = yaml_file
                merged["nodes"].append(node)

        merged.setdefault("stack", path.stem if path.is_file() else path.name)

        try:
            declaration = StackDeclaration.model_validate(merged)
        except ValidationError as e:
            raise DeclarationError(str(e), source=str(path)) from e

        logger.info(
            f"Loaded stack '{declaration.stack}' from {path}: "
            f"{len(declaration.nodes)} nodes, {len(declaration.variables)} variables"
        )
        return declaration

    def _yaml_files(self, path: Path) -> List[Path]:
        if path.is_file():
            return [path]
        return sorted(
            p for p in path.iterdir()
            if p.is_file() and p.suffix in (".yaml", ".yml") and not p.name.endswith(".vars.yaml")
        )

    def _load_yaml(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise DeclarationError(f"invalid YAML: {e}", source=str(path)) from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise DeclarationError("top level must be a mapping", source=str(path))
        return data


# ============================================================================
# VARIABLE BINDING
# ============================================================================

def load_var_file(path: str) -> Dict[str, Any]:
    """Load a YAML mapping of variable values."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise DeclarationError(f"cannot read variables file: {e}", source=path) from e
    except yaml.YAMLError as e:
        raise DeclarationError(f"invalid YAML: {e}", source=path) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise DeclarationError("variables file must be a mapping", source=path)
    return data


def parse_var_assignments(assignments: Iterable[str]) -> Dict[str, str]:
    """Parse name=value pairs (values kept as opaque strings)."""
    values: Dict[str, str] = {}
    for item in assignments:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise DeclarationError(f"expected name=value, got '{item}'")
        values[name.strip()] = value
    return values


def env_variables(declaration: StackDeclaration, environ: Mapping[str, str]) -> Dict[str, str]:
    """Values for declared variables from STACKGRAPH_VAR_<name> (exact or upper case)."""
    values: Dict[str, str] = {}
    for name in declaration.variables:
        for key in (f"{VAR_ENV_PREFIX}{name}", f"{VAR_ENV_PREFIX}{name.upper()}"):
            if key in environ:
                values[name] = environ[key]
                break
    return values


def bind_variables(
    declaration: StackDeclaration,
    var_files: Iterable[str] = (),
    cli_values: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """
    Bind every declared variable to a value.

    Raises:
        MissingVariableError: listing every required variable left unbound
    """
    environ = os.environ if environ is None else environ

    values: Dict[str, Any] = {
        name: var.default
        for name, var in declaration.variables.items()
        if not var.needs_value
    }
    provided: Dict[str, Any] = {}
    for var_file in var_files:
        provided.update(load_var_file(var_file))
    provided.update(env_variables(declaration, environ))
    provided.update(cli_values or {})

    unknown = sorted(set(provided) - set(declaration.variables))
    if unknown:
        logger.warning(f"Ignoring values for undeclared variables: {', '.join(unknown)}")

    values.update({k: v for k, v in provided.items() if k in declaration.variables})

    missing = [
        name for name, var in declaration.variables.items()
        if var.needs_value and values.get(name) is None
    ]
    if missing:
        raise MissingVariableError(missing)

    return values


__all__ = [
    "VAR_ENV_PREFIX",
    "DeclarationService",
    "load_var_file",
    "parse_var_assignments",
    "env_variables",
    "bind_variables",
]
