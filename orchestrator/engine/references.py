# ============================================================================
# REFERENCE EXTRACTION & RESOLUTION
# ============================================================================
# STATUS: Core - Implicit edges of the dependency graph
# PURPOSE: Find typed references in node values, substitute applied outputs
# CREATED: 14 OCT 2026
# ============================================================================
"""
References

A node attribute such as

    network: {ref: network.wordpress, attribute: self_link}

is parsed into a Reference when the declaration is loaded. This module:
- walks attribute trees to find every Reference (graph build time)
- replaces References and Joins with the concrete values produced by
  already-applied predecessors (execution time)
"""

from typing import Any, Iterator, Mapping, Set

from core.errors import UnresolvedReferenceError
from core.models import Join, Reference


def extract_references(value: Any) -> Iterator[Reference]:
    """Yield every Reference inside a value (dicts, lists, joins)."""
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, Join):
        for part in value.join:
            yield from extract_references(part)
    elif isinstance(value, dict):
        for item in value.values():
            yield from extract_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from extract_references(item)


def referenced_nodes(value: Any) -> Set[str]:
    """Names of all nodes referenced by a value."""
    return {ref.ref for ref in extract_references(value)}


def resolve_value(
    value: Any,
    outputs: Mapping[str, Mapping[str, Any]],
    node_name: str,
) -> Any:
    """
    Replace References and Joins with concrete values.

    Args:
        value: Attribute value (may be nested)
        outputs: Map of node name -> provider outputs of applied nodes
        node_name: Node being resolved (for error reporting)

    Raises:
        UnresolvedReferenceError: target not applied or attribute not produced
    """
    if isinstance(value, Reference):
        target = outputs.get(value.ref)
        if target is None:
            raise UnresolvedReferenceError(node_name, str(value), "target not applied")
        if value.attribute not in target:
            raise UnresolvedReferenceError(
                node_name, str(value),
                f"attribute '{value.attribute}' not produced by '{value.ref}'",
            )
        return target[value.attribute]
    if isinstance(value, Join):
        parts = [resolve_value(part, outputs, node_name) for part in value.join]
        return value.separator.join("" if p is None else str(p) for p in parts)
    if isinstance(value, dict):
        return {k: resolve_value(v, outputs, node_name) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_value(item, outputs, node_name) for item in value]
    return value


def can_resolve(value: Any, outputs: Mapping[str, Mapping[str, Any]]) -> bool:
    """Check whether every reference in value is already known."""
    for ref in extract_references(value):
        target = outputs.get(ref.ref)
        if target is None or ref.attribute not in target:
            return False
    return True


__all__ = [
    "extract_references",
    "referenced_nodes",
    "resolve_value",
    "can_resolve",
]
