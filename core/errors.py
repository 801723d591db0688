# ============================================================================
# ERROR TAXONOMY
# ============================================================================
# STATUS: Foundation - Exceptions raised by graph build, planning, execution
# PURPOSE: Typed errors with the node names needed for reporting
# CREATED: 12 OCT 2026
# ============================================================================
"""
Stack graph errors.

Graph-construction errors (cycle, unresolved reference, missing variable,
duplicate node) abort planning before any side effect occurs.
Execution errors (node creation, ordering violation) are captured per node
by the reconciler and only halt the failed node's subtree.
"""

from typing import List, Optional, Sequence


class StackGraphError(Exception):
    """Base exception for all stack graph errors."""
    pass


# ============================================================================
# DECLARATION / GRAPH CONSTRUCTION
# ============================================================================

class DeclarationError(StackGraphError):
    """Raised when a declaration file is malformed."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)


class DuplicateNodeError(StackGraphError):
    """Raised when two declarations share a node name."""

    def __init__(self, node_name: str):
        self.node_name = node_name
        super().__init__(f"Node declared more than once: {node_name}")


class MissingVariableError(StackGraphError):
    """Raised when a required variable is unbound or a template uses an unknown one."""

    def __init__(self, names: Sequence[str], node_name: Optional[str] = None):
        self.names = list(names)
        self.node_name = node_name
        where = f" (in node '{node_name}')" if node_name else ""
        super().__init__(f"Missing variable(s){where}: {', '.join(self.names)}")


class UnresolvedReferenceError(StackGraphError):
    """Raised when a reference or explicit dependency targets an unknown node."""

    def __init__(self, node_name: str, target: str, reason: str = "not declared"):
        self.node_name = node_name
        self.target = target
        self.reason = reason
        super().__init__(
            f"Node '{node_name}' references '{target}': {reason}"
        )


class CycleError(StackGraphError):
    """Raised when the declared dependencies contain a cycle."""

    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


# ============================================================================
# EXECUTION
# ============================================================================

class NodeCreationError(StackGraphError):
    """Raised when a provider call for a single node fails."""

    def __init__(self, node_name: str, provider_error: str):
        self.node_name = node_name
        self.provider_error = provider_error
        super().__init__(f"Node '{node_name}' failed: {provider_error}")


class OrderingViolationError(StackGraphError):
    """Raised when a node starts while some of its predecessors are not satisfied."""

    def __init__(self, node_name: str, unsatisfied: Sequence[str]):
        self.node_name = node_name
        self.unsatisfied = sorted(unsatisfied)
        super().__init__(
            f"Node '{node_name}' started before predecessors completed: "
            f"{', '.join(self.unsatisfied)}"
        )


class StateError(StackGraphError):
    """Raised when the state file cannot be read or written."""
    pass


__all__ = [
    "StackGraphError",
    "DeclarationError",
    "DuplicateNodeError",
    "MissingVariableError",
    "UnresolvedReferenceError",
    "CycleError",
    "NodeCreationError",
    "OrderingViolationError",
    "StateError",
]
