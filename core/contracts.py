# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# STATUS: Foundation - Core enums shared by models, engine and providers
# PURPOSE: Define node kinds, variants, outcomes and operations
# CREATED: 12 OCT 2026
# EXPORTS: NodeKind, NodeVariant, NodeOutcome, ChangeAction, Operation
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for the stack graph.

These enums cross every boundary:
- YAML declarations (kind / variant strings)
- JSON state file (recorded kind)
- Provider registry keys (kind, operation)
- CLI output (outcomes)
"""

from enum import Enum


# ============================================================================
# NODE CLASSIFICATION
# ============================================================================

class NodeKind(str, Enum):
    """Kinds of nodes that can be declared in a stack."""
    # Network
    NETWORK = "network"
    SUBNETWORK = "subnetwork"
    FIREWALL = "firewall"

    # Managed database
    SQL_INSTANCE = "sql_instance"
    SQL_DATABASE = "sql_database"
    SQL_USER = "sql_user"

    # Container orchestration
    CLUSTER = "cluster"
    NODE_POOL = "node_pool"
    DEPLOYMENT = "deployment"
    SERVICE = "service"

    # Data lookups
    CLIENT_CONFIG = "client_config"

    # Non-resource variants
    ACTION = "action"
    OUTPUT = "output"


class NodeVariant(str, Enum):
    """
    Polymorphic node variants.

    All variants share the same dependency-graph contract.
    """
    RESOURCE = "resource"  # Backed by a provider object (create/update/delete)
    DATA = "data"          # Read-only lookup (read)
    ACTION = "action"      # Side-effect command, no queryable attributes
    OUTPUT = "output"      # Named value exposed after apply

    def has_attributes(self) -> bool:
        """Whether other nodes may reference attributes of this variant."""
        return self in (NodeVariant.RESOURCE, NodeVariant.DATA)


class Operation(str, Enum):
    """Provider operations."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    READ = "read"


class RunOperation(str, Enum):
    """Top-level reconciliation runs."""
    APPLY = "apply"
    DESTROY = "destroy"


# ============================================================================
# OUTCOMES
# ============================================================================

class NodeOutcome(str, Enum):
    """
    Per-node result of a run.

    apply:   CREATED | UPDATED | UNCHANGED | SKIPPED | FAILED
    destroy: DESTROYED | UNCHANGED (absent) | SKIPPED | FAILED
    """
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DESTROYED = "destroyed"
    SKIPPED = "skipped"      # A dependency failed or was skipped
    FAILED = "failed"

    def is_successful(self) -> bool:
        """Check if successors may proceed after this outcome."""
        return self in (
            NodeOutcome.CREATED,
            NodeOutcome.UPDATED,
            NodeOutcome.UNCHANGED,
            NodeOutcome.DESTROYED,
        )


class ChangeAction(str, Enum):
    """Planned change for a node."""
    CREATE = "create"
    UPDATE = "update"
    NOOP = "noop"
    READ = "read"
    DELETE = "delete"


__all__ = [
    "NodeKind",
    "NodeVariant",
    "Operation",
    "RunOperation",
    "NodeOutcome",
    "ChangeAction",
]
