# ============================================================================
# CORE MODULE
# ============================================================================
# STATUS: Core module initialization
# PURPOSE: Export contracts, errors and models
# CREATED: 12 OCT 2026
# ============================================================================

from core.contracts import (
    NodeKind,
    NodeVariant,
    NodeOutcome,
    Operation,
    RunOperation,
    ChangeAction,
)
from core.errors import (
    StackGraphError,
    DeclarationError,
    DuplicateNodeError,
    MissingVariableError,
    UnresolvedReferenceError,
    CycleError,
    NodeCreationError,
    OrderingViolationError,
    StateError,
)
from core.models import (
    Reference,
    Join,
    ResourceNode,
    DataNode,
    ActionNode,
    OutputNode,
    VariableDefinition,
    StackDeclaration,
    NodeRecord,
    StackState,
    NodeReport,
    RunReport,
)

__all__ = [
    # Enums
    "NodeKind",
    "NodeVariant",
    "NodeOutcome",
    "Operation",
    "RunOperation",
    "ChangeAction",
    # Errors
    "StackGraphError",
    "DeclarationError",
    "DuplicateNodeError",
    "MissingVariableError",
    "UnresolvedReferenceError",
    "CycleError",
    "NodeCreationError",
    "OrderingViolationError",
    "StateError",
    # Models
    "Reference",
    "Join",
    "ResourceNode",
    "DataNode",
    "ActionNode",
    "OutputNode",
    "VariableDefinition",
    "StackDeclaration",
    "NodeRecord",
    "StackState",
    "NodeReport",
    "RunReport",
]
