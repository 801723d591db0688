# ============================================================================
# MODELS MODULE
# ============================================================================
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# CREATED: 12 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

All Pydantic models for the stack graph:
    - Declarations (desired state, loaded from YAML)
    - State (recorded state, persisted as JSON)
    - Reports (result of apply / destroy runs)
"""

from core.models.declaration import (
    Reference,
    Join,
    BaseNode,
    ResourceNode,
    DataNode,
    ActionNode,
    OutputNode,
    NodeDeclaration,
    VariableDefinition,
    StackDeclaration,
)
from core.models.state import NodeRecord, StackState
from core.models.report import NodeReport, RunReport

__all__ = [
    # Declarations
    "Reference",
    "Join",
    "BaseNode",
    "ResourceNode",
    "DataNode",
    "ActionNode",
    "OutputNode",
    "NodeDeclaration",
    "VariableDefinition",
    "StackDeclaration",
    # State
    "NodeRecord",
    "StackState",
    # Reports
    "NodeReport",
    "RunReport",
]
