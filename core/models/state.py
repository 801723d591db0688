# ============================================================================
# STACK STATE MODEL
# ============================================================================
# STATUS: Core model - Recorded (applied) state
# PURPOSE: Track which declared nodes have been applied and what they produced
# CREATED: 13 OCT 2026
# EXPORTS: NodeRecord, StackState
# DEPENDENCIES: pydantic
# ============================================================================
"""
Stack State Model

Key concept:
- StackDeclaration node = TEMPLATE (desired state)
- NodeRecord = INSTANCE (what the providers actually produced)

A NodeRecord is written only after its node succeeded, so a run that is
cancelled part way can be resumed: every recorded node is satisfied, and
re-running continues from the first unrecorded one.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.contracts import NodeKind, NodeVariant


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NodeRecord(BaseModel):
    """Applied state of a single node."""
    name: str = Field(..., max_length=128)
    kind: NodeKind
    variant: NodeVariant
    fingerprint: str = Field(..., description="SHA-256 of kind + resolved attributes")
    outputs: Dict[str, Any] = Field(
        default_factory=dict,
        description="Attributes produced by the provider"
    )
    depends_on: List[str] = Field(
        default_factory=list,
        description="Predecessors at apply time (used to order orphan removal)"
    )
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class StackState(BaseModel):
    """
    Recorded state of a whole stack.

    serial is incremented on every save.
    """
    stack: str
    serial: int = Field(default=0, ge=0)
    records: Dict[str, NodeRecord] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    sensitive_outputs: List[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = None

    def get(self, name: str) -> Optional[NodeRecord]:
        return self.records.get(name)

    def record(self, record: NodeRecord) -> None:
        """Insert or replace a node record, keeping its original creation time."""
        existing = self.records.get(record.name)
        if existing is not None:
            record = record.model_copy(update={"created_at": existing.created_at})
        self.records[record.name] = record

    def forget(self, name: str) -> Optional[NodeRecord]:
        """Remove a node record (after destroy), with its output value."""
        kind, _, label = name.partition(".")
        if kind == NodeKind.OUTPUT.value:
            self.outputs.pop(label, None)
        return self.records.pop(name, None)

    @property
    def is_empty(self) -> bool:
        return not self.records


__all__ = ["NodeRecord", "StackState"]
