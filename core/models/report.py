# ============================================================================
# RUN REPORT MODEL
# ============================================================================
# STATUS: Core model - Result of an apply/destroy run
# PURPOSE: Per-node outcomes, resolved outputs, process exit code
# CREATED: 13 OCT 2026
# EXPORTS: NodeReport, RunReport
# DEPENDENCIES: pydantic
# ============================================================================
"""
Run Report

The reconciler reports, per node, one of created / updated / unchanged /
destroyed / skipped / failed. Any failed node makes the run's exit code
non-zero.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

from core.contracts import NodeOutcome, RunOperation


class NodeReport(BaseModel):
    """Outcome of a single node within a run."""
    name: str
    outcome: NodeOutcome
    error_message: Optional[str] = Field(default=None, max_length=2000)
    duration_ms: int = Field(default=0, ge=0)


class RunReport(BaseModel):
    """Outcome of a whole apply or destroy run."""
    stack: str
    operation: RunOperation
    started_at: datetime
    completed_at: Optional[datetime] = None

    # Node name -> report, in completion order
    results: Dict[str, NodeReport] = Field(default_factory=dict)

    # Resolved output values (apply only)
    outputs: Dict[str, Any] = Field(default_factory=dict)

    def add(self, report: NodeReport) -> None:
        self.results[report.name] = report

    def outcome_of(self, name: str) -> Optional[NodeOutcome]:
        report = self.results.get(name)
        return report.outcome if report is not None else None

    def names_with(self, outcome: NodeOutcome) -> List[str]:
        return [name for name, r in self.results.items() if r.outcome == outcome]

    @property
    def execution_order(self) -> List[str]:
        """Nodes in the order they finished."""
        return list(self.results)

    @computed_field
    @property
    def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for report in self.results.values():
            counts[report.outcome.value] = counts.get(report.outcome.value, 0) + 1
        return counts

    @computed_field
    @property
    def succeeded(self) -> bool:
        return not any(
            r.outcome == NodeOutcome.FAILED for r in self.results.values()
        )

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def summary(self) -> str:
        parts = [f"{count} {outcome}" for outcome, count in sorted(self.counts.items())]
        return f"{self.operation.value} {self.stack}: " + (", ".join(parts) or "nothing to do")


__all__ = ["NodeReport", "RunReport"]
