# ============================================================================
# PLANNER
# ============================================================================
# STATUS: Core - Desired vs recorded state diff
# PURPOSE: Decide per node whether apply will create, update, read, skip
#          (no-op) or delete it
# CREATED: 16 OCT 2026
# ============================================================================
"""
Planner

Compares the dependency graph (desired state) with the recorded StackState
and produces a Plan in create order.

A node's identity for change detection is its fingerprint: SHA-256 of its
kind, variant and fully resolved attributes (references substituted with
recorded outputs). A node whose references point at a node that is itself
going to change cannot be fingerprinted yet; it is "known after apply" and
planned as an update.

The planner is stateless and never calls providers.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Set, Tuple

from core.contracts import ChangeAction, NodeVariant
from core.models import ActionNode, BaseNode, OutputNode, StackState
from orchestrator.engine.graph import DependencyGraph, TopologicalSorter, referencing_values
from orchestrator.engine.references import can_resolve, referenced_nodes, resolve_value

logger = logging.getLogger(__name__)


# ============================================================================
# FINGERPRINTS
# ============================================================================

def node_payload(node: BaseNode, outputs: Mapping[str, Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Desired content of a node with every reference resolved.

    Raises:
        UnresolvedReferenceError if a referenced output is not available
    """
    payload: Dict[str, Any] = {
        "attributes": resolve_value(node.attributes, outputs, node.name),
    }
    if isinstance(node, ActionNode):
        payload["command"] = [str(arg) for arg in resolve_value(node.command, outputs, node.name)]
    if isinstance(node, OutputNode):
        payload["value"] = resolve_value(node.value, outputs, node.name)
    return payload


def fingerprint(node: BaseNode, payload: Mapping[str, Any]) -> str:
    """SHA-256 of kind, variant and resolved payload (canonical JSON)."""
    canonical = json.dumps(
        {"kind": node.kind.value, "variant": node.variant, **payload},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode()).hexdigest()


def orphan_destroy_order(state: StackState, orphans: Set[str]) -> List[str]:
    """Reverse recorded-dependency order for records no longer declared."""
    names = sorted(orphans)
    predecessors = {
        name: frozenset(d for d in state.records[name].depends_on if d in orphans)
        for name in names
    }
    return list(reversed(TopologicalSorter().sort(names, predecessors)))


def teardown_order(
    graph: DependencyGraph,
    state: StackState,
) -> Tuple[List[str], Dict[str, FrozenSet[str]]]:
    """
    Destroy order and predecessor map for every recorded node.

    Declared nodes keep their graph edges; recorded dependencies are added
    so that orphans (recorded but no longer declared) are removed before
    anything they were attached to. With state matching the graph this is
    exactly graph.destroy_order() restricted to recorded nodes.

    Raises:
        CycleError if graph and recorded edges disagree cyclically
    """
    declared = [name for name in graph.create_order() if name in state.records]
    orphans = sorted(set(state.records) - set(graph.nodes))
    names = declared + orphans
    recorded = set(names)

    predecessors: Dict[str, FrozenSet[str]] = {}
    for name in names:
        deps = set(state.records[name].depends_on)
        if name in graph:
            deps |= graph.get_dependencies(name)
        predecessors[name] = frozenset(deps & recorded)

    create_order = TopologicalSorter().sort(names, predecessors)
    return list(reversed(create_order)), predecessors


# ============================================================================
# PLAN
# ============================================================================

@dataclass
class PlannedChange:
    """Planned change for one node."""
    name: str
    action: ChangeAction
    reason: str = ""


@dataclass
class Plan:
    """Ordered list of planned changes."""
    stack: str
    changes: List[PlannedChange] = field(default_factory=list)

    def add(self, name: str, action: ChangeAction, reason: str = "") -> None:
        self.changes.append(PlannedChange(name=name, action=action, reason=reason))

    def action_for(self, name: str) -> Optional[ChangeAction]:
        for change in self.changes:
            if change.name == name:
                return change.action
        return None

    def by_action(self, action: ChangeAction) -> List[str]:
        return [c.name for c in self.changes if c.action == action]

    @property
    def has_changes(self) -> bool:
        return any(
            c.action in (ChangeAction.CREATE, ChangeAction.UPDATE, ChangeAction.DELETE)
            for c in self.changes
        )

    def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for change in self.changes:
            counts[change.action.value] = counts.get(change.action.value, 0) + 1
        return counts

    def summary(self) -> str:
        counts = self.counts()
        return (
            f"Plan: {counts.get('create', 0)} to create, "
            f"{counts.get('update', 0)} to update, "
            f"{counts.get('delete', 0)} to delete, "
            f"{counts.get('noop', 0)} unchanged"
        )


# ============================================================================
# PLANNER
# ============================================================================

class Planner:
    """Diffs a dependency graph against recorded state."""

    def plan(self, graph: DependencyGraph, state: StackState) -> Plan:
        """Plan an apply."""
        plan = Plan(stack=graph.stack)
        known: Dict[str, Dict[str, Any]] = {
            name: record.outputs for name, record in state.records.items()
        }
        changing: Set[str] = set()

        for name in graph.create_order():
            node = graph.get_node(name)
            record = state.get(name)
            refs = set().union(*(referenced_nodes(v) for v in referencing_values(node)))

            if NodeVariant(node.variant) == NodeVariant.DATA:
                plan.add(name, ChangeAction.READ, "data lookups are read on every apply")
                if record is None:
                    changing.add(name)
                continue

            if record is None:
                plan.add(name, ChangeAction.CREATE, "not in state")
                changing.add(name)
                continue

            upstream = sorted(refs & changing)
            if upstream:
                plan.add(name, ChangeAction.UPDATE, f"known after apply of {', '.join(upstream)}")
                changing.add(name)
                continue

            if not all(can_resolve(v, known) for v in referencing_values(node)):
                plan.add(name, ChangeAction.UPDATE, "referenced attributes missing from state")
                changing.add(name)
                continue

            desired = fingerprint(node, node_payload(node, known))
            if desired == record.fingerprint:
                plan.add(name, ChangeAction.NOOP)
            else:
                plan.add(name, ChangeAction.UPDATE, "attributes changed")
                changing.add(name)

        orphans = set(state.records) - set(graph.nodes)
        for name in orphan_destroy_order(state, orphans):
            plan.add(name, ChangeAction.DELETE, "no longer declared")

        logger.debug(plan.summary())
        return plan

    def plan_destroy(self, graph: DependencyGraph, state: StackState) -> Plan:
        """Plan a destroy: every recorded node, dependents first."""
        plan = Plan(stack=graph.stack)
        order, _ = teardown_order(graph, state)
        for name in order:
            plan.add(name, ChangeAction.DELETE, "" if name in graph else "no longer declared")
        return plan


__all__ = [
    "node_payload",
    "fingerprint",
    "orphan_destroy_order",
    "teardown_order",
    "PlannedChange",
    "Plan",
    "Planner",
]
