# ============================================================================
# RESOURCE DEPENDENCY GRAPH
# ============================================================================
# STATUS: Core - Graph construction and topological ordering
# PURPOSE: Build the immutable dependency graph, detect cycles and dangling
#          references, compute create/destroy orders
# CREATED: 14 OCT 2026
# ============================================================================
"""
Resource Dependency Graph

Core logic for turning a StackDeclaration into an ordered graph.

Features:
- Predecessors = explicit depends_on ∪ nodes referenced by any attribute
- Dangling reference detection (UnresolvedReferenceError)
- Topological sort with cycle detection (CycleError)
- Deterministic create order (ties broken by declaration order)
- Destroy order = exact reverse of create order
- Parallel waves and transitive successor lookup

The builder is stateless. The graph it returns is immutable: it is built
once per planning pass and only read afterwards.
"""

import heapq
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from core.contracts import NodeVariant
from core.errors import CycleError, DuplicateNodeError, UnresolvedReferenceError
from core.models import ActionNode, BaseNode, OutputNode, StackDeclaration
from orchestrator.engine.references import extract_references
from orchestrator.engine.templates import resolve_nodes

logger = logging.getLogger(__name__)


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class DependencyGraph:
    """
    Dependency graph for a stack.

    A -> B means "B depends on A" (A must complete before B).
    """
    stack: str
    nodes: Mapping[str, BaseNode]
    predecessors: Mapping[str, FrozenSet[str]]
    successors: Mapping[str, FrozenSet[str]]
    order: Tuple[str, ...]
    variables: Mapping[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, name: object) -> bool:
        return name in self.nodes

    def __iter__(self) -> Iterator[str]:
        return iter(self.order)

    def get_node(self, name: str) -> BaseNode:
        if name not in self.nodes:
            raise KeyError(f"Node '{name}' not found in stack '{self.stack}'")
        return self.nodes[name]

    def get_dependencies(self, name: str) -> FrozenSet[str]:
        """Nodes that must complete before this one."""
        return self.predecessors.get(name, frozenset())

    def get_dependents(self, name: str) -> FrozenSet[str]:
        """Nodes that must wait for this one."""
        return self.successors.get(name, frozenset())

    def create_order(self) -> List[str]:
        return list(self.order)

    def destroy_order(self) -> List[str]:
        return list(reversed(self.order))

    def waves(self) -> List[List[str]]:
        """
        Group nodes into levels.

        Every node in a wave depends only on nodes of earlier waves, so a
        wave can run in parallel.
        """
        level: Dict[str, int] = {}
        for name in self.order:
            deps = self.get_dependencies(name)
            level[name] = 1 + max((level[d] for d in deps), default=-1)

        waves: List[List[str]] = [[] for _ in range(max(level.values(), default=-1) + 1)]
        for name in self.order:
            waves[level[name]].append(name)
        return waves

    def descendants(self, name: str) -> Set[str]:
        """Transitive successors of a node."""
        return self._walk(name, self.successors)

    def ancestors(self, name: str) -> Set[str]:
        """Transitive predecessors of a node."""
        return self._walk(name, self.predecessors)

    def _walk(self, start: str, edges: Mapping[str, FrozenSet[str]]) -> Set[str]:
        seen: Set[str] = set()
        pending = list(edges.get(start, ()))
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            pending.extend(edges.get(current, ()))
        return seen

    def is_valid_order(self, order: Sequence[str]) -> bool:
        """Check that order is a topological ordering of the whole graph."""
        if sorted(order) != sorted(self.nodes):
            return False
        position = {name: i for i, name in enumerate(order)}
        return all(
            position[dep] < position[name]
            for name in order
            for dep in self.get_dependencies(name)
        )

    def output_nodes(self) -> List[OutputNode]:
        return [n for n in (self.nodes[k] for k in self.order) if isinstance(n, OutputNode)]


# ============================================================================
# TOPOLOGICAL SORT / CYCLE DETECTION
# ============================================================================

class TopologicalSorter:
    """Kahn's algorithm with a declaration-order priority queue."""

    def sort(
        self,
        names: Sequence[str],
        predecessors: Mapping[str, FrozenSet[str]],
    ) -> List[str]:
        """
        Compute a topological order.

        Raises:
            CycleError: if the predecessor relation contains a cycle
        """
        index = {name: i for i, name in enumerate(names)}
        in_degree = {name: len(predecessors.get(name, ())) for name in names}
        dependents: Dict[str, List[str]] = {name: [] for name in names}
        for name in names:
            for dep in predecessors.get(name, ()):
                dependents[dep].append(name)

        heap = [(index[n], n) for n, degree in in_degree.items() if degree == 0]
        heapq.heapify(heap)
        sorted_nodes: List[str] = []

        while heap:
            _, node = heapq.heappop(heap)
            sorted_nodes.append(node)
            for dependent in dependents[node]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(heap, (index[dependent], dependent))

        if len(sorted_nodes) != len(names):
            done = set(sorted_nodes)
            remaining = [n for n in names if n not in done]
            raise CycleError(self._find_cycle(remaining, predecessors))

        return sorted_nodes

    def _find_cycle(
        self,
        remaining: Sequence[str],
        predecessors: Mapping[str, FrozenSet[str]],
    ) -> List[str]:
        """Return one cycle as a path whose first and last entries match."""
        candidates = set(remaining)
        state: Dict[str, int] = {}  # 1 = on stack, 2 = done

        for start in remaining:
            if state.get(start):
                continue
            path: List[str] = []
            stack: List[Tuple[str, Iterator[str]]] = []

            def push(n: str) -> None:
                state[n] = 1
                path.append(n)
                deps = sorted(d for d in predecessors.get(n, ()) if d in candidates)
                stack.append((n, iter(deps)))

            push(start)
            while stack:
                node, deps = stack[-1]
                nxt = next(deps, None)
                if nxt is None:
                    state[node] = 2
                    path.pop()
                    stack.pop()
                elif state.get(nxt) == 1:
                    cycle = path[path.index(nxt):] + [nxt]
                    # Edges point at predecessors; report in execution direction
                    return list(reversed(cycle))
                elif not state.get(nxt):
                    push(nxt)

        return list(remaining)


# ============================================================================
# GRAPH BUILDER
# ============================================================================

def referencing_values(node: BaseNode) -> List[Any]:
    """Every value of a node that may hold references."""
    values: List[Any] = [node.attributes]
    if isinstance(node, ActionNode):
        values.append(node.command)
    if isinstance(node, OutputNode):
        values.append(node.value)
    return values


class GraphBuilder:
    """Builds a DependencyGraph from a stack declaration."""

    def __init__(self, sorter: Optional[TopologicalSorter] = None):
        self.sorter = sorter or TopologicalSorter()

    def build(
        self,
        declaration: StackDeclaration,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> DependencyGraph:
        """
        Build and validate the dependency graph.

        Args:
            declaration: Stack declaration
            variables: Bound variable values ({{ var.x }} templates)

        Raises:
            DuplicateNodeError, MissingVariableError,
            UnresolvedReferenceError, CycleError
        """
        variables = dict(variables or {})

        names: List[str] = []
        seen: Set[str] = set()
        for node in declaration.nodes:
            if node.name in seen:
                raise DuplicateNodeError(node.name)
            seen.add(node.name)
            names.append(node.name)

        resolved = resolve_nodes(list(declaration.nodes), variables)
        nodes: Dict[str, BaseNode] = {node.name: node for node in resolved}

        predecessors: Dict[str, FrozenSet[str]] = {}
        for name in names:
            predecessors[name] = frozenset(self._collect_predecessors(nodes[name], nodes))

        order = self.sorter.sort(names, predecessors)

        successors: Dict[str, Set[str]] = {name: set() for name in names}
        for name, deps in predecessors.items():
            for dep in deps:
                successors[dep].add(name)

        logger.debug(
            f"Built graph for stack '{declaration.stack}': "
            f"{len(names)} nodes, {sum(len(d) for d in predecessors.values())} edges"
        )

        return DependencyGraph(
            stack=declaration.stack,
            nodes=MappingProxyType(nodes),
            predecessors=MappingProxyType(predecessors),
            successors=MappingProxyType({k: frozenset(v) for k, v in successors.items()}),
            order=tuple(order),
            variables=MappingProxyType(variables),
        )

    def _collect_predecessors(
        self,
        node: BaseNode,
        nodes: Mapping[str, BaseNode],
    ) -> Set[str]:
        """Explicit dependencies plus every referenced node."""
        deps: Set[str] = set()

        for target in node.depends_on:
            if target not in nodes:
                raise UnresolvedReferenceError(node.name, target)
            deps.add(target)

        for ref in extract_references(referencing_values(node)):
            target = nodes.get(ref.ref)
            if target is None:
                raise UnresolvedReferenceError(node.name, str(ref))
            variant = NodeVariant(target.variant)
            if not variant.has_attributes():
                raise UnresolvedReferenceError(
                    node.name, str(ref),
                    f"{variant.value} nodes produce no attributes",
                )
            deps.add(ref.ref)

        if node.name in deps:
            raise CycleError([node.name, node.name])

        return deps


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

_builder: Optional[GraphBuilder] = None


def get_builder() -> GraphBuilder:
    """Get shared graph builder instance."""
    global _builder
    if _builder is None:
        _builder = GraphBuilder()
    return _builder


def build_graph(
    declaration: StackDeclaration,
    variables: Optional[Mapping[str, Any]] = None,
) -> DependencyGraph:
    """Convenience function to build a graph."""
    return get_builder().build(declaration, variables)


__all__ = [
    "DependencyGraph",
    "TopologicalSorter",
    "GraphBuilder",
    "get_builder",
    "build_graph",
    "referencing_values",
]
