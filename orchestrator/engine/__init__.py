# ============================================================================
# ORCHESTRATOR ENGINE
# ============================================================================
# STATUS: Core - Engine components
# PURPOSE: Template rendering, reference resolution, graph building, planning
# CREATED: 16 OCT 2026
# ============================================================================
"""
Orchestrator Engine Components

- templates: Jinja2 rendering of {{ var.name }} placeholders
- references: extraction and resolution of node output references
- graph: dependency graph construction and deterministic ordering
- planner: desired vs recorded state diff
"""

from orchestrator.engine.templates import (
    TemplateResolver,
    TemplateResolutionError,
    get_resolver,
    resolve_nodes,
)
from orchestrator.engine.references import (
    extract_references,
    referenced_nodes,
    resolve_value,
    can_resolve,
)
from orchestrator.engine.graph import (
    DependencyGraph,
    GraphBuilder,
    TopologicalSorter,
    build_graph,
    get_builder,
)
from orchestrator.engine.planner import (
    Plan,
    PlannedChange,
    Planner,
    fingerprint,
    node_payload,
    teardown_order,
)

__all__ = [
    # Templates
    "TemplateResolver",
    "TemplateResolutionError",
    "get_resolver",
    "resolve_nodes",
    # References
    "extract_references",
    "referenced_nodes",
    "resolve_value",
    "can_resolve",
    # Graph
    "DependencyGraph",
    "GraphBuilder",
    "TopologicalSorter",
    "build_graph",
    "get_builder",
    # Planner
    "Plan",
    "PlannedChange",
    "Planner",
    "fingerprint",
    "node_payload",
    "teardown_order",
]
