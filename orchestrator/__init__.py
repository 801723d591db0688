# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# STATUS: Core - Apply / destroy orchestration
# PURPOSE: Execute a dependency graph against the provider registry
# CREATED: 17 OCT 2026
# ============================================================================
"""
Orchestrator Module

Usage:
    from orchestrator import Reconciler

    reconciler = Reconciler(config, StateService(config.state_path))
    report = await reconciler.apply(graph)
"""

from .reconciler import Reconciler

__all__ = ["Reconciler"]
