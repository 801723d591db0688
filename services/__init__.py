# ============================================================================
# SERVICES MODULE
# ============================================================================
# STATUS: Core - Loading and persistence layer
# PURPOSE: Declaration loading, variable binding, state persistence
# CREATED: 16 OCT 2026
# ============================================================================
"""
Services Module

Usage:
    from services import DeclarationService, StateService, bind_variables

    declaration = DeclarationService().load("wordpress")
    variables = bind_variables(declaration, var_files=["prod.vars.yaml"])
    state = StateService(".stackgraph/state.json").load(declaration.stack)
"""

from .declaration_service import (
    DeclarationService,
    bind_variables,
    load_var_file,
    parse_var_assignments,
)
from .state_service import StateService

__all__ = [
    "DeclarationService",
    "StateService",
    "bind_variables",
    "load_var_file",
    "parse_var_assignments",
]
