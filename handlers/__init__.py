# ============================================================================
# PROVIDER HANDLERS
# ============================================================================
# STATUS: Core - Provider registration and lookup
# PURPOSE: Register and discover provider handlers
# CREATED: 15 OCT 2026
# ============================================================================
"""
Provider Handlers

Provides a decorator-based registration system for provider handlers.

Usage:
    from handlers import register_handler, HandlerContext, HandlerResult

    @register_handler(NodeKind.NETWORK, Operation.CREATE)
    async def create_network(ctx: HandlerContext) -> HandlerResult:
        return HandlerResult.success_result({"self_link": "..."})
"""

from handlers.registry import (
    register_handler,
    get_registry,
    execute_handler,
    HandlerFunc,
    HandlerContext,
    HandlerResult,
    HandlerRegistry,
    HandlerError,
    HandlerNotFoundError,
    DuplicateHandlerError,
)

# Import provider modules to trigger registration on the global registry
import handlers.local  # noqa: F401 - import for side effects
import handlers.actions  # noqa: F401 - import for side effects

__all__ = [
    "register_handler",
    "get_registry",
    "execute_handler",
    "HandlerFunc",
    "HandlerContext",
    "HandlerResult",
    "HandlerRegistry",
    "HandlerError",
    "HandlerNotFoundError",
    "DuplicateHandlerError",
]
