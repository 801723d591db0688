# ============================================================================
# PROVIDER HANDLER REGISTRY
# ============================================================================
# STATUS: Core - Provider handler registration and lookup
# PURPOSE: Register and discover provider handlers by (kind, operation)
# CREATED: 15 OCT 2026
# ============================================================================
"""
Provider Handler Registry

Central registry for provider handlers. The reconciler uses it to look up
the function that creates, updates, deletes or reads a node of a given
kind.

Design:
- Handlers are registered at import time via decorator
- Registry maps (kind, operation) -> handler function
- Fail-fast on duplicate registration
- Supports both sync and async handlers
- A missing UPDATE handler falls back to CREATE (create is expected to be
  idempotent on the provider side)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from core.config import ProvisioningConfig
from core.contracts import NodeKind, Operation

logger = logging.getLogger(__name__)


# ============================================================================
# HANDLER TYPES
# ============================================================================

@dataclass
class HandlerContext:
    """
    Context passed to provider handlers.

    Attributes are fully resolved: no templates, no references.
    """
    node_name: str
    kind: NodeKind
    operation: Operation
    attributes: Dict[str, Any]
    config: ProvisioningConfig
    timeout_seconds: int

    # Outputs recorded by the previous apply (update / delete)
    previous_outputs: Dict[str, Any] = field(default_factory=dict)

    # Resolved argv (action nodes only)
    command: Optional[List[str]] = None

    @property
    def label(self) -> str:
        return self.node_name.split(".", 1)[-1]


@dataclass
class HandlerResult:
    """
    Result returned by provider handlers.

    outputs become the node's queryable attributes.
    """
    success: bool = True
    outputs: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None

    @classmethod
    def success_result(cls, outputs: Optional[Dict[str, Any]] = None) -> "HandlerResult":
        """Create a success result."""
        return cls(success=True, outputs=outputs or {})

    @classmethod
    def failure_result(cls, error_message: str) -> "HandlerResult":
        """Create a failure result."""
        return cls(success=False, error_message=error_message)


HandlerFunc = Callable[[HandlerContext], Union[HandlerResult, Awaitable[HandlerResult]]]
HandlerKey = Tuple[NodeKind, Operation]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class HandlerError(Exception):
    """Base exception for handler errors."""
    pass


class HandlerNotFoundError(HandlerError):
    """Raised when no handler is registered for a kind/operation."""
    def __init__(self, kind: NodeKind, operation: Operation):
        self.kind = kind
        self.operation = operation
        super().__init__(f"No handler registered for {kind.value}/{operation.value}")


class DuplicateHandlerError(HandlerError):
    """Raised when a kind/operation already has a handler."""
    def __init__(self, kind: NodeKind, operation: Operation):
        self.kind = kind
        self.operation = operation
        super().__init__(f"Handler already registered for {kind.value}/{operation.value}")


# ============================================================================
# REGISTRY
# ============================================================================

class HandlerRegistry:
    """Map of (kind, operation) -> handler with metadata."""

    def __init__(self):
        self._handlers: Dict[HandlerKey, HandlerFunc] = {}
        self._metadata: Dict[HandlerKey, Dict[str, Any]] = {}

    def register(
        self,
        kind: NodeKind,
        operation: Operation,
        func: HandlerFunc,
        *,
        description: str = "",
        replace: bool = False,
    ) -> HandlerFunc:
        key = (NodeKind(kind), Operation(operation))
        if key in self._handlers and not replace:
            raise DuplicateHandlerError(*key)

        self._handlers[key] = func
        self._metadata[key] = {
            "kind": key[0].value,
            "operation": key[1].value,
            "description": description,
            "function": func.__name__,
            "module": func.__module__,
            "is_async": asyncio.iscoroutinefunction(func),
            "registered_at": datetime.now(timezone.utc).isoformat(),
        }
        logger.debug(f"Registered handler: {key[0].value}/{key[1].value} ({func.__module__}.{func.__name__})")
        return func

    def get(self, kind: NodeKind, operation: Operation) -> Optional[HandlerFunc]:
        return self._handlers.get((NodeKind(kind), Operation(operation)))

    def get_or_raise(self, kind: NodeKind, operation: Operation) -> HandlerFunc:
        """
        Get a handler, falling back from UPDATE to CREATE.

        Raises:
            HandlerNotFoundError if no handler is registered
        """
        handler = self.get(kind, operation)
        if handler is None and Operation(operation) == Operation.UPDATE:
            handler = self.get(kind, Operation.CREATE)
        if handler is None:
            raise HandlerNotFoundError(NodeKind(kind), Operation(operation))
        return handler

    def has(self, kind: NodeKind, operation: Operation) -> bool:
        try:
            self.get_or_raise(kind, operation)
        except HandlerNotFoundError:
            return False
        return True

    def list_handlers(self) -> List[Dict[str, Any]]:
        return list(self._metadata.values())

    def clear(self) -> None:
        self._handlers.clear()
        self._metadata.clear()

    def copy(self) -> "HandlerRegistry":
        clone = HandlerRegistry()
        clone._handlers = dict(self._handlers)
        clone._metadata = dict(self._metadata)
        return clone

    def missing_for(self, required: List[HandlerKey]) -> List[HandlerKey]:
        """Keys from required that have no handler (validation before apply)."""
        return [key for key in required if not self.has(*key)]


# Global registry (populated by handlers.local and handlers.actions)
_registry = HandlerRegistry()


def get_registry() -> HandlerRegistry:
    return _registry


def register_handler(
    kind: NodeKind,
    operation: Operation,
    *,
    description: str = "",
    registry: Optional[HandlerRegistry] = None,
) -> Callable[[HandlerFunc], HandlerFunc]:
    """
    Decorator to register a handler function.

    Example:
        @register_handler(NodeKind.NETWORK, Operation.CREATE)
        async def create_network(ctx: HandlerContext) -> HandlerResult:
            return HandlerResult.success_result({"self_link": "..."})
    """
    def decorator(func: HandlerFunc) -> HandlerFunc:
        return (registry or _registry).register(kind, operation, func, description=description)

    return decorator


# ============================================================================
# ASYNC HANDLER EXECUTION
# ============================================================================

async def execute_handler(
    registry: HandlerRegistry,
    context: HandlerContext,
) -> HandlerResult:
    """
    Execute the handler for context.kind / context.operation.

    Handles both sync and async handlers. Exceptions raised by the handler
    become failure results; a missing handler propagates.

    Raises:
        HandlerNotFoundError if handler not found
    """
    handler = registry.get_or_raise(context.kind, context.operation)

    try:
        if asyncio.iscoroutinefunction(handler):
            result = await handler(context)
        else:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, handler, context)
    except Exception as e:
        logger.exception(f"Handler {context.kind.value}/{context.operation.value} failed for {context.node_name}")
        return HandlerResult.failure_result(f"{type(e).__name__}: {e}")

    if not isinstance(result, HandlerResult):
        return HandlerResult.failure_result(
            f"Handler returned {type(result).__name__}, expected HandlerResult"
        )
    if result.success and not (
        isinstance(result.outputs, dict) and all(isinstance(k, str) for k in result.outputs)
    ):
        return HandlerResult.failure_result(
            f"Handler returned outputs of type {type(result.outputs).__name__}, "
            "expected a mapping of attribute names"
        )
    return result


__all__ = [
    "HandlerContext",
    "HandlerResult",
    "HandlerFunc",
    "HandlerRegistry",
    "HandlerError",
    "HandlerNotFoundError",
    "DuplicateHandlerError",
    "get_registry",
    "register_handler",
    "execute_handler",
]
