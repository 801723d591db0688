# ============================================================================
# VARIABLE TEMPLATE RESOLUTION
# ============================================================================
# STATUS: Core - Template resolution with Jinja2
# PURPOSE: Resolve {{ var.name }} expressions in node declarations
# CREATED: 14 OCT 2026
# ============================================================================
"""
Variable Template Resolution

Resolves Jinja2 expressions in node attributes, action commands and output
values against the bound stack variables. This happens once, when the graph
is built, so a missing variable aborts planning before any side effect.

Supported patterns:
- {{ var.region }}                  - Stack variable (native type kept)
- "{{ var.name }}-{{ var.region }}" - Mixed content (rendered as string)
- {{ var.stack_name | lower }}     - Any Jinja2 filter over a bound variable

Node references are NOT templates: they are typed Reference objects and
pass through untouched.

Variable values are opaque: a string that looks like a number stays a
string.
"""

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Set

from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateSyntaxError, UndefinedError

from core.errors import MissingVariableError, StackGraphError
from core.models import ActionNode, BaseNode, Join, OutputNode, Reference

logger = logging.getLogger(__name__)


class TemplateResolutionError(StackGraphError):
    """Raised when a template is malformed or cannot be rendered."""
    pass


_SINGLE_VAR = re.compile(r"^\{\{\s*var\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}$")
_VAR_USAGE = re.compile(r"\bvar\.([A-Za-z_][A-Za-z0-9_]*)")


class TemplateResolver:
    """
    Jinja2-based resolver for stack variables.

    Thread-safe, can be reused across multiple resolutions.
    """

    def __init__(self):
        self._env = Environment(
            loader=BaseLoader(),
            autoescape=False,
            undefined=StrictUndefined,
        )

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def resolve(
        self,
        value: Any,
        variables: Mapping[str, Any],
        node_name: Optional[str] = None,
    ) -> Any:
        """
        Recursively resolve template expressions in a value.

        Raises:
            MissingVariableError: template uses an unbound variable
            TemplateResolutionError: template is malformed
        """
        if isinstance(value, str):
            return self._resolve_string(value, variables, node_name)
        if isinstance(value, Reference):
            return value
        if isinstance(value, Join):
            return Join(
                join=[self.resolve(part, variables, node_name) for part in value.join],
                separator=value.separator,
            )
        if isinstance(value, dict):
            return {k: self.resolve(v, variables, node_name) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve(item, variables, node_name) for item in value]
        return value

    def _resolve_string(
        self,
        value: str,
        variables: Mapping[str, Any],
        node_name: Optional[str],
    ) -> Any:
        if "{{" not in value and "{%" not in value:
            return value

        missing = sorted(set(_VAR_USAGE.findall(value)) - set(variables))
        if missing:
            raise MissingVariableError(missing, node_name)

        # A lone {{ var.x }} returns the bound value untouched
        single = _SINGLE_VAR.match(value.strip())
        if single:
            return variables[single.group(1)]

        try:
            template = self._env.from_string(value)
            return template.render({"var": dict(variables)})
        except UndefinedError as e:
            raise TemplateResolutionError(
                f"Failed to resolve '{value}' in node '{node_name}': {e}"
            ) from e
        except TemplateSyntaxError as e:
            raise TemplateResolutionError(
                f"Malformed template '{value}' in node '{node_name}': {e}"
            ) from e

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def resolve_node(self, node: BaseNode, variables: Mapping[str, Any]) -> BaseNode:
        """Return a copy of node with every template rendered."""
        update: Dict[str, Any] = {
            "attributes": self.resolve(node.attributes, variables, node.name),
        }
        if isinstance(node, ActionNode):
            update["command"] = self.resolve(node.command, variables, node.name)
        if isinstance(node, OutputNode):
            update["value"] = self.resolve(node.value, variables, node.name)
        return node.model_copy(update=update)

    def variables_used(self, value: Any) -> Set[str]:
        """Names of variables referenced anywhere in a value."""
        if isinstance(value, str):
            return set(_VAR_USAGE.findall(value))
        if isinstance(value, Join):
            return self.variables_used(value.join)
        if isinstance(value, dict):
            return set().union(*(self.variables_used(v) for v in value.values())) if value else set()
        if isinstance(value, list):
            return set().union(*(self.variables_used(v) for v in value)) if value else set()
        return set()


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

_resolver: Optional[TemplateResolver] = None


def get_resolver() -> TemplateResolver:
    """Get shared template resolver instance."""
    global _resolver
    if _resolver is None:
        _resolver = TemplateResolver()
    return _resolver


def resolve_nodes(
    nodes: List[BaseNode],
    variables: Mapping[str, Any],
) -> List[BaseNode]:
    """Render templates in every node (declaration order kept)."""
    resolver = get_resolver()
    return [resolver.resolve_node(node, variables) for node in nodes]


__all__ = [
    "TemplateResolver",
    "TemplateResolutionError",
    "get_resolver",
    "resolve_nodes",
]
