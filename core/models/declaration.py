# ============================================================================
# STACK DECLARATION MODELS
# ============================================================================
# STATUS: Core model - Desired state loaded from YAML
# PURPOSE: Typed node declarations, references and variables
# CREATED: 12 OCT 2026
# EXPORTS: Reference, Join, ResourceNode, DataNode, ActionNode, OutputNode,
#          NodeDeclaration, VariableDefinition, StackDeclaration
# DEPENDENCIES: pydantic
# ============================================================================
"""
Stack Declaration Models

A StackDeclaration is the desired state of a stack. It defines:
- What nodes exist (resources, data lookups, actions, outputs)
- What each node is configured with (attributes)
- How nodes depend on each other (references + explicit depends_on)
- Which variables must be bound before planning

Node attribute values are literals, Jinja2 variable templates
("{{ var.region }}"), or typed references to another node's attribute:

    network: {ref: network.wordpress, attribute: self_link}

References are parsed into Reference objects when the model is built, so
the graph builder never has to scan strings for identifiers.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.contracts import NodeKind, NodeVariant


DATA_KINDS = frozenset({NodeKind.CLIENT_CONFIG})
NON_RESOURCE_KINDS = frozenset({NodeKind.ACTION, NodeKind.OUTPUT}) | DATA_KINDS


# ============================================================================
# VALUE EXPRESSIONS
# ============================================================================

class Reference(BaseModel):
    """Pointer to an attribute another node produces when applied."""
    model_config = ConfigDict(frozen=True)

    ref: str = Field(..., description="Target node name (<kind>.<label>)")
    attribute: str = Field(..., min_length=1, description="Provider output attribute")

    @classmethod
    def to(cls, node_name: str, attribute: str) -> "Reference":
        return cls(ref=node_name, attribute=attribute)

    def __str__(self) -> str:
        return f"{self.ref}.{self.attribute}"


class Join(BaseModel):
    """String composed from literals and references at execution time."""
    model_config = ConfigDict(frozen=True)

    join: List[Any] = Field(..., min_length=1)
    separator: str = ""

    @field_validator("join", mode="before")
    @classmethod
    def parse_parts(cls, v):
        if isinstance(v, list):
            return [parse_value(part) for part in v]
        return v


def parse_value(value: Any) -> Any:
    """
    Convert YAML value trees into typed expressions.

    {ref, attribute} dicts become Reference, {join[, separator]} dicts
    become Join; containers are walked recursively.
    """
    if isinstance(value, (Reference, Join)):
        return value
    if isinstance(value, dict):
        keys = set(value)
        if "ref" in keys and keys <= {"ref", "attribute"}:
            return Reference(**value)
        if "join" in keys and keys <= {"join", "separator"}:
            return Join(**value)
        return {k: parse_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [parse_value(item) for item in value]
    return value


# ============================================================================
# NODE DECLARATIONS
# ============================================================================

class BaseNode(BaseModel):
    """
    Fields shared by every node variant.

    The node name is "<kind>.<label>" and is unique within a stack.
    """
    model_config = ConfigDict(frozen=True)

    kind: NodeKind
    label: str = Field(..., max_length=64, pattern=r"^[A-Za-z0-9_\-]+$")
    depends_on: List[str] = Field(
        default_factory=list,
        description="Explicit ordering constraints (node names)"
    )
    attributes: Dict[str, Any] = Field(default_factory=dict)
    timeout_seconds: Optional[int] = Field(default=None, ge=1, le=86400)
    description: Optional[str] = None

    @field_validator("depends_on", mode="before")
    @classmethod
    def handle_string_input(cls, v):
        """Allow single string as shorthand for single-item list."""
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("attributes", mode="before")
    @classmethod
    def parse_attributes(cls, v):
        if v is None:
            return {}
        return parse_value(v)

    @property
    def name(self) -> str:
        return f"{self.kind.value}.{self.label}"


class ResourceNode(BaseNode):
    """A provider-backed object (network, database, cluster, ...)."""
    variant: Literal["resource"] = NodeVariant.RESOURCE.value

    @field_validator("kind")
    @classmethod
    def check_kind(cls, v: NodeKind) -> NodeKind:
        if v in NON_RESOURCE_KINDS:
            raise ValueError(f"kind '{v.value}' cannot be declared as a resource")
        return v


class DataNode(BaseNode):
    """A read-only lookup of an existing object."""
    variant: Literal["data"] = NodeVariant.DATA.value

    @field_validator("kind")
    @classmethod
    def check_kind(cls, v: NodeKind) -> NodeKind:
        if v not in DATA_KINDS:
            raise ValueError(f"kind '{v.value}' is not a data lookup")
        return v


class ActionNode(BaseNode):
    """
    A side-effect command (set active project, fetch credentials, ...).

    Produces no queryable attributes.
    """
    variant: Literal["action"] = NodeVariant.ACTION.value
    kind: NodeKind = NodeKind.ACTION
    command: List[Any] = Field(..., min_length=1, description="argv, no shell")

    @field_validator("kind")
    @classmethod
    def check_kind(cls, v: NodeKind) -> NodeKind:
        if v != NodeKind.ACTION:
            raise ValueError("action nodes must have kind 'action'")
        return v

    @field_validator("command", mode="before")
    @classmethod
    def parse_command(cls, v):
        if isinstance(v, str):
            return [v]
        return parse_value(v)


class OutputNode(BaseNode):
    """A named value exposed to operators after apply."""
    variant: Literal["output"] = NodeVariant.OUTPUT.value
    kind: NodeKind = NodeKind.OUTPUT
    value: Any = None
    sensitive: bool = False

    @field_validator("kind")
    @classmethod
    def check_kind(cls, v: NodeKind) -> NodeKind:
        if v != NodeKind.OUTPUT:
            raise ValueError("output nodes must have kind 'output'")
        return v

    @field_validator("value", mode="before")
    @classmethod
    def parse_output_value(cls, v):
        return parse_value(v)


NodeDeclaration = Annotated[
    Union[ResourceNode, DataNode, ActionNode, OutputNode],
    Field(discriminator="variant"),
]


def infer_variant(kind: str) -> str:
    """Default variant for a node dict that omits one."""
    if kind == NodeKind.ACTION.value:
        return NodeVariant.ACTION.value
    if kind == NodeKind.OUTPUT.value:
        return NodeVariant.OUTPUT.value
    if kind in {k.value for k in DATA_KINDS}:
        return NodeVariant.DATA.value
    return NodeVariant.RESOURCE.value


# ============================================================================
# VARIABLES
# ============================================================================

class VariableDefinition(BaseModel):
    """Definition of a stack input variable."""
    description: Optional[str] = None
    default: Optional[Any] = None
    required: bool = True
    sensitive: bool = False

    @property
    def needs_value(self) -> bool:
        """True when the variable has no default and must be provided."""
        return self.required and self.default is None


# ============================================================================
# STACK
# ============================================================================

class StackDeclaration(BaseModel):
    """
    Complete stack declaration loaded from one or more YAML files.

    Immutable once loaded - the graph builder consumes it read-only.
    """
    stack: str = Field(..., max_length=64)
    description: Optional[str] = None
    variables: Dict[str, VariableDefinition] = Field(default_factory=dict)
    nodes: List[NodeDeclaration] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def fill_variants(cls, data):
        """Infer each node's variant from its kind when omitted."""
        if isinstance(data, dict) and isinstance(data.get("nodes"), list):
            nodes = []
            for node in data["nodes"]:
                if isinstance(node, dict) and "variant" not in node and "kind" in node:
                    node = {**node, "variant": infer_variant(str(node["kind"]))}
                nodes.append(node)
            data = {**data, "nodes": nodes}
        if isinstance(data, dict) and isinstance(data.get("variables"), dict):
            data = {
                **data,
                "variables": {k: (v or {}) for k, v in data["variables"].items()},
            }
        return data

    def node_names(self) -> List[str]:
        """Node names in declaration order."""
        return [node.name for node in self.nodes]

    def get_node(self, name: str):
        """Get a node declaration by name."""
        for node in self.nodes:
            if node.name == name:
                return node
        raise KeyError(f"Node '{name}' not found in stack '{self.stack}'")

    def sensitive_variables(self) -> List[str]:
        return [name for name, var in self.variables.items() if var.sensitive]


__all__ = [
    "Reference",
    "Join",
    "parse_value",
    "BaseNode",
    "ResourceNode",
    "DataNode",
    "ActionNode",
    "OutputNode",
    "NodeDeclaration",
    "VariableDefinition",
    "StackDeclaration",
    "DATA_KINDS",
]
