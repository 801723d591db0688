# ============================================================================
# LOCAL PROVIDER
# ============================================================================
# STATUS: Provider - Deterministic offline provider for every resource kind
# PURPOSE: Fabricate provider outputs so plans/applies run without a cloud
# CREATED: 15 OCT 2026
# ============================================================================
"""
Local Provider

Stands in for the cloud network/database/orchestration APIs. Each create
returns the attributes the real provider would expose (self links,
connection names, IP addresses, endpoints), derived deterministically from
the node name and attributes, so repeated applies are stable.

Failure injection for testing: set attribute ``simulate_failure: true`` and
the create call fails.
"""

import base64
import hashlib
import ipaddress
import logging
from typing import Any, Callable, Dict, List

from core.contracts import NodeKind, Operation
from core.models.declaration import DATA_KINDS, NON_RESOURCE_KINDS
from handlers.registry import HandlerContext, HandlerRegistry, HandlerResult, get_registry

logger = logging.getLogger(__name__)


COMPUTE_API = "https://www.googleapis.com/compute/v1"
SQL_API = "https://sqladmin.googleapis.com/sql/v1beta4"
CONTAINER_API = "https://container.googleapis.com/v1"

# Attributes the real APIs reject requests without
REQUIRED_ATTRIBUTES: Dict[NodeKind, List[str]] = {
    NodeKind.SUBNETWORK: ["network", "ip_cidr_range"],
    NodeKind.FIREWALL: ["network"],
    NodeKind.SQL_DATABASE: ["instance"],
    NodeKind.SQL_USER: ["instance", "password"],
    NodeKind.NODE_POOL: ["cluster"],
    NodeKind.DEPLOYMENT: ["image"],
    NodeKind.SERVICE: ["selector"],
}


# ============================================================================
# HELPERS
# ============================================================================

def _digest(*parts: Any) -> bytes:
    return hashlib.sha256("|".join(str(p) for p in parts).encode()).digest()


def _fake_id(*parts: Any) -> str:
    return str(int.from_bytes(_digest(*parts)[:8], "big"))


def _fake_ip(prefix: int, *parts: Any) -> str:
    raw = _digest(*parts)
    return f"{prefix}.{raw[0]}.{raw[1]}.{max(raw[2], 2)}"


def _project(ctx: HandlerContext) -> str:
    return str(ctx.attributes.get("project") or ctx.config.project_id or "local-project")


def _name(ctx: HandlerContext) -> str:
    return str(ctx.attributes.get("name") or ctx.label)


# ============================================================================
# OUTPUT FACTORIES
# ============================================================================

def _network(ctx: HandlerContext) -> Dict[str, Any]:
    name = _name(ctx)
    return {
        "name": name,
        "id": _fake_id(ctx.node_name, name),
        "self_link": f"{COMPUTE_API}/projects/{_project(ctx)}/global/networks/{name}",
    }


def _subnetwork(ctx: HandlerContext) -> Dict[str, Any]:
    name = _name(ctx)
    region = ctx.attributes.get("region") or ctx.config.region
    cidr = ipaddress.ip_network(str(ctx.attributes["ip_cidr_range"]), strict=False)
    return {
        "name": name,
        "id": _fake_id(ctx.node_name, name),
        "region": region,
        "ip_cidr_range": str(cidr),
        "gateway_address": str(next(cidr.hosts())),
        "self_link": f"{COMPUTE_API}/projects/{_project(ctx)}/regions/{region}/subnetworks/{name}",
    }


def _firewall(ctx: HandlerContext) -> Dict[str, Any]:
    name = _name(ctx)
    return {
        "name": name,
        "id": _fake_id(ctx.node_name, name),
        "self_link": f"{COMPUTE_API}/projects/{_project(ctx)}/global/firewalls/{name}",
    }


def _sql_instance(ctx: HandlerContext) -> Dict[str, Any]:
    name = _name(ctx)
    region = ctx.attributes.get("region") or ctx.config.region
    project = _project(ctx)
    return {
        "name": name,
        "connection_name": f"{project}:{region}:{name}",
        "public_ip_address": _fake_ip(35, ctx.node_name, "public"),
        "private_ip_address": _fake_ip(10, ctx.node_name, "private"),
        "self_link": f"{SQL_API}/projects/{project}/instances/{name}",
    }


def _sql_database(ctx: HandlerContext) -> Dict[str, Any]:
    name = _name(ctx)
    instance = ctx.attributes["instance"]
    return {
        "name": name,
        "instance": instance,
        "id": f"projects/{_project(ctx)}/instances/{instance}/databases/{name}",
    }


def _sql_user(ctx: HandlerContext) -> Dict[str, Any]:
    name = _name(ctx)
    instance = ctx.attributes["instance"]
    return {
        "name": name,
        "instance": instance,
        "host": ctx.attributes.get("host", "%"),
        "id": f"{name}/{instance}",
    }


def _cluster(ctx: HandlerContext) -> Dict[str, Any]:
    name = _name(ctx)
    location = ctx.attributes.get("location") or ctx.config.zone
    cert = base64.b64encode(_digest(ctx.node_name, "ca")).decode()
    return {
        "name": name,
        "location": location,
        "endpoint": _fake_ip(34, ctx.node_name, "endpoint"),
        "cluster_ca_certificate": cert,
        "master_version": str(ctx.attributes.get("min_master_version", "1.29")),
        "self_link": f"{CONTAINER_API}/projects/{_project(ctx)}/locations/{location}/clusters/{name}",
    }


def _node_pool(ctx: HandlerContext) -> Dict[str, Any]:
    name = _name(ctx)
    cluster = ctx.attributes["cluster"]
    node_count = int(ctx.attributes.get("node_count", 1))
    return {
        "name": name,
        "cluster": cluster,
        "node_count": node_count,
        "instance_group_urls": [
            f"{COMPUTE_API}/projects/{_project(ctx)}/zones/{ctx.config.zone}/instanceGroupManagers/gke-{cluster}-{name}-grp"
        ],
    }


def _deployment(ctx: HandlerContext) -> Dict[str, Any]:
    name = _name(ctx)
    namespace = ctx.attributes.get("namespace", "default")
    return {
        "name": name,
        "namespace": namespace,
        "uid": _fake_id(ctx.node_name, namespace, name),
        "replicas": int(ctx.attributes.get("replicas", 1)),
        "image": ctx.attributes["image"],
    }


def _service(ctx: HandlerContext) -> Dict[str, Any]:
    name = _name(ctx)
    namespace = ctx.attributes.get("namespace", "default")
    outputs = {
        "name": name,
        "namespace": namespace,
        "uid": _fake_id(ctx.node_name, namespace, name),
        "cluster_ip": _fake_ip(10, ctx.node_name, "cluster"),
    }
    if ctx.attributes.get("type", "ClusterIP") == "LoadBalancer":
        outputs["load_balancer_ip"] = _fake_ip(34, ctx.node_name, "ingress")
    return outputs


def _client_config(ctx: HandlerContext) -> Dict[str, Any]:
    return {
        "project": _project(ctx),
        "region": ctx.config.region,
        "zone": ctx.config.zone,
        "access_token": "local-" + _digest(ctx.node_name, "token").hex()[:32],
    }


OUTPUT_FACTORIES: Dict[NodeKind, Callable[[HandlerContext], Dict[str, Any]]] = {
    NodeKind.NETWORK: _network,
    NodeKind.SUBNETWORK: _subnetwork,
    NodeKind.FIREWALL: _firewall,
    NodeKind.SQL_INSTANCE: _sql_instance,
    NodeKind.SQL_DATABASE: _sql_database,
    NodeKind.SQL_USER: _sql_user,
    NodeKind.CLUSTER: _cluster,
    NodeKind.NODE_POOL: _node_pool,
    NodeKind.DEPLOYMENT: _deployment,
    NodeKind.SERVICE: _service,
    NodeKind.CLIENT_CONFIG: _client_config,
}


# ============================================================================
# HANDLERS
# ============================================================================

async def local_create(ctx: HandlerContext) -> HandlerResult:
    """Create (or update) a resource and return its provider outputs."""
    if ctx.attributes.get("simulate_failure"):
        return HandlerResult.failure_result(
            f"simulated provider failure creating {ctx.node_name}"
        )

    missing = [a for a in REQUIRED_ATTRIBUTES.get(ctx.kind, []) if ctx.attributes.get(a) in (None, "")]
    if missing:
        return HandlerResult.failure_result(
            f"{ctx.kind.value} requires attribute(s): {', '.join(missing)}"
        )

    outputs = OUTPUT_FACTORIES[ctx.kind](ctx)
    logger.info(f"local: {ctx.operation.value} {ctx.node_name}")
    return HandlerResult.success_result(outputs)


async def local_delete(ctx: HandlerContext) -> HandlerResult:
    logger.info(f"local: delete {ctx.node_name}")
    return HandlerResult.success_result()


async def local_read(ctx: HandlerContext) -> HandlerResult:
    return HandlerResult.success_result(OUTPUT_FACTORIES[ctx.kind](ctx))


def register_local_provider(registry: HandlerRegistry) -> HandlerRegistry:
    """Register local handlers for every resource and data kind."""
    for kind in NodeKind:
        if kind in DATA_KINDS:
            registry.register(kind, Operation.READ, local_read, description="local lookup")
        elif kind not in NON_RESOURCE_KINDS:
            registry.register(kind, Operation.CREATE, local_create, description="local create")
            registry.register(kind, Operation.DELETE, local_delete, description="local delete")
    return registry


register_local_provider(get_registry())


__all__ = [
    "OUTPUT_FACTORIES",
    "REQUIRED_ATTRIBUTES",
    "local_create",
    "local_delete",
    "local_read",
    "register_local_provider",
]
