# ============================================================================
# RECONCILER TESTS
# ============================================================================
# STATUS: Tests - Apply / destroy execution
# PURPOSE: Verify ordering under concurrency, failure isolation, idempotent
#          re-apply, resumability and reverse-order teardown
# CREATED: 17 OCT 2026
# ============================================================================
"""
Reconciler Tests

Covers:
1. Apply creates every node after all of its predecessors
2. Concurrency: independent nodes overlap, max_parallel is respected,
   a node started before its predecessors fails with an ordering error
3. Instance failure -> database and user skipped, unrelated nodes created;
   malformed provider outputs fail only that node
4. Re-apply of an applied stack reports every node unchanged
5. Attribute change -> update with previous outputs
6. Provider timeout -> failed
7. Cancelled apply resumes from the first unsatisfied node
8. Orphans removed on apply
9. Destroy in reverse order; a failed destroy keeps its predecessors
10. Outputs resolved from provider outputs after apply

Run with:
    pytest tests/test_reconciler.py -v
"""

import asyncio
from typing import List
from unittest.mock import AsyncMock

import pytest

from core.config import ProvisioningConfig
from core.contracts import NodeKind, NodeOutcome, Operation
from core.models import StackDeclaration
from handlers.actions import register_action_provider
from handlers.local import local_create, local_delete, register_local_provider
from handlers.registry import HandlerContext, HandlerNotFoundError, HandlerRegistry, HandlerResult
from orchestrator.engine.graph import build_graph
from orchestrator.reconciler import Reconciler
from services.state_service import StateService


# ============================================================================
# FIXTURES
# ============================================================================

def ref(node, attribute):
    return {"ref": node, "attribute": attribute}


def graph_for(nodes):
    return build_graph(StackDeclaration.model_validate({"stack": "recon", "nodes": nodes}))


def local_registry() -> HandlerRegistry:
    registry = HandlerRegistry()
    register_local_provider(registry)
    register_action_provider(registry)
    return registry


@pytest.fixture
def config():
    return ProvisioningConfig(project_id="test-project", run_actions=False, max_parallel=4)


@pytest.fixture
def state_service():
    return StateService(None)


@pytest.fixture
def nodes():
    return [
        {"kind": "network", "label": "main"},
        {"kind": "subnetwork", "label": "main", "attributes": {
            "network": ref("network.main", "self_link"),
            "ip_cidr_range": "10.0.0.0/24",
        }},
        {"kind": "sql_instance", "label": "db", "attributes": {
            "private_network": ref("network.main", "self_link"),
        }},
        {"kind": "sql_database", "label": "app", "attributes": {
            "instance": ref("sql_instance.db", "name"),
        }},
        {"kind": "sql_user", "label": "app", "depends_on": ["sql_database.app"], "attributes": {
            "instance": ref("sql_instance.db", "name"),
            "password": "0000",
        }},
        {"kind": "cluster", "label": "main", "attributes": {
            "subnetwork": ref("subnetwork.main", "self_link"),
        }},
        {"kind": "node_pool", "label": "main", "attributes": {
            "cluster": ref("cluster.main", "name"),
        }},
        {"kind": "client_config", "label": "current"},
        {"kind": "deployment", "label": "web", "depends_on": ["node_pool.main"], "attributes": {
            "image": "wordpress",
            "db_host": ref("sql_instance.db", "public_ip_address"),
            "db_user": ref("sql_user.app", "name"),
        }},
        {"kind": "service", "label": "web", "attributes": {
            "type": "LoadBalancer",
            "selector": {"app": "web"},
            "deployment": ref("deployment.web", "name"),
        }},
        {"kind": "action", "label": "open", "command": [
            "xdg-open", {"join": ["http://", ref("service.web", "load_balancer_ip")]},
        ]},
        {"kind": "output", "label": "address", "value": ref("service.web", "load_balancer_ip")},
        {"kind": "output", "label": "db_password", "sensitive": True, "value": "0000"},
    ]


def apply(graph, config, state_service, registry=None):
    return asyncio.run(Reconciler(config, state_service, registry or local_registry()).apply(graph))


def destroy(graph, config, state_service, registry=None):
    return asyncio.run(Reconciler(config, state_service, registry or local_registry()).destroy(graph))


# ============================================================================
# APPLY
# ============================================================================

class TestApply:
    """Full apply of a fresh stack."""

    def test_creates_every_node(self, nodes, config, state_service):
        graph = graph_for(nodes)

        report = apply(graph, config, state_service)

        assert report.exit_code == 0
        assert report.names_with(NodeOutcome.CREATED) == report.execution_order
        assert set(report.execution_order) == set(graph.nodes)

    def test_completion_order_is_topological(self, nodes, config, state_service):
        graph = graph_for(nodes)

        report = apply(graph, config, state_service)

        assert graph.is_valid_order(report.execution_order)

    def test_state_records_every_node(self, nodes, config, state_service):
        graph = graph_for(nodes)
        apply(graph, config, state_service)

        state = state_service.load("recon")
        assert set(state.records) == set(graph.nodes)
        assert state.get("subnetwork.main").depends_on == ["network.main"]
        assert state.get("network.main").outputs["self_link"].endswith("/networks/main")

    def test_outputs_resolved_from_provider(self, nodes, config, state_service):
        graph = graph_for(nodes)

        report = apply(graph, config, state_service)

        state = state_service.load("recon")
        service_ip = state.get("service.web").outputs["load_balancer_ip"]
        assert report.outputs["address"] == service_ip
        assert state.outputs["address"] == service_ip
        assert state.sensitive_outputs == ["db_password"]

    def test_action_receives_resolved_command(self, nodes, config, state_service):
        graph = graph_for(nodes)
        apply(graph, config, state_service)

        state = state_service.load("recon")
        ip = state.get("service.web").outputs["load_balancer_ip"]
        assert state.get("action.open").outputs["command"] == f"xdg-open http://{ip}"

    def test_missing_handler_aborts_before_side_effects(self, nodes, config, state_service):
        registry = local_registry()
        registry.clear()
        registry.register(NodeKind.NETWORK, Operation.CREATE, local_create)

        with pytest.raises(HandlerNotFoundError):
            apply(graph_for(nodes), config, state_service, registry)

        assert not state_service.exists()


class TestConcurrency:
    """Independent nodes overlap without violating the partial order."""

    def _tracking_registry(self, events: List[tuple], in_flight: List[int], peak: List[int]):
        registry = local_registry()

        async def slow_create(ctx: HandlerContext) -> HandlerResult:
            in_flight[0] += 1
            peak[0] = max(peak[0], in_flight[0])
            events.append(("start", ctx.node_name))
            await asyncio.sleep(0.02)
            result = await local_create(ctx)
            events.append(("end", ctx.node_name))
            in_flight[0] -= 1
            return result

        for kind in NodeKind:
            if registry.has(kind, Operation.CREATE) and kind != NodeKind.ACTION:
                registry.register(kind, Operation.CREATE, slow_create, replace=True)
        return registry

    def test_no_node_starts_before_predecessors_end(self, nodes, config, state_service):
        graph = graph_for(nodes)
        events, in_flight, peak = [], [0], [0]

        apply(graph, config, state_service, self._tracking_registry(events, in_flight, peak))

        position = {event: i for i, event in enumerate(events)}
        for name in graph.create_order():
            if ("start", name) not in position:
                continue
            for dep in graph.get_dependencies(name):
                if ("end", dep) in position:
                    assert position[("end", dep)] < position[("start", name)]

    def test_independent_nodes_run_concurrently(self, config, state_service):
        graph = graph_for([{"kind": "network", "label": f"n{i}"} for i in range(3)])
        events, in_flight, peak = [], [0], [0]

        apply(graph, config, state_service, self._tracking_registry(events, in_flight, peak))

        assert peak[0] == 3

    def test_max_parallel_respected(self, state_service):
        config = ProvisioningConfig(run_actions=False, max_parallel=2)
        graph = graph_for([{"kind": "network", "label": f"n{i}"} for i in range(6)])
        events, in_flight, peak = [], [0], [0]

        report = apply(graph, config, state_service, self._tracking_registry(events, in_flight, peak))

        assert report.exit_code == 0
        assert peak[0] == 2

    def test_node_started_early_is_ordering_failure(self, nodes, config, state_service):
        graph = graph_for(nodes)
        reconciler = Reconciler(config, state_service, local_registry())
        state = state_service.load(graph.stack)

        async def start_database_first():
            return await reconciler._apply_one(
                graph, state, "sql_database.app", {}, asyncio.Semaphore(1),
            )

        report = asyncio.run(start_database_first())

        assert report.outcome == NodeOutcome.FAILED
        assert "started before predecessors completed: sql_instance.db" in report.error_message
        assert state.get("sql_database.app") is None

    def test_failed_predecessor_still_skips(self, nodes, config, state_service):
        graph = graph_for(nodes)
        reconciler = Reconciler(config, state_service, local_registry())
        state = state_service.load(graph.stack)

        async def after_failure():
            return await reconciler._apply_one(
                graph, state, "sql_database.app",
                {"sql_instance.db": NodeOutcome.FAILED}, asyncio.Semaphore(1),
            )

        report = asyncio.run(after_failure())

        assert report.outcome == NodeOutcome.SKIPPED


# ============================================================================
# FAILURE ISOLATION
# ============================================================================

class TestFailureIsolation:
    """A failed node halts only its subtree."""

    def test_instance_failure_skips_database_and_user(self, nodes, config, state_service):
        nodes[2]["attributes"]["simulate_failure"] = True
        graph = graph_for(nodes)

        report = apply(graph, config, state_service)

        assert report.outcome_of("sql_instance.db") == NodeOutcome.FAILED
        assert report.outcome_of("sql_database.app") == NodeOutcome.SKIPPED
        assert report.outcome_of("sql_user.app") == NodeOutcome.SKIPPED
        assert report.exit_code == 1

    def test_malformed_provider_outputs_fail_only_that_node(self, config, state_service):
        registry = local_registry()
        broken = AsyncMock(return_value=HandlerResult(success=True, outputs=None))
        broken.__name__ = "broken_create"
        registry.register(NodeKind.FIREWALL, Operation.CREATE, broken, replace=True)
        graph = graph_for([
            {"kind": "firewall", "label": "f"},
            {"kind": "network", "label": "n"},
        ])

        report = apply(graph, config, state_service, registry)

        broken.assert_awaited_once()
        assert report.outcome_of("firewall.f") == NodeOutcome.FAILED
        assert "expected a mapping" in report.results["firewall.f"].error_message
        assert report.outcome_of("network.n") == NodeOutcome.CREATED
        assert report.exit_code == 1
        assert state_service.load("recon").get("firewall.f") is None

    def test_failure_message_names_node(self, nodes, config, state_service):
        nodes[2]["attributes"]["simulate_failure"] = True

        report = apply(graph_for(nodes), config, state_service)

        message = report.results["sql_instance.db"].error_message
        assert "sql_instance.db" in message
        assert "simulated provider failure" in message
        assert "sql_instance.db" in report.results["sql_database.app"].error_message

    def test_transitive_successors_skipped(self, nodes, config, state_service):
        nodes[2]["attributes"]["simulate_failure"] = True
        graph = graph_for(nodes)

        report = apply(graph, config, state_service)

        for name in graph.descendants("sql_instance.db"):
            assert report.outcome_of(name) == NodeOutcome.SKIPPED
        assert report.outcome_of("output.db_password") == NodeOutcome.CREATED

    def test_independent_subtrees_proceed(self, nodes, config, state_service):
        nodes[2]["attributes"]["simulate_failure"] = True

        report = apply(graph_for(nodes), config, state_service)

        for name in ("network.main", "subnetwork.main", "cluster.main", "node_pool.main"):
            assert report.outcome_of(name) == NodeOutcome.CREATED

    def test_failed_and_skipped_not_recorded(self, nodes, config, state_service):
        nodes[2]["attributes"]["simulate_failure"] = True
        apply(graph_for(nodes), config, state_service)

        state = state_service.load("recon")
        assert state.get("sql_instance.db") is None
        assert state.get("sql_user.app") is None
        assert state.get("cluster.main") is not None

    def test_timeout_fails_node(self, config, state_service):
        registry = local_registry()

        async def stuck(ctx: HandlerContext) -> HandlerResult:
            await asyncio.sleep(30)
            return HandlerResult.success_result()

        registry.register(NodeKind.CLUSTER, Operation.CREATE, stuck, replace=True)
        graph = graph_for([
            {"kind": "cluster", "label": "slow", "timeout_seconds": 1},
            {"kind": "node_pool", "label": "p", "attributes": {"cluster": ref("cluster.slow", "name")}},
        ])

        report = apply(graph, config, state_service, registry)

        assert report.outcome_of("cluster.slow") == NodeOutcome.FAILED
        assert "timed out" in report.results["cluster.slow"].error_message
        assert report.outcome_of("node_pool.p") == NodeOutcome.SKIPPED

    def test_handler_exception_becomes_failure(self, config, state_service):
        registry = local_registry()

        def broken(ctx: HandlerContext) -> HandlerResult:
            raise RuntimeError("quota exceeded")

        registry.register(NodeKind.NETWORK, Operation.CREATE, broken, replace=True)

        report = apply(graph_for([{"kind": "network", "label": "main"}]), config, state_service, registry)

        assert report.outcome_of("network.main") == NodeOutcome.FAILED
        assert "quota exceeded" in report.results["network.main"].error_message


# ============================================================================
# RE-APPLY
# ============================================================================

class TestReapply:
    """Idempotence, updates, resumption and orphans."""

    def test_reapply_reports_all_unchanged(self, nodes, config, state_service):
        graph = graph_for(nodes)
        apply(graph, config, state_service)
        serial = state_service.load("recon").serial

        report = apply(graph, config, state_service)

        assert report.names_with(NodeOutcome.UNCHANGED) == report.execution_order
        assert len(report.execution_order) == len(graph)
        assert report.exit_code == 0
        assert state_service.load("recon").serial > serial

    def test_reapply_does_not_call_providers(self, nodes, config, state_service):
        graph = graph_for(nodes)
        apply(graph, config, state_service)

        calls = []
        registry = local_registry()

        async def counting_create(ctx: HandlerContext) -> HandlerResult:
            calls.append(ctx.node_name)
            return await local_create(ctx)

        for kind in NodeKind:
            if registry.has(kind, Operation.CREATE) and kind != NodeKind.ACTION:
                registry.register(kind, Operation.CREATE, counting_create, replace=True)

        apply(graph, config, state_service, registry)

        assert calls == []

    def test_attribute_change_updates(self, nodes, config, state_service):
        apply(graph_for(nodes), config, state_service)
        nodes[6]["attributes"]["node_count"] = 5

        seen = {}
        registry = local_registry()

        async def update_pool(ctx: HandlerContext) -> HandlerResult:
            seen["operation"] = ctx.operation
            seen["previous"] = dict(ctx.previous_outputs)
            return await local_create(ctx)

        registry.register(NodeKind.NODE_POOL, Operation.UPDATE, update_pool)

        report = apply(graph_for(nodes), config, state_service, registry)

        assert report.outcome_of("node_pool.main") == NodeOutcome.UPDATED
        assert seen["operation"] == Operation.UPDATE
        assert seen["previous"]["node_count"] == 1
        assert report.outcome_of("cluster.main") == NodeOutcome.UNCHANGED
        assert state_service.load("recon").get("node_pool.main").outputs["node_count"] == 5

    def test_failure_then_fix_resumes(self, nodes, config, state_service):
        nodes[2]["attributes"]["simulate_failure"] = True
        apply(graph_for(nodes), config, state_service)

        nodes[2]["attributes"]["simulate_failure"] = False
        report = apply(graph_for(nodes), config, state_service)

        assert report.outcome_of("network.main") == NodeOutcome.UNCHANGED
        assert report.outcome_of("sql_database.app") == NodeOutcome.CREATED
        assert report.exit_code == 0

    def test_cancelled_apply_is_resumable(self, config, state_service):
        chain = [
            {"kind": "network", "label": "main"},
            {"kind": "subnetwork", "label": "main", "attributes": {
                "network": ref("network.main", "self_link"),
                "ip_cidr_range": "10.0.0.0/24",
            }},
            {"kind": "cluster", "label": "main", "attributes": {
                "subnetwork": ref("subnetwork.main", "self_link"),
            }},
            {"kind": "node_pool", "label": "main", "attributes": {
                "cluster": ref("cluster.main", "name"),
            }},
        ]
        graph = graph_for(chain)

        async def interrupted_run():
            started = asyncio.Event()
            registry = local_registry()

            async def hang(ctx: HandlerContext) -> HandlerResult:
                started.set()
                await asyncio.sleep(3600)
                return HandlerResult.success_result()

            registry.register(NodeKind.CLUSTER, Operation.CREATE, hang, replace=True)
            task = asyncio.create_task(Reconciler(config, state_service, registry).apply(graph))
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(interrupted_run())

        state = state_service.load("recon")
        assert set(state.records) == {"network.main", "subnetwork.main"}

        report = apply(graph, config, state_service)

        assert report.outcome_of("network.main") == NodeOutcome.UNCHANGED
        assert report.outcome_of("subnetwork.main") == NodeOutcome.UNCHANGED
        assert report.outcome_of("cluster.main") == NodeOutcome.CREATED
        assert report.outcome_of("node_pool.main") == NodeOutcome.CREATED

    def test_orphans_removed(self, nodes, config, state_service):
        apply(graph_for(nodes), config, state_service)
        remaining = [n for n in nodes if n["kind"] not in ("action", "output", "service")]

        report = apply(graph_for(remaining), config, state_service)

        assert report.outcome_of("service.web") == NodeOutcome.DESTROYED
        assert report.outcome_of("action.open") == NodeOutcome.DESTROYED
        assert report.outcome_of("output.address") == NodeOutcome.DESTROYED
        state = state_service.load("recon")
        assert state.get("service.web") is None
        assert "address" not in state.outputs


# ============================================================================
# DESTROY
# ============================================================================

class TestDestroy:
    """Teardown in reverse dependency order."""

    def _recording_registry(self, deleted: List[str], fail: str = ""):
        registry = local_registry()

        async def recording_delete(ctx: HandlerContext) -> HandlerResult:
            if ctx.node_name == fail:
                return HandlerResult.failure_result("resource in use")
            deleted.append(ctx.node_name)
            return await local_delete(ctx)

        for kind in NodeKind:
            if registry.has(kind, Operation.DELETE) and kind != NodeKind.ACTION:
                registry.register(kind, Operation.DELETE, recording_delete, replace=True)
        return registry

    def test_destroy_chain_in_reverse(self, config, state_service):
        chain = [
            {"kind": "network", "label": "main"},
            {"kind": "subnetwork", "label": "main", "attributes": {
                "network": ref("network.main", "self_link"),
                "ip_cidr_range": "10.0.0.0/24",
            }},
            {"kind": "cluster", "label": "main", "attributes": {
                "subnetwork": ref("subnetwork.main", "self_link"),
            }},
        ]
        graph = graph_for(chain)
        apply(graph, config, state_service)
        deleted = []

        report = destroy(graph, config, state_service, self._recording_registry(deleted))

        assert deleted == graph.destroy_order()
        assert report.names_with(NodeOutcome.DESTROYED) == graph.destroy_order()
        assert state_service.load("recon").is_empty

    def test_destroy_respects_dependents(self, nodes, config, state_service):
        graph = graph_for(nodes)
        apply(graph, config, state_service)
        deleted = []

        report = destroy(graph, config, state_service, self._recording_registry(deleted))

        assert report.exit_code == 0
        position = {name: i for i, name in enumerate(report.execution_order)}
        for name in graph.create_order():
            for dep in graph.get_dependencies(name):
                assert position[name] < position[dep]

    def test_failed_destroy_keeps_predecessors(self, nodes, config, state_service):
        graph = graph_for(nodes)
        apply(graph, config, state_service)

        report = destroy(graph, config, state_service, self._recording_registry([], fail="subnetwork.main"))

        assert report.outcome_of("subnetwork.main") == NodeOutcome.FAILED
        assert report.outcome_of("network.main") == NodeOutcome.SKIPPED
        assert report.outcome_of("cluster.main") == NodeOutcome.DESTROYED
        assert report.exit_code == 1
        state = state_service.load("recon")
        assert set(state.records) == {"network.main", "subnetwork.main"}

    def test_destroy_absent_nodes_unchanged(self, nodes, config, state_service):
        graph = graph_for(nodes)

        report = destroy(graph, config, state_service)

        assert report.names_with(NodeOutcome.UNCHANGED) == graph.destroy_order()
        assert report.exit_code == 0
