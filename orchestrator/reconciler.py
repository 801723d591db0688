# ============================================================================
# RECONCILER
# ============================================================================
# STATUS: Core - Apply / destroy execution engine
# PURPOSE: Drive providers in dependency order, isolate failures to the
#          failed node's subtree, record state after every node
# CREATED: 17 OCT 2026
# ============================================================================
"""
Reconciler

Executes a DependencyGraph against the provider registry.

Apply:
1. One asyncio task per node; each waits for its predecessors
2. A predecessor failed or was skipped -> node is SKIPPED
3. Resolved fingerprint equals recorded fingerprint -> UNCHANGED
   (provider not called, recorded outputs reused)
4. Otherwise provider create/update -> CREATED / UPDATED, or FAILED
5. State is saved after every successful node
6. Recorded nodes no longer declared (orphans) are removed last

Destroy walks the same graph in reverse: a node is removed only after
everything depending on it is gone.

Independent nodes run concurrently, bounded by config.max_parallel.
Because only completed nodes are recorded, a cancelled run can be resumed
by running it again: recorded nodes come back UNCHANGED and execution
continues from the first unsatisfied node.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Set

from core.config import ProvisioningConfig
from core.contracts import NodeKind, NodeOutcome, NodeVariant, Operation, RunOperation
from core.errors import (
    NodeCreationError,
    OrderingViolationError,
    StackGraphError,
)
from core.logging import log_checkpoint, log_context
from core.models import BaseNode, NodeRecord, NodeReport, RunReport, StackState
from handlers.registry import (
    HandlerContext,
    HandlerNotFoundError,
    HandlerRegistry,
    execute_handler,
    get_registry,
)
from orchestrator.engine.graph import DependencyGraph
from orchestrator.engine.planner import fingerprint, node_payload, orphan_destroy_order, teardown_order
from services.state_service import StateService

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reconciler:
    """
    Apply / destroy engine.

    Stateless between runs: everything a run needs comes from the graph,
    the state service and the config.
    """

    def __init__(
        self,
        config: ProvisioningConfig,
        state_service: StateService,
        registry: Optional[HandlerRegistry] = None,
    ):
        self.config = config
        self.state_service = state_service
        self.registry = registry or get_registry()

    # ==================================================================
    # PUBLIC API
    # ==================================================================

    async def apply(self, graph: DependencyGraph) -> RunReport:
        """Create/update every node in dependency order."""
        state = self.state_service.load(graph.stack)
        self._preflight(graph, state)

        report = RunReport(stack=graph.stack, operation=RunOperation.APPLY, started_at=_utcnow())
        run_id = uuid.uuid4().hex[:12]

        with log_context(run_id=run_id, stack=graph.stack, operation="apply"):
            log_checkpoint("run_started", {"operation": "apply", "nodes": len(graph)})

            outcomes: Dict[str, NodeOutcome] = {}
            finished = {name: asyncio.Event() for name in graph.create_order()}
            semaphore = asyncio.Semaphore(self.config.max_parallel)

            async def run_node(name: str) -> None:
                deps = graph.get_dependencies(name)
                try:
                    await asyncio.gather(*(finished[d].wait() for d in deps))
                    with log_context(node=name):
                        node_report = await self._apply_one(
                            graph, state, name, outcomes, semaphore,
                        )
                    outcomes[name] = node_report.outcome
                    report.add(node_report)
                finally:
                    finished[name].set()

            await asyncio.gather(*(
                asyncio.create_task(run_node(name), name=f"apply:{name}")
                for name in graph.create_order()
            ))

            await self._prune_orphans(graph, state, report, semaphore)

            report.outputs = {
                node.label: state.outputs[node.label]
                for node in graph.output_nodes()
                if node.label in state.outputs
            }
            state.sensitive_outputs = sorted(
                node.label for node in graph.output_nodes() if node.sensitive
            )
            self.state_service.save(state)

            report.completed_at = _utcnow()
            log_checkpoint("run_completed", {"summary": report.summary()})

        return report

    async def destroy(self, graph: DependencyGraph) -> RunReport:
        """Remove every recorded node, dependents first."""
        state = self.state_service.load(graph.stack)
        order, predecessors = teardown_order(graph, state)

        report = RunReport(stack=graph.stack, operation=RunOperation.DESTROY, started_at=_utcnow())
        run_id = uuid.uuid4().hex[:12]

        successors: Dict[str, Set[str]] = {name: set() for name in order}
        for name, deps in predecessors.items():
            for dep in deps:
                successors[dep].add(name)

        with log_context(run_id=run_id, stack=graph.stack, operation="destroy"):
            log_checkpoint("run_started", {"operation": "destroy", "nodes": len(order)})

            for name in graph.destroy_order():
                if state.get(name) is None:
                    report.add(NodeReport(name=name, outcome=NodeOutcome.UNCHANGED))

            outcomes: Dict[str, NodeOutcome] = {}
            finished = {name: asyncio.Event() for name in order}
            semaphore = asyncio.Semaphore(self.config.max_parallel)

            async def run_node(name: str) -> None:
                try:
                    await asyncio.gather(*(finished[s].wait() for s in successors[name]))
                    with log_context(node=name):
                        node_report = await self._destroy_one(
                            graph, state, name, successors[name], outcomes, semaphore,
                        )
                    outcomes[name] = node_report.outcome
                    report.add(node_report)
                finally:
                    finished[name].set()

            await asyncio.gather(*(
                asyncio.create_task(run_node(name), name=f"destroy:{name}")
                for name in order
            ))

            self.state_service.save(state)
            report.completed_at = _utcnow()
            log_checkpoint("run_completed", {"summary": report.summary()})

        return report

    def apply_sync(self, graph: DependencyGraph) -> RunReport:
        return asyncio.run(self.apply(graph))

    def destroy_sync(self, graph: DependencyGraph) -> RunReport:
        return asyncio.run(self.destroy(graph))

    # ==================================================================
    # APPLY
    # ==================================================================

    def _preflight(self, graph: DependencyGraph, state: StackState) -> None:
        """
        Fail before any side effect if a provider handler is missing.

        Raises:
            HandlerNotFoundError
        """
        required = []
        for name in graph.create_order():
            node = graph.get_node(name)
            variant = NodeVariant(node.variant)
            if variant == NodeVariant.OUTPUT:
                continue
            operation = Operation.READ if variant == NodeVariant.DATA else Operation.CREATE
            required.append((node.kind, operation))
        for name in set(state.records) - set(graph.nodes):
            record = state.records[name]
            if record.variant in (NodeVariant.RESOURCE, NodeVariant.ACTION):
                required.append((record.kind, Operation.DELETE))

        missing = self.registry.missing_for(required)
        if missing:
            kind, operation = missing[0]
            raise HandlerNotFoundError(kind, operation)

    async def _apply_one(
        self,
        graph: DependencyGraph,
        state: StackState,
        name: str,
        outcomes: Mapping[str, NodeOutcome],
        semaphore: asyncio.Semaphore,
    ) -> NodeReport:
        started = time.monotonic()
        deps = graph.get_dependencies(name)

        blocked = sorted(d for d in deps if d in outcomes and not outcomes[d].is_successful())
        if blocked:
            logger.warning(f"Skipping {name}: dependency did not complete ({', '.join(blocked)})")
            return NodeReport(
                name=name,
                outcome=NodeOutcome.SKIPPED,
                error_message=f"dependency failed or skipped: {', '.join(blocked)}",
            )

        try:
            self._check_ordering(name, deps, outcomes)
            outcome = await self._reconcile_node(graph, state, name, semaphore)
        except NodeCreationError as e:
            log_checkpoint("node_failed", {"error": e.provider_error})
            logger.error(str(e))
            return self._report(name, NodeOutcome.FAILED, started, str(e))
        except StackGraphError as e:
            logger.exception(f"Node {name} could not be applied")
            return self._report(name, NodeOutcome.FAILED, started, str(e))

        logger.info(f"{name}: {outcome.value}")
        return self._report(name, outcome, started)

    def _check_ordering(
        self,
        name: str,
        deps: FrozenSet[str],
        outcomes: Mapping[str, NodeOutcome],
    ) -> None:
        unsatisfied = [d for d in deps if d not in outcomes or not outcomes[d].is_successful()]
        if unsatisfied:
            raise OrderingViolationError(name, unsatisfied)

    async def _reconcile_node(
        self,
        graph: DependencyGraph,
        state: StackState,
        name: str,
        semaphore: asyncio.Semaphore,
    ) -> NodeOutcome:
        node = graph.get_node(name)
        variant = NodeVariant(node.variant)
        record = state.get(name)

        known = {n: r.outputs for n, r in state.records.items()}
        payload = node_payload(node, known)
        desired = fingerprint(node, payload)

        if variant == NodeVariant.OUTPUT:
            outputs = {"value": payload["value"]}
            state.outputs[node.label] = payload["value"]
        elif variant == NodeVariant.DATA:
            result = await self._call(node, Operation.READ, payload, record, semaphore)
            outputs = result
        elif record is not None and record.fingerprint == desired:
            return NodeOutcome.UNCHANGED
        else:
            operation = Operation.UPDATE if record is not None else Operation.CREATE
            outputs = await self._call(node, operation, payload, record, semaphore)

        if record is None:
            outcome = NodeOutcome.CREATED
        elif record.fingerprint == desired and record.outputs == outputs:
            outcome = NodeOutcome.UNCHANGED
        else:
            outcome = NodeOutcome.UPDATED

        state.record(NodeRecord(
            name=name,
            kind=node.kind,
            variant=variant,
            fingerprint=desired,
            outputs=outputs,
            depends_on=sorted(graph.get_dependencies(name)),
        ))
        self.state_service.save(state)
        return outcome

    async def _call(
        self,
        node: BaseNode,
        operation: Operation,
        payload: Dict[str, Any],
        record: Optional[NodeRecord],
        semaphore: asyncio.Semaphore,
    ) -> Dict[str, Any]:
        """
        Run one provider call under the concurrency limit and timeout.

        Raises:
            NodeCreationError on provider failure, timeout or missing handler
        """
        return await self._invoke(
            name=node.name,
            kind=node.kind,
            operation=operation,
            attributes=payload.get("attributes", {}),
            command=payload.get("command"),
            previous_outputs=record.outputs if record is not None else {},
            timeout=node.timeout_seconds or self.config.node_timeout_seconds,
            semaphore=semaphore,
        )

    async def _invoke(
        self,
        name: str,
        kind: NodeKind,
        operation: Operation,
        attributes: Dict[str, Any],
        command: Optional[List[str]],
        previous_outputs: Dict[str, Any],
        timeout: int,
        semaphore: asyncio.Semaphore,
    ) -> Dict[str, Any]:
        ctx = HandlerContext(
            node_name=name,
            kind=kind,
            operation=operation,
            attributes=attributes,
            config=self.config,
            timeout_seconds=timeout,
            previous_outputs=dict(previous_outputs),
            command=command,
        )

        async with semaphore:
            logger.debug(f"{operation.value} {name}")
            try:
                result = await asyncio.wait_for(execute_handler(self.registry, ctx), timeout)
            except asyncio.TimeoutError:
                raise NodeCreationError(name, f"{operation.value} timed out after {timeout}s")
            except HandlerNotFoundError as e:
                raise NodeCreationError(name, str(e))

        if not result.success:
            raise NodeCreationError(name, result.error_message or f"{operation.value} failed")
        return result.outputs

    async def _prune_orphans(
        self,
        graph: DependencyGraph,
        state: StackState,
        report: RunReport,
        semaphore: asyncio.Semaphore,
    ) -> None:
        """Remove recorded nodes that are no longer declared."""
        orphans = set(state.records) - set(graph.nodes)
        if not orphans:
            return

        failed: Set[str] = set()
        for name in orphan_destroy_order(state, orphans):
            record = state.records[name]
            if any(name in state.records[other].depends_on for other in failed):
                report.add(NodeReport(name=name, outcome=NodeOutcome.SKIPPED,
                                      error_message="dependent orphan could not be removed"))
                failed.add(name)
                continue
            with log_context(node=name):
                node_report = await self._remove(name, record, {}, state, semaphore)
            if node_report.outcome != NodeOutcome.DESTROYED:
                failed.add(name)
            report.add(node_report)

    # ==================================================================
    # DESTROY
    # ==================================================================

    async def _destroy_one(
        self,
        graph: DependencyGraph,
        state: StackState,
        name: str,
        dependents: Set[str],
        outcomes: Mapping[str, NodeOutcome],
        semaphore: asyncio.Semaphore,
    ) -> NodeReport:
        started = time.monotonic()

        remaining = sorted(
            d for d in dependents
            if outcomes.get(d) not in (NodeOutcome.DESTROYED, NodeOutcome.UNCHANGED)
        )
        if remaining:
            logger.warning(f"Keeping {name}: dependents still exist ({', '.join(remaining)})")
            return NodeReport(
                name=name,
                outcome=NodeOutcome.SKIPPED,
                error_message=f"dependents still exist: {', '.join(remaining)}",
            )

        record = state.records[name]
        attributes: Dict[str, Any] = {}
        if name in graph:
            attributes = self._best_effort_attributes(graph.get_node(name), state)

        node_report = await self._remove(name, record, attributes, state, semaphore)
        node_report.duration_ms = int((time.monotonic() - started) * 1000)
        return node_report

    def _best_effort_attributes(self, node: BaseNode, state: StackState) -> Dict[str, Any]:
        known = {n: r.outputs for n, r in state.records.items()}
        try:
            return node_payload(node, known).get("attributes", {})
        except StackGraphError:
            return {}

    async def _remove(
        self,
        name: str,
        record: NodeRecord,
        attributes: Dict[str, Any],
        state: StackState,
        semaphore: asyncio.Semaphore,
    ) -> NodeReport:
        """Delete one recorded node and forget it."""
        started = time.monotonic()

        if record.variant in (NodeVariant.RESOURCE, NodeVariant.ACTION):
            try:
                await self._invoke(
                    name=name,
                    kind=record.kind,
                    operation=Operation.DELETE,
                    attributes=attributes,
                    command=None,
                    previous_outputs=record.outputs,
                    timeout=self.config.node_timeout_seconds,
                    semaphore=semaphore,
                )
            except NodeCreationError as e:
                log_checkpoint("node_failed", {"error": e.provider_error})
                logger.error(str(e))
                return self._report(name, NodeOutcome.FAILED, started, str(e))

        state.forget(name)
        self.state_service.save(state)
        logger.info(f"{name}: destroyed")
        return self._report(name, NodeOutcome.DESTROYED, started)

    # ==================================================================
    # HELPERS
    # ==================================================================

    @staticmethod
    def _report(
        name: str,
        outcome: NodeOutcome,
        started: float,
        error_message: Optional[str] = None,
    ) -> NodeReport:
        return NodeReport(
            name=name,
            outcome=outcome,
            error_message=error_message[:2000] if error_message else None,
            duration_ms=int((time.monotonic() - started) * 1000),
        )


__all__ = ["Reconciler"]
