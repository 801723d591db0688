#!/usr/bin/env python3
# ============================================================================
# STACKGRAPH CLI
# ============================================================================
# STATUS: Entry point - Command line interface
# PURPOSE: validate / graph / plan / apply / destroy / output for a stack
# CREATED: 17 OCT 2026
# ============================================================================
"""
stackgraph command line.

Usage:
    # Check a declaration without touching anything
    stackgraph validate stacks/wordpress --var-file stacks/wordpress/example.vars.yaml

    # Show creation order grouped into parallel waves
    stackgraph graph wordpress --var-file prod.vars.yaml

    # Preview changes against recorded state
    stackgraph plan wordpress --var-file prod.vars.yaml

    # Create / update everything
    stackgraph apply wordpress --var-file prod.vars.yaml --var database_password=...

    # Tear down in reverse dependency order
    stackgraph destroy wordpress --var-file prod.vars.yaml

    # Show recorded outputs
    stackgraph output wordpress --show-sensitive
    stackgraph output wordpress --name database_password

Exit codes:
    0  success
    1  one or more nodes failed
    2  declaration, variable, graph or state error (nothing was executed)

Environment:
    STACKGRAPH_STATE_PATH, STACKGRAPH_MAX_PARALLEL, STACKGRAPH_RUN_ACTIONS, ...
    STACKGRAPH_VAR_<name>   value for stack variable <name>
    LOG_LEVEL, LOG_FORMAT   (human | json)
"""

import argparse
import json
import sys
from typing import Any, Dict, Iterable, List, Optional, Tuple

from __version__ import __version__
from core.config import ProvisioningConfig, get_config
from core.contracts import ChangeAction, NodeOutcome
from core.errors import StackGraphError
from core.logging import ComponentType, configure_logging, get_logger
from core.models import RunReport, StackDeclaration
from handlers import HandlerError, get_registry
from orchestrator import Reconciler
from orchestrator.engine import DependencyGraph, Planner, build_graph
from services import DeclarationService, StateService, bind_variables, parse_var_assignments

logger = get_logger(__name__, ComponentType.CLI)

EXIT_OK = 0
EXIT_NODE_FAILURE = 1
EXIT_DECLARATION_ERROR = 2

MASK = "<sensitive>"

PLAN_SYMBOLS = {
    ChangeAction.CREATE: "+",
    ChangeAction.UPDATE: "~",
    ChangeAction.DELETE: "-",
    ChangeAction.READ: "<=",
    ChangeAction.NOOP: "=",
}


# ============================================================================
# ARGUMENTS
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "stack",
        help="Stack YAML file, directory of YAML files, or stack name under stacks/",
    )
    common.add_argument(
        "--var", action="append", default=[], metavar="NAME=VALUE",
        help="Variable value (repeatable, highest precedence)",
    )
    common.add_argument(
        "--var-file", action="append", default=[], metavar="PATH",
        help="YAML file of variable values (repeatable, later files win)",
    )
    common.add_argument("--state", default=None, help="State file path")
    common.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR")
    common.add_argument("--log-format", default=None, choices=["human", "json"])

    execution = argparse.ArgumentParser(add_help=False)
    execution.add_argument(
        "--parallelism", type=int, default=None,
        help="Maximum number of provider calls in flight",
    )
    execution.add_argument(
        "--timeout", type=int, default=None, dest="node_timeout_seconds",
        help="Per-node timeout in seconds",
    )
    execution.add_argument(
        "--no-actions", action="store_true",
        help="Log action commands instead of running them",
    )

    parser = argparse.ArgumentParser(
        prog="stackgraph",
        description="Declarative infrastructure provisioning driven by a dependency graph",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("validate", parents=[common], help="Validate declarations and build the graph")

    graph = sub.add_parser("graph", parents=[common], help="Show creation order")
    graph.add_argument(
        "--format", choices=["waves", "order", "destroy"], default="waves",
        help="waves: parallel levels; order: create order; destroy: destroy order",
    )

    sub.add_parser("plan", parents=[common], help="Preview changes against recorded state")
    sub.add_parser("apply", parents=[common, execution], help="Create or update every node")
    sub.add_parser("destroy", parents=[common, execution], help="Remove every recorded node")

    output = sub.add_parser("output", parents=[common], help="Show recorded outputs")
    output.add_argument("--name", help="Single output to print (raw value)")
    output.add_argument("--json", action="store_true", help="Print outputs as JSON")
    output.add_argument("--show-sensitive", action="store_true", help="Do not mask sensitive outputs")

    return parser


def build_config(args: argparse.Namespace) -> ProvisioningConfig:
    """Environment config with CLI flags on top."""
    no_actions = getattr(args, "no_actions", False)
    return get_config().with_overrides(
        state_path=args.state,
        log_level=args.log_level,
        log_format=args.log_format,
        max_parallel=getattr(args, "parallelism", None),
        node_timeout_seconds=getattr(args, "node_timeout_seconds", None),
        run_actions=False if no_actions else None,
    )


def load_stack(
    args: argparse.Namespace,
    config: ProvisioningConfig,
) -> Tuple[StackDeclaration, DependencyGraph, ProvisioningConfig]:
    """
    Load declarations, bind variables and build the graph.

    Raises:
        StackGraphError for any declaration, variable or graph problem
    """
    declaration = DeclarationService().load(args.stack)
    variables = bind_variables(
        declaration,
        var_files=args.var_file,
        cli_values=parse_var_assignments(args.var),
    )
    graph = build_graph(declaration, variables)
    return declaration, graph, config.with_variables(variables)


# ============================================================================
# COMMANDS
# ============================================================================

def cmd_validate(args: argparse.Namespace, config: ProvisioningConfig) -> int:
    declaration, graph, _ = load_stack(args, config)
    print(f"Stack '{declaration.stack}' is valid: {len(graph)} nodes, {len(graph.waves())} waves")
    return EXIT_OK


def cmd_graph(args: argparse.Namespace, config: ProvisioningConfig) -> int:
    _, graph, _ = load_stack(args, config)

    if args.format == "waves":
        for index, wave in enumerate(graph.waves(), start=1):
            print(f"wave {index}:")
            for name in wave:
                deps = sorted(graph.get_dependencies(name))
                suffix = f"  <- {', '.join(deps)}" if deps else ""
                print(f"  {name}{suffix}")
    else:
        order = graph.create_order() if args.format == "order" else graph.destroy_order()
        for index, name in enumerate(order, start=1):
            print(f"{index:3d}. {name}")
    return EXIT_OK


def cmd_plan(args: argparse.Namespace, config: ProvisioningConfig) -> int:
    _, graph, config = load_stack(args, config)
    state = StateService(config.state_path).load(graph.stack)
    plan = Planner().plan(graph, state)

    for change in plan.changes:
        symbol = PLAN_SYMBOLS[change.action]
        reason = f"  ({change.reason})" if change.reason else ""
        print(f"{symbol:>2} {change.action.value:<6} {change.name}{reason}")
    print()
    print(plan.summary())
    return EXIT_OK


def cmd_apply(args: argparse.Namespace, config: ProvisioningConfig) -> int:
    _, graph, config = load_stack(args, config)
    reconciler = Reconciler(config, StateService(config.state_path), get_registry())
    report = reconciler.apply_sync(graph)

    print_report(report)
    if report.outputs:
        sensitive = {node.label for node in graph.output_nodes() if node.sensitive}
        print()
        print("Outputs:")
        print_outputs(report.outputs, sensitive, show_sensitive=False)
    return report.exit_code


def cmd_destroy(args: argparse.Namespace, config: ProvisioningConfig) -> int:
    _, graph, config = load_stack(args, config)
    reconciler = Reconciler(config, StateService(config.state_path), get_registry())
    report = reconciler.destroy_sync(graph)

    print_report(report)
    return report.exit_code


def cmd_output(args: argparse.Namespace, config: ProvisioningConfig) -> int:
    # Outputs come from state; variables are not needed.
    declaration = DeclarationService().load(args.stack)
    state = StateService(config.state_path).load(declaration.stack)
    sensitive = set(state.sensitive_outputs)

    if args.name:
        if args.name not in state.outputs:
            print(f"ERROR: no output named '{args.name}'", file=sys.stderr)
            return EXIT_NODE_FAILURE
        value = state.outputs[args.name]
        print(value if isinstance(value, str) else json.dumps(value))
        return EXIT_OK

    if args.json:
        values = {
            name: (MASK if name in sensitive and not args.show_sensitive else value)
            for name, value in state.outputs.items()
        }
        print(json.dumps(values, indent=2, sort_keys=True, default=str))
    else:
        print_outputs(state.outputs, sensitive, args.show_sensitive)
    return EXIT_OK


COMMANDS = {
    "validate": cmd_validate,
    "graph": cmd_graph,
    "plan": cmd_plan,
    "apply": cmd_apply,
    "destroy": cmd_destroy,
    "output": cmd_output,
}


# ============================================================================
# PRINTING
# ============================================================================

def print_report(report: RunReport) -> None:
    for name, result in report.results.items():
        line = f"  {result.outcome.value:<10} {name}"
        if result.duration_ms:
            line += f" ({result.duration_ms} ms)"
        print(line)
        if result.outcome in (NodeOutcome.FAILED, NodeOutcome.SKIPPED) and result.error_message:
            print(f"             {result.error_message}")
    print()
    print(report.summary())


def print_outputs(
    outputs: Dict[str, Any],
    sensitive: Iterable[str],
    show_sensitive: bool,
) -> None:
    hidden = set(sensitive)
    for name in sorted(outputs):
        value = outputs[name]
        if name in hidden and not show_sensitive:
            value = MASK
        print(f"  {name} = {value}")


# ============================================================================
# MAIN
# ============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_DECLARATION_ERROR

    configure_logging(config.log_level, json_output=config.log_format == "json")
    logger.debug(f"stackgraph {__version__}: {args.command} {args.stack}")

    try:
        return COMMANDS[args.command](args, config)
    except (StackGraphError, HandlerError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_DECLARATION_ERROR
    except KeyboardInterrupt:
        print("Interrupted. Completed nodes are recorded; run again to resume.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
