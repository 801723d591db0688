# ============================================================================
# ACTION PROVIDER
# ============================================================================
# STATUS: Provider - Command execution for action nodes
# PURPOSE: Run side-effect commands (set project, fetch credentials, open
#          browser) with an explicit, config-derived environment
# CREATED: 15 OCT 2026
# ============================================================================
"""
Action Provider

Action nodes carry an argv list. The command is executed directly (no
shell) with the process environment plus the scope variables derived from
ProvisioningConfig (CLOUDSDK_CORE_PROJECT, GOOGLE_APPLICATION_CREDENTIALS,
KUBECONFIG, ...).

When config.run_actions is False the command is logged and reported as
successful without running.
"""

import asyncio
import logging
import os
import shlex

from core.contracts import NodeKind, Operation
from handlers.registry import HandlerContext, HandlerRegistry, HandlerResult, register_handler

logger = logging.getLogger(__name__)

# Keep this much of stderr in failure messages
STDERR_TAIL_CHARS = 1000


@register_handler(NodeKind.ACTION, Operation.CREATE, description="run command")
async def run_action(ctx: HandlerContext) -> HandlerResult:
    """Execute an action node's command."""
    if not ctx.command:
        return HandlerResult.failure_result(f"action {ctx.node_name} has no command")

    argv = [str(arg) for arg in ctx.command]
    printable = shlex.join(argv)

    if not ctx.config.run_actions:
        logger.info(f"Actions disabled, not running: {printable}")
        return HandlerResult.success_result({"command": printable, "executed": False})

    env = {**os.environ, **ctx.config.action_environment()}
    logger.info(f"Running action {ctx.node_name}: {printable}")

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except FileNotFoundError:
        return HandlerResult.failure_result(f"command not found: {argv[0]}")

    try:
        stdout, stderr = await process.communicate()
    except asyncio.CancelledError:
        process.kill()
        await process.wait()
        raise

    if process.returncode != 0:
        detail = stderr.decode(errors="replace").strip()[-STDERR_TAIL_CHARS:]
        return HandlerResult.failure_result(
            f"'{printable}' exited with {process.returncode}: {detail}"
        )

    logger.debug(f"Action {ctx.node_name} output: {stdout.decode(errors='replace').strip()}")
    return HandlerResult.success_result({
        "command": printable,
        "executed": True,
        "exit_code": process.returncode,
    })


@register_handler(NodeKind.ACTION, Operation.DELETE, description="no-op")
async def forget_action(ctx: HandlerContext) -> HandlerResult:
    """Actions have nothing to tear down."""
    return HandlerResult.success_result()


def register_action_provider(registry: HandlerRegistry) -> HandlerRegistry:
    """Register the action handlers on a registry other than the global one."""
    registry.register(NodeKind.ACTION, Operation.CREATE, run_action, description="run command")
    registry.register(NodeKind.ACTION, Operation.DELETE, forget_action, description="no-op")
    return registry


__all__ = [
    "run_action",
    "forget_action",
    "register_action_provider",
]
