# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# STATUS: Core - Provisioning configuration
# PURPOSE: Explicit project/credential/runtime settings threaded through
#          planner, reconciler and action providers
# CREATED: 13 OCT 2026
# ============================================================================
"""
Configuration Defaults

The active cloud project, region, credentials file and cluster context live
in one immutable ProvisioningConfig rather than in ambient shell state.
Action commands receive them as an explicit environment.

Design:
- Immutable dataclass for settings
- Environment variable overrides (STACKGRAPH_ prefix)
- Stack variables (project_id, region, zone) override environment values
"""

import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional


ENV_PREFIX = "STACKGRAPH_"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ProvisioningConfig:
    """
    Settings for a planning/apply pass.

    Built once per run and passed explicitly to every component.
    """
    # Cloud scope
    project_id: Optional[str] = None
    region: str = "us-central1"
    zone: str = "us-central1-a"
    credentials_file: Optional[str] = None
    kubeconfig: Optional[str] = None

    # State
    state_path: str = ".stackgraph/state.json"

    # Execution
    max_parallel: int = 4
    node_timeout_seconds: int = 1800  # 30 min - cluster creation is slow
    run_actions: bool = True

    # Logging
    log_level: str = "INFO"
    log_format: str = "human"

    def __post_init__(self):
        if self.max_parallel < 1:
            raise ValueError("max_parallel must be >= 1")
        if self.node_timeout_seconds < 1:
            raise ValueError("node_timeout_seconds must be >= 1")

    def with_variables(self, variables: Mapping[str, Any]) -> "ProvisioningConfig":
        """Take project/region/zone from bound stack variables when present."""
        overrides = {}
        for key in ("project_id", "region", "zone"):
            value = variables.get(key)
            if value is not None:
                overrides[key] = str(value)
        return replace(self, **overrides) if overrides else self

    def with_overrides(self, **kwargs) -> "ProvisioningConfig":
        """Copy with non-None overrides (CLI flags)."""
        overrides = {k: v for k, v in kwargs.items() if v is not None}
        return replace(self, **overrides) if overrides else self

    def action_environment(self) -> Dict[str, str]:
        """Environment variables that scope CLI commands run by action nodes."""
        env: Dict[str, str] = {}
        if self.project_id:
            env["CLOUDSDK_CORE_PROJECT"] = self.project_id
        if self.region:
            env["CLOUDSDK_COMPUTE_REGION"] = self.region
        if self.zone:
            env["CLOUDSDK_COMPUTE_ZONE"] = self.zone
        if self.credentials_file:
            env["GOOGLE_APPLICATION_CREDENTIALS"] = self.credentials_file
            env["CLOUDSDK_AUTH_CREDENTIAL_FILE_OVERRIDE"] = self.credentials_file
        if self.kubeconfig:
            env["KUBECONFIG"] = self.kubeconfig
        return env

    @classmethod
    def from_env(cls) -> "ProvisioningConfig":
        """Create from environment variables."""
        return cls(
            project_id=_env("PROJECT_ID"),
            region=_env("REGION", "us-central1"),
            zone=_env("ZONE", "us-central1-a"),
            credentials_file=_env("CREDENTIALS_FILE"),
            kubeconfig=_env("KUBECONFIG"),
            state_path=_env("STATE_PATH", ".stackgraph/state.json"),
            max_parallel=int(_env("MAX_PARALLEL", "4")),
            node_timeout_seconds=int(_env("NODE_TIMEOUT_SECONDS", "1800")),
            run_actions=_env_bool("RUN_ACTIONS", True),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "human"),
        )


# ============================================================================
# GLOBAL CONFIG INSTANCE
# ============================================================================

_config: Optional[ProvisioningConfig] = None


def get_config() -> ProvisioningConfig:
    """Get global config instance (environment based)."""
    global _config
    if _config is None:
        _config = ProvisioningConfig.from_env()
    return _config


def reset_config() -> None:
    """Reset config (for testing)."""
    global _config
    _config = None


__all__ = [
    "ENV_PREFIX",
    "ProvisioningConfig",
    "get_config",
    "reset_config",
]
