# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 13 OCT 2026
# ============================================================================
"""
Configuration Module

Provides the ProvisioningConfig threaded through planning and execution.
"""

from core.config.defaults import (
    ENV_PREFIX,
    ProvisioningConfig,
    get_config,
    reset_config,
)

__all__ = [
    "ENV_PREFIX",
    "ProvisioningConfig",
    "get_config",
    "reset_config",
]
