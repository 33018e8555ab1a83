"""
pagelens utilities module.
"""

from pagelens.utils.config import ensure_directories, get_settings
from pagelens.utils.lifecycle import (
    ResourceLifecycleManager,
    ResourceType,
    cleanup_job,
    get_lifecycle_manager,
    register_browser_for_job,
)
from pagelens.utils.logging import (
    CausalTrace,
    LogContext,
    bind_context,
    configure_logging,
    get_logger,
    unbind_context,
)

__all__ = [
    # Config
    "get_settings",
    "ensure_directories",
    # Logging
    "get_logger",
    "configure_logging",
    "bind_context",
    "unbind_context",
    "LogContext",
    "CausalTrace",
    # Lifecycle
    "ResourceLifecycleManager",
    "ResourceType",
    "get_lifecycle_manager",
    "register_browser_for_job",
    "cleanup_job",
]
