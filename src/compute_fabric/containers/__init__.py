"""Container configuration validation and rendering for assigned jobs."""

from .config import (
    DEFAULT_CPU_LIMIT,
    DEFAULT_MEMORY_LIMIT,
    ContainerConfig,
    build_config,
    render_run_command,
    validate_image_reference,
    validate_memory_limit,
)

__all__ = [
    "DEFAULT_CPU_LIMIT",
    "DEFAULT_MEMORY_LIMIT",
    "ContainerConfig",
    "build_config",
    "render_run_command",
    "validate_image_reference",
    "validate_memory_limit",
]
