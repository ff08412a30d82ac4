"""Normalized, side-effect free run descriptors for job containers."""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from compute_fabric.core.exceptions import InvalidImage, InvalidInput

DEFAULT_MEMORY_LIMIT = "4g"
DEFAULT_CPU_LIMIT = 2.0

_SEGMENT = r"[a-z0-9]+(?:[._-]+[a-z0-9]+)*"
_IMAGE_REFERENCE = re.compile(
    rf"^(?:{_SEGMENT}(?::[0-9]{{1,5}})?/)?"  # optional registry host[:port]
    rf"{_SEGMENT}(?:/{_SEGMENT})*"
    r"(?::[A-Za-z0-9_.-]{1,128})?$"
)
_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_MEMORY_LIMIT = re.compile(r"^[0-9]+[bkmgBKMG]?$")


def validate_image_reference(ref: Any) -> bool:
    """Return True for ``[registry/]repository[:tag]`` references."""
    if not isinstance(ref, str) or not ref:
        return False
    return _IMAGE_REFERENCE.match(ref) is not None


def validate_memory_limit(value: Any) -> bool:
    """Return True for docker-style sizes such as ``512m`` or ``4G``."""
    return isinstance(value, str) and _MEMORY_LIMIT.match(value) is not None


@dataclass(frozen=True)
class ContainerConfig:
    """Describe how a provider should launch the container for a job."""

    image: str
    command: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    volumes: Dict[str, str] = field(default_factory=dict)
    gpu: bool = True
    memory_limit: str = DEFAULT_MEMORY_LIMIT
    cpu_limit: float = DEFAULT_CPU_LIMIT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image": self.image,
            "command": self.command,
            "env": dict(self.env),
            "volumes": dict(self.volumes),
            "gpu": self.gpu,
            "memoryLimit": self.memory_limit,
            "cpuLimit": self.cpu_limit,
        }


def _normalize_env(env: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    normalized: Dict[str, str] = {}
    for key, value in (env or {}).items():
        if not _ENV_NAME.match(str(key)):
            raise InvalidInput(f"Invalid environment variable name '{key}'", metadata={"env": str(key)})
        normalized[str(key)] = "" if value is None else str(value)
    return normalized


def _normalize_volumes(volumes: Optional[Mapping[str, str]]) -> Dict[str, str]:
    normalized: Dict[str, str] = {}
    for host_path, container_path in (volumes or {}).items():
        host = str(host_path).strip()
        target = str(container_path).strip()
        if not host or not target.startswith("/"):
            raise InvalidInput(
                f"Invalid volume mapping '{host_path}:{container_path}'",
                metadata={"volume": f"{host_path}:{container_path}"},
            )
        normalized[host] = target
    return normalized


def build_config(
    image: Any,
    command: Optional[str] = None,
    env: Optional[Mapping[str, Any]] = None,
    volumes: Optional[Mapping[str, str]] = None,
    gpu_requested: bool = True,
    *,
    memory_limit: str = DEFAULT_MEMORY_LIMIT,
    cpu_limit: float = DEFAULT_CPU_LIMIT,
) -> ContainerConfig:
    """Validate ``image`` and return a normalized :class:`ContainerConfig`."""
    if not validate_image_reference(image):
        raise InvalidImage(f"Invalid container image reference: {image!r}", metadata={"image": image})
    if not validate_memory_limit(memory_limit):
        raise InvalidInput(f"Invalid memory limit '{memory_limit}'")
    if cpu_limit <= 0:
        raise InvalidInput(f"CPU limit must be positive, got {cpu_limit}")

    command = command.strip() if command else None
    return ContainerConfig(
        image=image,
        command=command or None,
        env=_normalize_env(env),
        volumes=_normalize_volumes(volumes),
        gpu=gpu_requested,
        memory_limit=memory_limit,
        cpu_limit=float(cpu_limit),
    )


def render_run_command(config: ContainerConfig) -> str:
    """Render an equivalent ``docker run`` invocation for operators.

    Flags are emitted in a fixed order with env and volume entries sorted, so the
    same config always renders to the same string.
    """
    parts = ["docker", "run", "--rm"]
    if config.gpu:
        parts.extend(["--gpus", "all"])
    parts.extend(["--memory", config.memory_limit, "--cpus", f"{config.cpu_limit:g}"])
    for key in sorted(config.env):
        parts.extend(["-e", shlex.quote(f"{key}={config.env[key]}")])
    for host in sorted(config.volumes):
        parts.extend(["-v", shlex.quote(f"{host}:{config.volumes[host]}")])
    parts.append(config.image)
    if config.command:
        parts.append(config.command)
    return " ".join(parts)


__all__ = [
    "DEFAULT_CPU_LIMIT",
    "DEFAULT_MEMORY_LIMIT",
    "ContainerConfig",
    "build_config",
    "render_run_command",
    "validate_image_reference",
    "validate_memory_limit",
]
