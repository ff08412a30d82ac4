"""ComputeFabric job scheduling and settlement engine."""

__version__ = "0.1.0"

__all__ = [
    "api",
    "cli",
    "containers",
    "core",
    "utils",
]
