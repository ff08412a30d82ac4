"""Common exception hierarchy used across ComputeFabric.

Each error carries the HTTP status the API surface answers with, so handlers never
have to translate individual exception types.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict


@dataclass(eq=False)
class FabricError(RuntimeError):
    message: str
    code: str = ""
    metadata: Dict[str, Any] = None  # type: ignore[assignment]

    default_code: ClassVar[str] = "fabric_error"
    status_code: ClassVar[int] = 500

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if not self.code:
            self.code = self.default_code
        if self.metadata is None:
            self.metadata = {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "metadata": self.metadata}


class InvalidInput(FabricError):
    """Malformed request data; never retried."""

    default_code = "invalid_input"
    status_code = 400


class InvalidImage(InvalidInput):
    default_code = "invalid_image"


class NotFound(FabricError):
    default_code = "not_found"
    status_code = 404


class InvalidTransition(FabricError):
    """The job or provider is not in a state that allows the requested move."""

    default_code = "invalid_transition"
    status_code = 409


class Forbidden(FabricError):
    default_code = "forbidden"
    status_code = 403


class TransientStoreError(FabricError):
    """The persistence layer is unavailable; callers may retry with backoff."""

    default_code = "transient_store_error"
    status_code = 503


__all__ = [
    "FabricError",
    "Forbidden",
    "InvalidImage",
    "InvalidInput",
    "InvalidTransition",
    "NotFound",
    "TransientStoreError",
]
