from __future__ import annotations

from typing import Any, Dict, Optional

from authcore.service.errors import StoreUnavailable


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness or FK constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class StoreUnavailableError(StoreUnavailable):
    """Raised when Redis or Postgres cannot be reached.

    Fatal for the in-flight request; retries belong to the transport layer.
    """

    def __init__(self, backend: str, operation: str) -> None:
        super().__init__(detail={"backend": backend, "operation": operation})
        self.backend = backend
        self.operation = operation


__all__ = ["ConstraintViolation", "StoreUnavailableError"]
