from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class UnknownFieldError(ValueError):
    """An update referenced a column the principal record does not have."""

    def __init__(self, names: set[str]):
        self.names = sorted(names)
        super().__init__(f"unknown principal fields: {', '.join(self.names)}")


__all__ = ["ConstraintViolation", "UnknownFieldError"]
