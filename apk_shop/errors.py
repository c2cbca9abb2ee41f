"""Error taxonomy shared by services and routers.

Every error carries a machine-readable ``code`` and the HTTP ``status_code``
the surface should answer with. Routers never build these responses by hand;
the handler registered in ``apk_shop.main`` renders them as::

    {"error": {"code": ..., "message": ..., "details": {...}}}
"""

from __future__ import annotations

from typing import Any, Optional


class ServiceError(Exception):
    """Base class for all service-level failures."""

    code = "SERVICE_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ServiceError):
    """Missing or malformed input; fixable by the caller."""

    code = "VALIDATION_ERROR"
    status_code = 400


class Unauthenticated(ServiceError):
    code = "UNAUTHENTICATED"
    status_code = 401


class Forbidden(ServiceError):
    code = "FORBIDDEN"
    status_code = 403


class NotFound(ServiceError):
    code = "NOT_FOUND"
    status_code = 404


class DuplicateVersion(ServiceError):
    code = "DUPLICATE_VERSION"
    status_code = 409


class NoPreviousVersion(ServiceError):
    code = "NO_PREVIOUS_VERSION"
    status_code = 400


class StorageError(ServiceError):
    """Blob Store or database failure.

    The message is shown to clients as-is, so it must stay opaque. Log the
    underlying exception where it is caught.
    """

    code = "STORAGE_ERROR"
    status_code = 500

    def __init__(self, message: str = "存储操作失败", details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message, details)
