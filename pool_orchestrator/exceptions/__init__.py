"""
Custom exceptions for the elastic pool orchestrator.

This module defines all custom exceptions used throughout the application
for consistent error handling and reporting.
"""
from typing import Any, Dict, List, Optional

from fastapi import status


class OrchestratorException(Exception):
    """
    Base exception for all orchestrator errors.

    All custom exceptions should inherit from this base class.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class PreconditionError(OrchestratorException):
    """
    Raised when an operation's preconditions do not hold.

    Always raised before any mutation is attempted.
    """

    def __init__(
        self,
        message: str,
        code: str = "precondition_failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"code": code, **(details or {})},
        )


class ResourceNotFoundError(PreconditionError):
    """Raised when a required resource does not exist."""

    def __init__(self, kind: str, resource_id: str, details: Optional[Dict[str, Any]] = None):
        self.kind = kind
        self.resource_id = resource_id
        super().__init__(
            message=f"{kind} '{resource_id}' not found",
            code=f"{kind}_not_found",
            details={"kind": kind, "resource_id": resource_id, **(details or {})},
        )
        self.status_code = status.HTTP_404_NOT_FOUND


class ConflictError(OrchestratorException):
    """
    Raised when a resource conflict occurs.

    Used when a second migration is requested for a database that is already moving.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class MigrationLockedError(ConflictError):
    """Raised when another run holds the migration lock of a database."""

    def __init__(self, database_id: str, held_by: Optional[Dict[str, Any]] = None):
        self.database_id = database_id
        self.held_by = held_by or {}
        super().__init__(
            message=f"A migration of '{database_id}' is already in progress",
            details={"database_id": database_id, "held_by": held_by},
        )


class ProviderError(OrchestratorException):
    """
    Raised when a resource provider call fails.

    Carries the provider's original detail.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Provider error: {message}",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details,
        )


class QueryExecutionError(OrchestratorException):
    """Raised when a statement sent through the query channel fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Query error: {message}",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details,
        )


class NotificationError(OrchestratorException):
    """Raised when a notification cannot be delivered."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Notification error: {message}",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details,
        )


class MigrationFailedError(OrchestratorException):
    """
    Raised when a caller needs a failed migration to propagate.

    The migration driver itself reports failures as outcomes; provisioning
    turns a failed drift migration into this exception.
    """

    def __init__(self, database_id: str, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Migration failed for '{database_id}': {reason}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details or {"database_id": database_id, "reason": reason},
        )


class PipelineAbortedError(OrchestratorException):
    """Raised when a critical pipeline stage fails. Carries the run report."""

    def __init__(self, stage: str, reason: str, report: Any = None):
        self.stage = stage
        self.report = report
        super().__init__(
            message=f"Pipeline aborted: critical stage '{stage}' failed: {reason}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"stage": stage, "reason": reason},
        )


class StageFailedError(OrchestratorException):
    """Raised when a pipeline stage finished its work but some of its items failed."""

    def __init__(self, stage: str, failures: List[str]):
        super().__init__(
            message=f"{len(failures)} item(s) failed: " + "; ".join(failures),
            details={"stage": stage, "failures": failures},
        )


# Export all exceptions
__all__ = [
    "OrchestratorException",
    "PreconditionError",
    "ResourceNotFoundError",
    "ConflictError",
    "MigrationLockedError",
    "ProviderError",
    "QueryExecutionError",
    "NotificationError",
    "MigrationFailedError",
    "PipelineAbortedError",
    "StageFailedError",
]
