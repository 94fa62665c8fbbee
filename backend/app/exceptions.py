"""Custom exception classes for DevGraph Engine.

All exceptions follow the DevGraph error format:
{
    "error": {
        "code": "DEVGRAPH_ERROR_CODE",
        "message": "Human-readable message",
        "details": {}  # optional
    }
}

Error messages must never echo submitted source code.
"""

from __future__ import annotations

from typing import Any


class DevGraphError(Exception):
    """Base exception for DevGraph Engine."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }
        if self.details:
            result["error"]["details"] = self.details
        return result


class ValidationError(DevGraphError):
    """Input validation error."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=422,
            details=details,
        )


class UnauthorizedError(DevGraphError):
    """Request carries no authenticated user."""

    def __init__(self) -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message="Authentication required",
            status_code=401,
        )


class SubmissionNotFoundError(DevGraphError):
    """Submission does not exist."""

    def __init__(self, submission_id: str) -> None:
        super().__init__(
            code="SUBMISSION_NOT_FOUND",
            message="Submission not found",
            status_code=404,
            details={"submission_id": submission_id},
        )


class AnalysisNotReadyError(DevGraphError):
    """Submission exists but its analysis has not been produced."""

    def __init__(self, submission_id: str, status: str, reason: str | None = None) -> None:
        details: dict[str, Any] = {"submission_id": submission_id, "status": status}
        if reason:
            details["reason"] = reason
        super().__init__(
            code="ANALYSIS_NOT_READY",
            message="Analysis is not ready yet",
            status_code=202,
            details=details,
        )


class StoreContentionError(DevGraphError):
    """A compare-and-set write lost a race. Callers retry."""

    def __init__(self, key: str) -> None:
        super().__init__(
            code="STORE_CONTENTION",
            message="Concurrent modification detected",
            status_code=409,
            details={"key": key},
        )


class ProfileUpdateError(DevGraphError):
    """Profile could not be updated after bounded retries."""

    def __init__(self, attempts: int) -> None:
        super().__init__(
            code="PROFILE_UPDATE_FAILED",
            message="Pattern profile update failed",
            status_code=503,
            details={"attempts": attempts},
        )


class BuildInProgressError(DevGraphError):
    """Another similarity graph build holds the build lock."""

    def __init__(self) -> None:
        super().__init__(
            code="BUILD_IN_PROGRESS",
            message="A similarity graph build is already running",
            status_code=409,
        )


class GraphBuildError(DevGraphError):
    """Similarity graph build failed. The previous snapshot stays current."""

    def __init__(self, message: str = "Graph build failed", reason: str = "error") -> None:
        super().__init__(
            code="GRAPH_BUILD_FAILED",
            message=message,
            status_code=504 if reason == "timeout" else 500,
            details={"reason": reason},
        )
        self.reason = reason


class BuildCancelledError(Exception):
    """Raised inside the pairwise computation when its build is abandoned."""
