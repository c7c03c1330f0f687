"""
Forest Exceptions

Typed error hierarchy for tree generation, storage, selection and the
mutation guard. Every error carries a message and a details dict so the
tool layer can serialize it without string parsing.
"""

from typing import Any


class ForestError(Exception):
    """Base class for all Forest errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Circuit breaker
# =============================================================================


class CircuitOpenError(ForestError):
    """Breaker is open; use the fallback immediately, do not retry."""

    def __init__(self, open_until: float, failure_count: int):
        super().__init__(
            message="Circuit breaker is open - intelligence provider temporarily disabled",
            details={"open_until": open_until, "failure_count": failure_count},
        )
        self.open_until = open_until


class CircuitTimeoutError(ForestError):
    """Provider did not answer within the timeout window."""

    def __init__(self, timeout_ms: int):
        super().__init__(
            message=f"Intelligence request timed out after {timeout_ms}ms",
            details={"timeout_ms": timeout_ms},
        )
        self.timeout_ms = timeout_ms


class ProviderUnavailableError(ForestError):
    """No intelligence provider is configured."""

    def __init__(self, message: str = "No intelligence provider configured"):
        super().__init__(message)


# =============================================================================
# Generation
# =============================================================================


class UnknownLevelError(ForestError):
    def __init__(self, level_key: str, known: list[str]):
        super().__init__(
            message=f"Unknown decomposition level: {level_key}",
            details={"level_key": level_key, "known_levels": known},
        )
        self.level_key = level_key


class SchemaValidationError(ForestError):
    """Provider response does not match the level schema."""

    def __init__(self, level_key: str, violations: list[str]):
        summary = "; ".join(violations[:5])
        if len(violations) > 5:
            summary += f" (+{len(violations) - 5} more)"
        super().__init__(
            message=f"Response for {level_key} failed schema validation: {summary}",
            details={"level_key": level_key, "violations": violations},
        )
        self.level_key = level_key
        self.violations = violations


class GenerationFailedError(ForestError):
    """Both the primary generator and every fallback failed."""

    def __init__(self, level_key: str, primary_error: BaseException, fallback_error: BaseException):
        super().__init__(
            message=(
                f"Generation for {level_key} failed: primary={primary_error}; "
                f"fallback={fallback_error}"
            ),
            details={
                "level_key": level_key,
                "primary_error": repr(primary_error),
                "fallback_error": repr(fallback_error),
            },
        )
        self.primary_error = primary_error
        self.fallback_error = fallback_error


# =============================================================================
# Storage
# =============================================================================


class TreeNotFoundError(ForestError):
    """No tree exists for the project/path; build one first."""

    def __init__(self, project_id: str, path_name: str):
        super().__init__(
            message=f"No HTA tree for project '{project_id}' path '{path_name}'",
            details={"project_id": project_id, "path_name": path_name},
        )
        self.project_id = project_id
        self.path_name = path_name


class TaskNotFoundError(ForestError):
    def __init__(self, task_id: str):
        super().__init__(message=f"Task not found: {task_id}", details={"task_id": task_id})
        self.task_id = task_id


class BranchNotFoundError(ForestError):
    def __init__(self, branch_name: str, known: list[str]):
        super().__init__(
            message=f"Strategic branch not found: {branch_name}",
            details={"branch": branch_name, "known_branches": known},
        )
        self.branch_name = branch_name


class VectorStoreError(ForestError):
    """Vector provider failed to read or write."""


# =============================================================================
# Mutation guard
# =============================================================================


class MutationRejectedError(ForestError):
    """Guard rejected a tree mutation; the tree was rolled back."""

    def __init__(self, message: str, function_name: str, violations: list[str]):
        super().__init__(
            message=message,
            details={"function_name": function_name, "violations": violations},
        )
        self.function_name = function_name
        self.violations = violations
