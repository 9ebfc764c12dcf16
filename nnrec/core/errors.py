"""
Error taxonomy for recommendation backends.
Every failure surfaces to the immediate caller as one of these; nothing is retried.
"""

from typing import Any, Dict, List, Optional


class RecommendError(Exception):
    """Base class for all recommendation failures."""


class NotFoundError(RecommendError):
    """Subject has no resolvable vector or mapping."""

    def __init__(self, subject_id: Any = None, message: str = "vector not found"):
        self.subject_id = subject_id
        if subject_id is not None:
            message = f"{message}: {subject_id!r}"
        super().__init__(message)


class IncompatibleIdError(RecommendError):
    """Identifier could not be converted into the backend's key type."""

    def __init__(self, subject_id: Any = None, message: str = "incompatible ID type for operation"):
        self.subject_id = subject_id
        if subject_id is not None:
            message = f"{message}: {subject_id!r}"
        super().__init__(message)


class StorageError(RecommendError):
    """Persistent environment unreachable or a transaction failed."""


class SearchIndexError(RecommendError):
    """Similarity-search engine reported a failure."""


class ValidationError(RecommendError):
    """
    Construction-time invariant violated. The backend is never produced.

    Args:
        message: Human readable summary
        errors: One {"field", "message"} entry per invalid or missing field
    """

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None):
        self.errors = errors or []
        if self.errors:
            listed = "; ".join(f"{e['field']}: {e['message']}" for e in self.errors)
            message = f"{message} ({listed})"
        super().__init__(message)

    @classmethod
    def from_pydantic(cls, exc, message: str = "invalid configuration",
                      extra: Optional[List[Dict[str, str]]] = None) -> "ValidationError":
        """Build from a pydantic ValidationError, keeping every field error."""
        errors = []
        for error in exc.errors():
            field = ".".join(str(part) for part in error.get("loc", ())) or "__root__"
            errors.append({"field": field, "message": error.get("msg", "invalid value")})
        if extra:
            errors.extend(extra)
        return cls(message, errors)
