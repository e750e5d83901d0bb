"""
Error taxonomy for semantic relatedness queries and builds.

Every failure raised by the core derives from SRError and carries a
machine-readable code alongside the human-readable message:

    try:
        engine.most_similar(42, k=10)
    except NotBuiltError as e:
        print(e.code, e.message)   # NOT_BUILT, Feature matrix ... has not been built

Query-time errors are always raised to the caller, never replaced by
empty results. The API layer maps them to HTTP responses.
"""

from typing import Any


class SRError(Exception):
    """Base exception for semantic relatedness failures."""

    code = "SR_ERROR"

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class NotFoundError(SRError):
    """Unknown concept id, or phrase with no resolution fallback."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any, context: str | None = None):
        message = f"{resource} not found: {identifier!r}"
        detail = f"{resource} {identifier!r} in {context}" if context else None
        super().__init__(message, detail)
        self.resource = resource
        self.identifier = identifier


class NotBuiltError(SRError):
    """Query issued before the required feature matrix exists."""

    code = "NOT_BUILT"

    def __init__(self, metric: str, language: str):
        super().__init__(
            f"Feature matrix for metric '{metric}' ({language}) has not been built",
            detail="Run a build for this metric and language before querying",
        )
        self.metric = metric
        self.language = language


class NotFittedError(SRError):
    """Normalization requested before the normalizer was fitted."""

    code = "NOT_FITTED"


class ConfigurationError(SRError):
    """Invalid metric, language, normalizer or ensemble configuration."""

    code = "CONFIGURATION_ERROR"


class NormalizationError(SRError):
    """Normalizer could not be fitted (e.g. empty sample)."""

    code = "NORMALIZATION_ERROR"


class CapacityExceededError(SRError):
    """Request exceeds the configured result size ceiling."""

    code = "CAPACITY_EXCEEDED"

    def __init__(self, requested: int, limit: int, what: str = "result cells"):
        super().__init__(
            f"Requested {requested:,} {what} exceeds the limit of {limit:,}",
        )
        self.requested = requested
        self.limit = limit


class BuildIOError(SRError, OSError):
    """Persistence failure while building or publishing a feature matrix."""

    code = "BUILD_IO_ERROR"


class BuildCancelledError(SRError):
    """A build was cancelled cooperatively; partial output was discarded."""

    code = "BUILD_CANCELLED"
