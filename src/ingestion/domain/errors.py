"""Domain-specific errors.

Run-level errors are recorded on the source and crawl run by the orchestrator;
page-level errors end up in the page's `error` column.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class IngestionDomainError(Exception):
    """Base class for all domain errors."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message)
        self.info = DomainErrorInfo(code=self.code, message=message, detail=detail)


@dataclass(frozen=True)
class DomainErrorInfo:
    code: str
    message: str
    detail: Optional[str] = None


class InvalidInputError(IngestionDomainError):
    """Raised when a job payload or source configuration is unusable."""

    code = "INVALID_INPUT"


class InvalidURLError(IngestionDomainError):
    code = "INVALID_URL"


class NetworkTimeoutError(IngestionDomainError):
    code = "NETWORK_TIMEOUT"


class ContentProcessingError(IngestionDomainError):
    code = "CONTENT_PROCESSING_ERROR"


class ContentTooShortError(ContentProcessingError):
    code = "CONTENT_TOO_SHORT"


class DatabaseError(IngestionDomainError):
    code = "DATABASE_ERROR"


class NotFoundError(IngestionDomainError):
    code = "NOT_FOUND"


class InvalidTransitionError(IngestionDomainError):
    """Raised when a status write would move an entity along an illegal edge."""

    code = "INVALID_TRANSITION"


class CrawlInProgressError(IngestionDomainError):
    code = "CRAWL_IN_PROGRESS"
