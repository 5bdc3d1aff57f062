"""Pydantic v2 models for classified errors.

:class:`ProcessedError` is the classifier's output: a failure annotated with
category, severity, retryability and a retry delay.  Instances live in a
bounded in-memory ring for dashboards; they are not a system of record.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class ErrorCategory(str, Enum):
    NETWORK = "network"
    API = "api"
    PARSING = "parsing"
    VALIDATION = "validation"
    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    DATABASE = "database"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    ErrorSeverity.LOW: 0,
    ErrorSeverity.MEDIUM: 1,
    ErrorSeverity.HIGH: 2,
    ErrorSeverity.CRITICAL: 3,
}


class ErrorContext(BaseModel):
    """Where a failure happened."""

    model_config = ConfigDict(frozen=True)

    source: str | None = Field(default=None, description="Provider or subsystem.")
    operation: str | None = None
    entity_id: str | None = None
    job_id: str | None = None
    attempt: int | None = Field(default=None, ge=1)
    max_attempts: int | None = Field(default=None, ge=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ProcessedError(BaseModel):
    """A classified failure."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"err_{uuid4().hex[:16]}")
    category: ErrorCategory
    severity: ErrorSeverity
    is_retryable: bool
    is_rate_limited: bool
    retry_delay: float | None = Field(
        default=None, description="Seconds to wait before the next attempt."
    )
    message: str
    error_type: str = Field(description="Exception class name.")
    status_code: int | None = None
    context: ErrorContext = Field(default_factory=ErrorContext)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ErrorStats(BaseModel):
    """Aggregate view over the classifier's ring."""

    model_config = ConfigDict(frozen=True)

    total: int
    by_category: dict[str, int]
    by_severity: dict[str, int]
    by_source: dict[str, int]
    retryable: int
    non_retryable: int
    rate_limited: int
    last_hour: int
