"""Pydantic v2 models for validation results and batch writes."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class FieldError(BaseModel):
    """One failed field check on a record."""

    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ValidationResult(BaseModel):
    """Either a valid record or the list of field errors that rejected it.

    Returned by the validators instead of raising, so a batch of thousands
    of rows can be screened without exception overhead.
    """

    model_config = ConfigDict(frozen=True)

    record: dict[str, Any] | None = None
    errors: list[FieldError] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @classmethod
    def valid(cls, record: dict[str, Any]) -> ValidationResult:
        return cls(record=record)

    @classmethod
    def invalid(cls, errors: list[FieldError]) -> ValidationResult:
        return cls(errors=errors)

    def summary(self) -> str:
        return "; ".join(f"{e.field}: {e.message}" for e in self.errors)


class BatchConfig(BaseModel):
    """Tuning for :class:`BatchProcessor`."""

    model_config = ConfigDict(frozen=True)

    batch_size: int = Field(default=1000, ge=1)
    max_retries: int = Field(
        default=3, ge=0, description="Retries after the first attempt of a chunk."
    )
    retry_delay: float = Field(
        default=1.0, ge=0, description="Base backoff in seconds, doubled per attempt."
    )
    parallel_batches: int = Field(default=3, ge=1)
    timeout: float = Field(default=30.0, gt=0, description="Seconds per attempt.")


class BatchResult(BaseModel):
    """Exact accounting for one :meth:`BatchProcessor.process` call.

    ``processed_count + error_count`` always equals the number of items
    submitted, and ``success`` is true only when ``error_count`` is zero.
    """

    model_config = ConfigDict(frozen=True)

    table: str
    success: bool
    processed_count: int
    error_count: int
    errors: list[str] = Field(default_factory=list)
    chunk_count: int = 0
    duration: float = Field(description="Wall-clock seconds.")
