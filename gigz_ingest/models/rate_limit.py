"""Pydantic v2 models for the distributed rate limiter."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RateLimitAlgorithm(str, Enum):
    """Quota algorithms supported by :class:`DistributedRateLimiter`.

    - FIXED_WINDOW: one counter per ``floor(now / window)``.  Cheap, but a
      burst straddling a window boundary can admit up to twice the limit.
    - SLIDING_WINDOW: sorted set of request timestamps; exact over any
      rolling window.
    - TOKEN_BUCKET: continuous refill at ``limit / window`` tokens/second;
      supports weighted requests.
    """

    FIXED_WINDOW = "fixed"
    SLIDING_WINDOW = "sliding"
    TOKEN_BUCKET = "bucket"


class RateLimitConfig(BaseModel):
    """Quota definition for one family of keys."""

    model_config = ConfigDict(frozen=True)

    key_prefix: str = Field(default="rate_limit", min_length=1)
    window: int = Field(default=60, ge=1, description="Window length in seconds.")
    limit: int = Field(default=10, ge=1, description="Requests allowed per window.")
    block_duration: int = Field(
        default=0,
        ge=0,
        description="Seconds to block an identity after a rejected check (0 = off).",
    )


class RateLimitResult(BaseModel):
    """Outcome of one :meth:`DistributedRateLimiter.check` call."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    count: int = Field(description="Requests (or tokens) consumed in the window.")
    remaining: int
    reset_time: datetime
    retry_after: int | None = Field(
        default=None, description="Whole seconds to wait before retrying."
    )


class RateLimitViolation(BaseModel):
    """Entry in the capped violation log."""

    model_config = ConfigDict(frozen=True)

    identity: str
    algorithm: RateLimitAlgorithm
    limit: int
    window: int
    count: int
    timestamp: datetime
