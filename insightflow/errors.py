"""
Error taxonomy shared by the provider adapters, the cache and the scheduler.

Routing:
  - AuthError / NetworkError propagate to user-facing callers (login,
    manual refresh) and are logged-and-swallowed by background work.
  - UnsupportedMetric means "no data for this dimension", never a page failure.
  - CacheError / DecodeError never leave the cache or projection boundary.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InsightFlowError(Exception):
    """Base class for all errors raised by insightflow."""
    pass


class AuthError(InsightFlowError):
    """Bad or expired credentials. The user has to log in again."""
    pass


class NotConfiguredError(AuthError):
    """An adapter was used before configure() or authenticate()."""
    pass


class NetworkError(InsightFlowError):
    """Transport failure or a non-success HTTP status from the vendor API."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnsupportedMetric(InsightFlowError):
    """The adapter (or its vendor API) has no data for the requested dimension."""

    def __init__(self, provider: str, metric: str) -> None:
        super().__init__(f"{provider} does not support metric '{metric}'")
        self.provider = provider
        self.metric = metric


class CacheError(InsightFlowError):
    """I/O failure on the local cache store."""
    pass


class DecodeError(InsightFlowError):
    """Malformed vendor payload or persisted artifact."""
    pass


class SecretStoreError(InsightFlowError):
    """The secret store could not persist or read a value."""
    pass


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a best-effort operation: either a value or a taxonomy error."""

    value: Optional[T] = None
    error: Optional[InsightFlowError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: InsightFlowError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


async def capture(awaitable: Awaitable[T]) -> Result[T]:
    """Await and wrap taxonomy errors into a Result. Other exceptions propagate."""
    try:
        return Result.success(await awaitable)
    except InsightFlowError as e:
        return Result.failure(e)
