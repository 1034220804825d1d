"""Optional enhancement steps modelled as explicit success/failure values.

Reranking, query embedding and content hydration improve a result but are never
required for one. Each is run through :func:`attempt`, which turns timeouts and
exceptions into an :class:`Enhancement` carrying either the value or the error.
Callers then pick ``enhancement.or_else(original)``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Enhancement(Generic[T]):
    """Result of an optional step: a value, or the error that prevented it."""

    value: Optional[T] = None
    error: Optional[BaseException] = None

    @classmethod
    def success(cls, value: T) -> "Enhancement[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException) -> "Enhancement[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None

    def or_else(self, default: T) -> T:
        """Return the enhanced value, or ``default`` when the step failed or was skipped."""
        if self.ok:
            return self.value  # type: ignore[return-value]
        return default

    def map(self, fn: Callable[[T], T]) -> "Enhancement[T]":
        if not self.ok:
            return self
        try:
            return Enhancement.success(fn(self.value))  # type: ignore[arg-type]
        except Exception as exc:
            return Enhancement.failure(exc)


async def attempt(
    operation: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    label: str,
) -> Enhancement[T]:
    """Run ``operation`` under a timeout and capture the outcome.

    Args:
        operation: Zero-argument callable returning an awaitable.
        timeout: Seconds before the operation is cancelled.
        label: Short name used in log messages.

    Returns:
        ``Enhancement.success(value)`` or ``Enhancement.failure(error)``. Never raises
        for ordinary exceptions; cancellation of the caller still propagates.
    """
    try:
        value = await asyncio.wait_for(operation(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("%s timed out after %.1fs, skipping", label, timeout)
        return Enhancement.failure(exc)
    except Exception as exc:
        logger.warning("%s failed, skipping: %s", label, exc)
        return Enhancement.failure(exc)
    return Enhancement.success(value)
