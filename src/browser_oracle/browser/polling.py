"""Poll-until and debounced stable-poll primitives shared by every wait."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Awaitable, Callable, Generic, Hashable, Optional, Sequence, TypeVar, Union

from ..errors import ConnectionLost, PollTimeout

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

Predicate = Callable[[], Union[T, Awaitable[T]]]


async def _call(predicate: Predicate[T]) -> T:
    result = predicate()
    if inspect.isawaitable(result):
        result = await result
    return result  # type: ignore[return-value]


async def poll_until(
    predicate: Predicate[T],
    *,
    interval: float,
    timeout: float,
    swallow_errors: bool = True,
    description: str = "condition",
) -> T:
    """Evaluate ``predicate`` every ``interval`` seconds until it returns a truthy value.

    Errors raised by the predicate count as "no result yet" unless
    ``swallow_errors`` is false; :class:`ConnectionLost` always propagates.
    Raises :class:`PollTimeout` once ``timeout`` elapses; a non-positive
    ``timeout`` still evaluates the predicate once.
    """

    deadline = time.monotonic() + timeout
    last_error: Optional[BaseException] = None
    while True:
        try:
            value = await _call(predicate)
        except ConnectionLost:
            raise
        except Exception as exc:
            if not swallow_errors:
                raise
            LOGGER.debug("Probe for %s failed: %s", description, exc)
            last_error = exc
        else:
            if value:
                return value
        if time.monotonic() >= deadline:
            raise PollTimeout(
                f"Timed out after {timeout:.1f}s waiting for {description}",
                last_error=last_error,
            )
        await asyncio.sleep(interval)


K = TypeVar("K", bound=Hashable)


class StabilityTracker(Generic[K]):
    """Count consecutive identical observations of a polled value."""

    def __init__(self, required: int) -> None:
        if required < 1:
            raise ValueError("required must be at least 1")
        self.required = required
        self._last: Optional[K] = None
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    def observe(self, key: K) -> bool:
        """Record ``key`` and report whether it has been seen ``required`` times in a row."""

        if self._count and key == self._last:
            self._count += 1
        else:
            self._last = key
            self._count = 1
        return self._count >= self.required

    def reset(self) -> None:
        self._last = None
        self._count = 0


async def wait_for_stable(
    sample: Predicate[T],
    *,
    key: Callable[[T], Hashable] = lambda value: value,  # type: ignore[return-value]
    accept: Callable[[T], bool] = lambda value: True,
    required: int = 2,
    interval: float = 0.5,
    timeout: float = 10.0,
    description: str = "stable value",
) -> T:
    """Return the first accepted sample observed identically ``required`` times in a row.

    Samples that raise or are not accepted reset the agreement count.
    """

    tracker: StabilityTracker[Hashable] = StabilityTracker(required)

    async def _probe() -> Optional[tuple[T]]:
        try:
            value = await _call(sample)
        except Exception:
            tracker.reset()
            raise
        if not accept(value):
            tracker.reset()
            return None
        if tracker.observe(key(value)):
            return (value,)
        return None

    result = await poll_until(_probe, interval=interval, timeout=timeout, description=description)
    return result[0]


async def confirm_steady(
    sample: Predicate[T],
    accept: Callable[[T], bool],
    delays: Sequence[float],
    *,
    key: Callable[[T], Hashable] = lambda value: value,  # type: ignore[return-value]
    first: Optional[T] = None,
) -> bool:
    """Re-sample after each delay; true only if every sample is accepted and unchanged.

    ``first`` may carry an observation already made by the caller; otherwise
    one is taken before the first delay.
    """

    if first is None:
        first = await _call(sample)
    if not accept(first):
        return False
    baseline = key(first)
    for delay in delays:
        await asyncio.sleep(delay)
        value = await _call(sample)
        if not accept(value) or key(value) != baseline:
            return False
    return True
