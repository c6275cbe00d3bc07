"""Latest-value signals, joins and debouncing for the event-driven core.

A ``Signal`` holds the most recent value of a stream. Subscribing replays
the current value synchronously (if there is one) and then delivers every
subsequent value. Everything runs on a single asyncio loop, so callbacks
never interleave; ``Debouncer`` is the only component that defers work.
"""
import asyncio
import logging
from typing import Any, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSET: Any = object()


class Subscription:
    """Handle returned by ``subscribe``; call ``unsubscribe`` to stop."""

    def __init__(self, unsubscribe: Callable[[], None]):
        self._unsubscribe = unsubscribe
        self.closed = False

    def unsubscribe(self) -> None:
        if not self.closed:
            self.closed = True
            self._unsubscribe()


class Signal(Generic[T]):
    """A typed event source with latest-value semantics."""

    def __init__(self, initial: Any = _UNSET, name: Optional[str] = None):
        self._value = initial
        self._subscribers: List[Callable[[T], None]] = []
        self.name = name or "signal"

    @property
    def has_value(self) -> bool:
        return self._value is not _UNSET

    @property
    def value(self) -> Optional[T]:
        """Current value, or None if nothing has been emitted yet."""
        return None if self._value is _UNSET else self._value

    def next(self, value: T) -> None:
        """Store ``value`` and push it to every subscriber."""
        self._value = value
        # Copy so callbacks may unsubscribe while we iterate
        for callback in list(self._subscribers):
            callback(value)

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        """Register ``callback``, replaying the current value if present."""
        self._subscribers.append(callback)
        subscription = Subscription(lambda: self._remove(callback))
        if self.has_value:
            callback(self._value)
        return subscription

    def _remove(self, callback: Callable[[T], None]) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def __repr__(self) -> str:
        return f"Signal(name={self.name!r}, has_value={self.has_value})"


def combine_latest(
    signals: Sequence[Signal],
    callback: Callable[[Tuple[Any, ...]], None],
) -> Subscription:
    """Call ``callback`` with the latest values of all ``signals``.

    Nothing is delivered until every signal has emitted at least once.
    After that, each emission from any signal delivers the full tuple.
    """
    latest: List[Any] = [_UNSET] * len(signals)
    subscriptions: List[Subscription] = []

    def on_value(index: int, value: Any) -> None:
        latest[index] = value
        if all(v is not _UNSET for v in latest):
            callback(tuple(latest))

    for index, signal in enumerate(signals):
        subscriptions.append(
            signal.subscribe(lambda value, index=index: on_value(index, value))
        )

    def unsubscribe_all() -> None:
        for subscription in subscriptions:
            subscription.unsubscribe()

    return Subscription(unsubscribe_all)


class Debouncer(Generic[T]):
    """Wait for a quiet period, then act on the latest value.

    Every ``trigger`` resets the timer. Intermediate values are dropped.
    Without a running event loop (or with a zero delay) the callback runs
    immediately.
    """

    def __init__(self, delay_seconds: float, callback: Callable[[T], None]):
        self.delay_seconds = delay_seconds
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._latest: Any = _UNSET

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self, value: T) -> None:
        """Record ``value`` and restart the quiet-period timer."""
        self._latest = value
        self._cancel_timer()
        if self.delay_seconds <= 0:
            self._fire()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, debounced callback runs now")
            self._fire()
            return
        self._handle = loop.call_later(self.delay_seconds, self._fire)

    def flush(self) -> None:
        """Run the pending callback now, if any."""
        if self._handle is not None:
            self._cancel_timer()
            self._fire()

    def cancel(self) -> None:
        """Drop the pending value without calling back."""
        self._cancel_timer()
        self._latest = _UNSET

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        value, self._latest = self._latest, _UNSET
        if value is not _UNSET:
            self._callback(value)
