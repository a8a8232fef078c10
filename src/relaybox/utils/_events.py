"""In-process publish/subscribe hub for component events."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Generic, TypeAlias, TypeVar, final

from ._logging import create_null_logger

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

T = TypeVar("T")

Listener: TypeAlias = Callable[[T], Awaitable[None]]
Unsubscribe: TypeAlias = Callable[[], None]


@final
class EventHub(Generic[T]):
    """Ordered, awaitable fan-out of events to subscribed listeners.

    Listeners are awaited one after another in subscription order, so a
    publisher that awaits ``publish`` knows every listener has observed the
    event before it continues. A listener that raises is logged and skipped;
    it does not prevent delivery to the remaining listeners.
    """

    __slots__ = ("_listeners", "_logger", "_name")

    def __init__(
        self,
        name: str,
        *,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the hub.

        Args:
            name: Name used in log entries for failing listeners.
            logger: Logger for listener failures.
        """
        self._name = name
        self._listeners: list[Listener[T]] = []
        self._logger = logger or create_null_logger()

    def subscribe(self, listener: Listener[T]) -> Unsubscribe:
        """Register a listener.

        Args:
            listener: Async callable invoked with each published event.

        Returns:
            A callable that removes the listener. Calling it twice is harmless.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def publish(self, event: T) -> None:
        """Deliver an event to every listener in subscription order."""
        for listener in tuple(self._listeners):
            try:
                await listener(event)
            except Exception:  # noqa: BLE001
                self._logger.exception("event_listener_failed", hub=self._name)

    def clear(self) -> None:
        """Remove all listeners."""
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
