"""Observable values the host UI binds to (server status, connection list)."""

import logging
from typing import Any, Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Signal:
    """
    A simple pure-Python signal: ordered observers, one failing observer does
    not stop the others.
    """
    def __init__(self):
        self._observers: List[Callable[..., Any]] = []

    def connect(self, callback: Callable[..., Any]):
        """Subscribe a callback function."""
        if callback not in self._observers:
            self._observers.append(callback)

    def disconnect(self, callback: Callable[..., Any]):
        """Unsubscribe a callback function."""
        if callback in self._observers:
            self._observers.remove(callback)

    def emit(self, *args, **kwargs):
        """Notify all subscribers."""
        for callback in list(self._observers):
            try:
                callback(*args, **kwargs)
            except Exception as e:
                logger.error(f"[Signal] Error in observer callback: {e}", exc_info=e)


class ObservableValue(Generic[T]):
    """
    Holds one value and notifies observers on every assignment.

    Observers registered with observe() are called immediately with the
    current value, like a LiveData observer in the host UI.
    """

    def __init__(self, initial: T):
        self._value = initial
        self.changed = Signal()

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        self.changed.emit(value)

    def observe(self, callback: Callable[[T], Any]) -> None:
        self.changed.connect(callback)
        callback(self._value)

    def remove_observer(self, callback: Callable[[T], Any]) -> None:
        self.changed.disconnect(callback)
