import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, DefaultDict, List

logger = logging.getLogger(__name__)


@dataclass
class TransferProgress:
    """Byte progress for one upload session."""
    file_name: str
    bytes_done: int = 0
    total_bytes: int = 0
    parts_done: int = 0
    total_parts: int = 0

    @property
    def percent(self) -> float:
        if self.total_bytes <= 0:
            return 100.0
        return self.bytes_done / self.total_bytes * 100


class EventEmitter:
    """
    Named-event fan-out for session observers.

    Listeners may be plain callables or coroutine functions. They run in
    subscription order; a failing listener never breaks the upload.
    """

    def __init__(self):
        self._listeners: DefaultDict[str, List[Callable]] = defaultdict(list)

    def on(self, event_name: str, callback: Callable) -> None:
        listeners = self._listeners[event_name]
        if callback not in listeners:
            listeners.append(callback)

    def off(self, event_name: str, callback: Callable) -> None:
        listeners = self._listeners.get(event_name)
        if listeners and callback in listeners:
            listeners.remove(callback)

    def listener_count(self, event_name: str) -> int:
        return len(self._listeners.get(event_name, ()))

    async def emit(self, event_name: str, *args, **kwargs) -> None:
        for callback in list(self._listeners.get(event_name, ())):
            try:
                outcome = callback(*args, **kwargs)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception as exc:
                logger.error("Error in %r listener %r: %s", event_name, callback, exc)
