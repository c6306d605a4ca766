"""Listener registry for engine notifications."""

import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Notification kinds and the payload each listener receives.

    PROGRESS: float in [0, 1]
    STATUS: str
    COMPLETE: TranscriptionResult (successful requests only)
    ERROR: str
    CANCELLED: int job id
    """

    PROGRESS = "progress"
    STATUS = "status"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


class EventEmitter:
    """Thread-safe fan-out of events to registered callbacks.

    Listeners run on the emitting thread (the session worker for
    transcription events). A listener that raises is logged and skipped.
    """

    def __init__(self):
        self._listeners: Dict[EventKind, List[Callable[[Any], None]]] = {
            kind: [] for kind in EventKind
        }
        self._lock = threading.Lock()

    def subscribe(self, kind: EventKind, callback: Callable[[Any], None]) -> None:
        kind = EventKind(kind)
        if not callable(callback):
            raise TypeError(f"callback must be callable, got {type(callback).__name__}")
        with self._lock:
            self._listeners[kind].append(callback)

    def unsubscribe(self, kind: EventKind, callback: Callable[[Any], None]) -> bool:
        kind = EventKind(kind)
        with self._lock:
            try:
                self._listeners[kind].remove(callback)
            except ValueError:
                return False
        return True

    def emit(self, kind: EventKind, payload: Any) -> None:
        with self._lock:
            listeners = list(self._listeners[kind])
        for callback in listeners:
            try:
                callback(payload)
            except Exception:
                logger.exception(f"Error in {kind.value} listener {callback!r}")
