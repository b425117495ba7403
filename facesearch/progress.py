"""Progress notifications for slow pipeline stages.

The query pipeline publishes coarse, human-readable stage events so a UI
can show feedback while models load. Events are advisory: a failing
subscriber is logged and never affects the pipeline.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, List

from facesearch.logging_config import get_logger

logger = get_logger(__name__)

LOADING_MODELS = "loading_models"
ANALYZING_FACE = "analyzing_face"
SEARCHING = "searching"


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    message: str


Subscriber = Callable[[ProgressEvent], None]


class ProgressChannel:
    """Fan-out of ProgressEvents to any number of subscribers.

    Example:
        >>> channel = ProgressChannel()
        >>> unsubscribe = channel.subscribe(lambda e: print(e.message))
        >>> channel.emit(LOADING_MODELS, "Loading face recognition models...")
        Loading face recognition models...
        >>> unsubscribe()
    """

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, stage: str, message: str) -> None:
        event = ProgressEvent(stage=stage, message=message)
        logger.debug(f"Progress [{stage}]: {message}")

        with self._lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Progress subscriber failed on '{stage}': {e}")
