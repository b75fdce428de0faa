"""Per-entity in-flight tokens that turn duplicate concurrent submissions into rejections."""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Hashable, Iterator, Set

from bomabnb.observability import increment_counter

ALREADY_PROCESSING_MESSAGE = "This request is already being processed. Please wait."


class InFlightError(RuntimeError):
    """Raised when a transition on the same entity is already running."""


class InFlightRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._keys: Set[Hashable] = set()
        self.logger = logging.getLogger(__name__)

    def try_acquire(self, key: Hashable) -> bool:
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def release(self, key: Hashable) -> None:
        with self._lock:
            self._keys.discard(key)

    def is_in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._keys

    @contextmanager
    def claim(self, key: Hashable) -> Iterator[None]:
        if not self.try_acquire(key):
            increment_counter("inflight_rejections_total", labels={"entity": _entity_of(key)})
            self.logger.warning("Rejected duplicate submission for %s", key)
            raise InFlightError(ALREADY_PROCESSING_MESSAGE)
        try:
            yield
        finally:
            self.release(key)


def _entity_of(key: Hashable) -> str:
    if isinstance(key, tuple) and key:
        return str(key[0])
    return str(key)


# Shared by every service instance in the process; request-scoped services are
# rebuilt per request so the registry can't live on them.
default_registry = InFlightRegistry()
