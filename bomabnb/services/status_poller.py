"""
Cancellable status polling.

The pending-approval view watches its account status until an admin acts on
it. The poll runs on a daemon thread, wakes every interval, and stops as soon
as the view that started it calls ``stop()``.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from bomabnb.config import Config
from bomabnb.database import session_scope
from bomabnb.models import RecipientType
from bomabnb.observability import increment_counter
from bomabnb.services.account_service import AccountService

logger = logging.getLogger(__name__)

Probe = Callable[[], Optional[str]]
ChangeHandler = Callable[[Optional[str], Optional[str]], None]


class StatusPoller:
    def __init__(
        self,
        probe: Probe,
        on_change: ChangeHandler,
        interval: Optional[float] = None,
        name: str = "status-poller",
    ) -> None:
        self.probe = probe
        self.on_change = on_change
        self.interval = interval if interval is not None else Config.STATUS_POLL_INTERVAL_SECONDS
        self.name = name
        self.last_status: Optional[str] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                logger.warning("Poller %s is already running", self.name)
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
            self._thread.start()
        logger.info("Started %s (interval: %ss)", self.name, self.interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        with self._lock:
            thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        logger.info("Stopped %s", self.name)

    def poll_once(self) -> Optional[str]:
        """Probe once; fire on_change when the value differs from the last one seen."""
        current = self.probe()
        previous = self.last_status
        self.last_status = current
        if previous is not None and current != previous:
            increment_counter("status_poll_changes_total", labels={"poller": self.name})
            self.on_change(previous, current)
        return current

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("Poll failed in %s", self.name)
            # wait() returns early when stop() is called
            if self._stop_event.wait(self.interval):
                break


def partner_status_probe(session_factory, user_id: int) -> Probe:
    """Probe reading the partner's status through a fresh session on every call."""
    def probe() -> Optional[str]:
        with session_scope(session_factory) as db:
            status = AccountService(db).get_account_status(user_id, RecipientType.PARTNER)
            return status.value if status else None

    return probe
