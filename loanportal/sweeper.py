from __future__ import annotations

import logging
import threading
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from . import config
from .db import SessionLocal
from .usecases import ledger

logger = logging.getLogger(__name__)


class OverdueSweeper:
    """Daemon thread running the overdue sweep every ``interval_s`` seconds (0 disables it)."""

    def __init__(self, interval_s: Optional[float] = None, session_factory=SessionLocal):
        self.interval_s = config.OVERDUE_SWEEP_SECONDS if interval_s is None else interval_s
        self._session_factory = session_factory
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Optional[dict]:
        try:
            with self._session_factory() as db:
                return ledger.sweep_overdue(db)
        except SQLAlchemyError as e:
            # next tick retries; the sweep is idempotent
            logger.warning("[SWEEP] failed: %s", e)
            return None

    def _loop(self) -> None:
        logger.info("[SWEEP] started interval=%ss", self.interval_s)
        while not self._stop.wait(self.interval_s):
            self.run_once()
        logger.info("[SWEEP] stopped")

    def start(self) -> bool:
        if self.interval_s <= 0:
            logger.info("[SWEEP] disabled")
            return False
        if self.running:
            return True
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="overdue-sweeper", daemon=True)
        self._thread.start()
        return True

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
