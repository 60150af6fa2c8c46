"""In-process change feed. Read-side consumers subscribe instead of polling."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[[dict], None]

ANY_TABLE = "*"


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: Dict[str, List[Listener]] = {}

    def subscribe(self, table: str, listener: Listener) -> Callable[[], None]:
        """Register a listener for a table (or "*"). Returns an unsubscribe callable."""
        with self._lock:
            self._listeners.setdefault(table, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                subs = self._listeners.get(table, [])
                if listener in subs:
                    subs.remove(listener)

        return unsubscribe

    def publish(self, table: str, op: str, row_id: str) -> None:
        """Fan a committed mutation out to listeners. A broken listener never undoes the write."""
        change = {"table": table, "op": op, "id": row_id}
        with self._lock:
            listeners = list(self._listeners.get(table, [])) + list(self._listeners.get(ANY_TABLE, []))
        for listener in listeners:
            try:
                listener(change)
            except Exception:
                logger.exception("[CHANGES] listener failed for %s", change)

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()


feed = ChangeFeed()


# ---------------- transaction staging ----------------
# Changes are queued on the session and published only after a successful commit.

PENDING_KEY = "loanportal.pending_changes"


def stage_change(db, table: str, op: str, row_id: str) -> None:
    db.info.setdefault(PENDING_KEY, []).append((table, op, row_id))


def flush_changes(db) -> None:
    for table, op, row_id in db.info.pop(PENDING_KEY, []):
        feed.publish(table, op, row_id)


def discard_changes(db) -> None:
    db.info.pop(PENDING_KEY, None)
