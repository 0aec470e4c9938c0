"""Thread-safe hand-out of positions to workers with bounded requeueing."""

import logging
import threading
from collections import deque
from typing import Dict, Iterable, Optional

from matebench.positions import PositionRecord

logger = logging.getLogger(__name__)


class JobQueue:
    """Exactly-once distribution of PositionRecords.

    A record is *pending* until claimed, *in flight* until the claimer calls
    ``complete``, ``requeue`` or ``release``. ``claim`` blocks while nothing is
    pending but records are still in flight, since any of them may come back.
    It returns ``None`` for good once everything is completed or the queue is
    cancelled.
    """

    def __init__(self, records: Iterable[PositionRecord], max_requeues: int = 2):
        self.max_requeues = max_requeues
        self._pending = deque(records)
        self._in_flight: Dict[int, PositionRecord] = {}
        self._retries: Dict[int, int] = {}
        self._cond = threading.Condition()
        self._cancelled = False
        self.total = len(self._pending)

    def claim(self) -> Optional[PositionRecord]:
        with self._cond:
            while True:
                if self._cancelled:
                    return None
                if self._pending:
                    record = self._pending.popleft()
                    self._in_flight[record.index] = record
                    return record
                if not self._in_flight:
                    return None
                self._cond.wait()

    def complete(self, record: PositionRecord):
        with self._cond:
            self._take_back(record)
            self._cond.notify_all()

    def requeue(self, record: PositionRecord) -> bool:
        """Put a record whose session died back in line.

        Returns ``False`` when the record has used up its retries; it is then
        finalized (no longer in flight) and the caller must record it.
        """
        with self._cond:
            self._take_back(record)
            retries = self._retries.get(record.index, 0)
            if retries >= self.max_requeues:
                logger.warning(f"Position {record.index} exceeded {self.max_requeues} requeues, giving up")
                self._cond.notify_all()
                return False
            self._retries[record.index] = retries + 1
            if not self._cancelled:
                # Front of the line so a retried position is not starved behind the rest.
                self._pending.appendleft(record)
            self._cond.notify_all()
        logger.info(f"Requeued position {record.index} (retry {retries + 1}/{self.max_requeues})")
        return True

    def release(self, record: PositionRecord):
        """Return a claimed record untouched, without charging a retry."""
        with self._cond:
            self._take_back(record)
            if not self._cancelled:
                self._pending.appendleft(record)
            self._cond.notify_all()

    def cancel(self):
        with self._cond:
            self._cancelled = True
            self._cond.notify_all()

    @property
    def cancelled(self) -> bool:
        with self._cond:
            return self._cancelled

    def retries(self, record: PositionRecord) -> int:
        with self._cond:
            return self._retries.get(record.index, 0)

    def remaining(self) -> int:
        """Records not yet finalized: pending plus in flight."""
        with self._cond:
            return len(self._pending) + len(self._in_flight)

    def _take_back(self, record: PositionRecord):
        if self._in_flight.pop(record.index, None) is None:
            raise ValueError(f"Position {record.index} is not in flight")
