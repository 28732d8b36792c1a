"""
Progress and cancellation handle for one download operation
"""

import threading
from datetime import datetime
from typing import Dict, Optional, Any

# nginx's "client closed request"; keeps cancellation apart from a 408 transport timeout
CANCELLED_STATUS = 499


def is_success(status: int) -> bool:
    return 200 <= int(status) < 300


class ProgressToken:
    """
    Tracks completion and cooperative cancellation of a single job.

    Only the owning job mutates increments and completion; other threads may read
    it (status API) or set cancellation_requested. Both flags are one-way.
    """

    def __init__(self, increments: int = 0):
        self._lock = threading.Lock()
        self._increments = increments
        self._increments_completed = 0
        self._cancellation_requested = False
        self._complete = False
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

    @property
    def increments(self) -> int:
        return self._increments

    @property
    def increments_completed(self) -> int:
        return self._increments_completed

    @property
    def cancellation_requested(self) -> bool:
        return self._cancellation_requested

    @property
    def is_complete(self) -> bool:
        return self._complete

    @property
    def progress(self) -> float:
        """Fraction between 0 and 1"""
        if self._complete:
            return 1.0
        if self._increments <= 0:
            return 0.0
        return min(1.0, self._increments_completed / self._increments)

    def add_increments(self, count: int):
        with self._lock:
            if self.started_at is None:
                self.started_at = datetime.now()
            self._increments += count

    def increment(self):
        with self._lock:
            self._increments_completed += 1

    def cancel(self):
        with self._lock:
            self._cancellation_requested = True

    def complete(self):
        with self._lock:
            if not self._complete:
                self._complete = True
                self.finished_at = datetime.now()

    def as_dict(self) -> Dict[str, Any]:
        return {
            'increments': self._increments,
            'increments_completed': self._increments_completed,
            'progress': round(self.progress, 4),
            'cancellation_requested': self._cancellation_requested,
            'complete': self._complete,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }
