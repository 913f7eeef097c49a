"""Worker status shared between the scheduler and admin readers."""

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from ..models.base import utc_now
from ..models.enums import WorkerActivity


@dataclass(frozen=True)
class WorkerStatus:
    """Immutable snapshot of the worker."""

    is_enabled: bool = True
    activity: WorkerActivity = WorkerActivity.INITIALIZING
    status_message: str | None = None
    current_channel: str | None = None
    updated_at: datetime | None = None
    last_run_started_at: datetime | None = None
    last_run_finished_at: datetime | None = None
    last_run_duration: timedelta | None = None
    messages_found_in_last_run: int = 0
    last_error: str | None = None


class WorkerState:
    """Lock-guarded owner of the worker status.

    Readers get frozen snapshots; every write replaces the snapshot under
    the lock.
    """

    def __init__(self, enabled: bool = True):
        self._lock = threading.Lock()
        self._status = WorkerStatus(is_enabled=enabled, updated_at=utc_now())

    def snapshot(self) -> WorkerStatus:
        with self._lock:
            return self._status

    def _update(self, **changes) -> WorkerStatus:
        with self._lock:
            self._status = replace(self._status, updated_at=utc_now(), **changes)
            return self._status

    @property
    def is_enabled(self) -> bool:
        return self.snapshot().is_enabled

    def enable(self) -> WorkerStatus:
        return self._update(is_enabled=True)

    def disable(self) -> WorkerStatus:
        return self._update(is_enabled=False)

    def set_activity(
        self,
        activity: WorkerActivity,
        message: str | None = None,
        channel: str | None = None,
    ) -> WorkerStatus:
        return self._update(activity=activity, status_message=message, current_channel=channel)

    def report_error(self, error: str, activity: WorkerActivity | None = None) -> WorkerStatus:
        with self._lock:
            self._status = replace(
                self._status,
                activity=activity or self._status.activity,
                last_error=error,
                status_message=error,
                updated_at=utc_now(),
            )
            return self._status

    def report_cycle_started(self, started_at: datetime) -> WorkerStatus:
        return self._update(activity=WorkerActivity.SCRAPING, last_run_started_at=started_at)

    def report_cycle_completion(
        self,
        started_at: datetime,
        finished_at: datetime,
        messages_found: int,
    ) -> WorkerStatus:
        return self._update(
            last_run_started_at=started_at,
            last_run_finished_at=finished_at,
            last_run_duration=finished_at - started_at,
            messages_found_in_last_run=messages_found,
            current_channel=None,
        )
