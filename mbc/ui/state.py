import threading
from typing import List

from mbc.domain.models import ConversionJob


class UIState:
    """Thread-safe state shared between the UI manager and the console output."""

    def __init__(self):
        self._lock = threading.RLock()

        # Counters
        self.completed_count = 0
        self.failed_count = 0
        self.skipped_count = 0

        # Discovery
        self.discovery_finished = False
        self.files_found = 0
        self.jobs_total = 0
        self.probe_failures = 0

        # Queue
        self.pending_count = 0
        self.in_flight_count = 0

        self.active_jobs: List[ConversionJob] = []

        self.interrupt_requested = False
        self.finished = False
        self.cancelled = False

    @property
    def done_count(self) -> int:
        with self._lock:
            return self.completed_count + self.failed_count + self.skipped_count

    def add_active_job(self, job: ConversionJob):
        with self._lock:
            if job not in self.active_jobs:
                self.active_jobs.append(job)

    def remove_active_job(self, job: ConversionJob):
        with self._lock:
            if job in self.active_jobs:
                self.active_jobs.remove(job)

    def add_completed_job(self, job: ConversionJob):
        with self._lock:
            self.completed_count += 1
            self.remove_active_job(job)

    def add_failed_job(self, job: ConversionJob):
        with self._lock:
            self.failed_count += 1
            self.remove_active_job(job)

    def add_skipped_job(self, job: ConversionJob):
        with self._lock:
            self.skipped_count += 1
            self.remove_active_job(job)
