import threading
import time
from datetime import datetime
from typing import Optional, Set

from mbc.domain.models import (
    BatchResult,
    ConversionJob,
    FailureRecord,
    JobStatus,
    QualityRecord,
)


class ResultAggregator:
    """Single writer of the cumulative BatchResult.

    ``record()`` may be called from any thread; every mutation happens under one
    lock. Counters are order independent; quality and failure records keep their
    arrival order.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._result = BatchResult()
        self._recorded: Set[int] = set()
        self._started_monotonic: Optional[float] = None

    def start(self) -> None:
        with self._lock:
            self._result.started_at = datetime.now()
            self._started_monotonic = time.monotonic()

    def record(self, job: ConversionJob) -> None:
        if not job.status.is_terminal:
            raise ValueError(f"Job {job.index} is not finished (status {job.status.value})")

        with self._lock:
            if job.index in self._recorded:
                raise ValueError(f"Job {job.index} was already recorded")
            self._recorded.add(job.index)

            result = self._result
            if job.status == JobStatus.SUCCESS:
                result.success_count += 1
                result.total_original_bytes += job.source.file_size_bytes
                result.total_converted_bytes += job.output_size_bytes or 0
                if job.quality is not None and not job.quality.is_empty:
                    result.quality_records.append(QualityRecord(
                        index=job.index,
                        source_name=job.source.path.name,
                        output_name=job.output_path.name,
                        original_size_bytes=job.source.file_size_bytes,
                        converted_size_bytes=job.output_size_bytes or 0,
                        metrics=job.quality,
                    ))
            elif job.status == JobStatus.SKIPPED:
                result.skipped_count += 1
            else:
                result.failed_count += 1
                result.failures.append(FailureRecord(
                    index=job.index,
                    source_name=job.source.path.name,
                    error_message=job.error_message or "Unknown error",
                ))

    @property
    def recorded_count(self) -> int:
        with self._lock:
            return len(self._recorded)

    def snapshot(self) -> BatchResult:
        with self._lock:
            return self._result.model_copy(deep=True)

    def finalize(self, cancelled: bool = False, abandoned: int = 0) -> BatchResult:
        with self._lock:
            result = self._result
            result.cancelled = cancelled
            result.abandoned_count = abandoned
            result.finished_at = datetime.now()
            if self._started_monotonic is not None:
                result.duration_seconds = time.monotonic() - self._started_monotonic
            return result.model_copy(deep=True)
