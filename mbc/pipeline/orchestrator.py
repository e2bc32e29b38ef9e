"""Pipeline orchestrator for the conversion job lifecycle.

Turns discovered files into ConversionJobs (probe → profile → bitrate policy)
and drains them through a bounded worker pool. Uses the EventBus to report job
lifecycle to the UI layer and the ResultAggregator for the batch summary.

Key responsibilities:
- Build jobs in input order, with collision-free output paths
- Dispatch FIFO from a pending deque, never more in flight than worker slots
- Optional staggered start between successive dispatches
- Poll for completions (wait-any with a short timeout) and hand finished jobs
  to the aggregator
- Cooperative cancellation: stop dispatch, terminate owned external processes,
  keep results already recorded, discard the rest
"""

import concurrent.futures
import logging
import threading
import time
from collections import deque
from pathlib import Path
from typing import Deque, Dict, Iterable, List, Optional, Set

from mbc.config.models import AppConfig
from mbc.domain.errors import ConfigurationError, EncodeError, ProbeError
from mbc.domain.events import (
    DiscoveryFinished,
    InterruptRequested,
    JobCompleted,
    JobFailed,
    JobSkipped,
    JobStarted,
    ProcessingFinished,
    QueueUpdated,
)
from mbc.domain.models import (
    BatchResult,
    ConversionJob,
    JobStatus,
    MediaKind,
    SourceFile,
    SourceMediaDescriptor,
)
from mbc.infrastructure.event_bus import EventBus
from mbc.infrastructure.ffmpeg import FFmpegAdapter
from mbc.infrastructure.ffprobe import FFprobeAdapter
from mbc.infrastructure.file_scanner import FileScanner
from mbc.infrastructure.heif_enc import HeifEncAdapter
from mbc.infrastructure.housekeeping import temp_path_for
from mbc.infrastructure.processes import ProcessRegistry
from mbc.infrastructure.quality import QualityMeter
from mbc.pipeline.aggregator import ResultAggregator
from mbc.pipeline.bitrate import BitrateGovernor
from mbc.pipeline.output_paths import claim_output_path, resolve_output_path
from mbc.pipeline.profiles import ProfileResolver

# Lines of encoder output kept in a failed job's error message
ERROR_TAIL_LINES = 15


def output_tail(output: str, lines: int = ERROR_TAIL_LINES) -> str:
    kept = [line for line in output.strip().splitlines() if line.strip()]
    return "\n".join(kept[-lines:])


class Orchestrator:
    """Conversion pipeline orchestrator.

    Args:
        config: AppConfig with general, quality and profile settings.
        event_bus: EventBus for publishing job lifecycle events.
        file_scanner: FileScanner for discovering input files.
        ffprobe_adapter: FFprobeAdapter producing SourceMediaDescriptors.
        ffmpeg_adapter: FFmpegAdapter for video encodes.
        heif_adapter: HeifEncAdapter for still images.
        quality_meter: QualityMeter, only used when a metric is enabled.
        process_registry: Owner of every external process, terminated on cancel.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        file_scanner: FileScanner,
        ffprobe_adapter: FFprobeAdapter,
        ffmpeg_adapter: FFmpegAdapter,
        heif_adapter: Optional[HeifEncAdapter] = None,
        quality_meter: Optional[QualityMeter] = None,
        process_registry: Optional[ProcessRegistry] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.file_scanner = file_scanner
        self.ffprobe_adapter = ffprobe_adapter
        self.ffmpeg_adapter = ffmpeg_adapter
        self.heif_adapter = heif_adapter
        self.quality_meter = quality_meter
        self.process_registry = process_registry or ProcessRegistry()
        self.logger = logging.getLogger(__name__)

        self.resolver = ProfileResolver(config.profiles)
        self.governor = BitrateGovernor(config.general.bitrate_multiplier)

        self._cancel_event = threading.Event()
        # Output paths owned by jobs of this orchestrator, from build_jobs and worker renames
        self._claimed: Set[Path] = set()
        self._claim_lock = threading.Lock()
        self.last_result: Optional[BatchResult] = None

        self.event_bus.subscribe(InterruptRequested, self._on_interrupt_requested)

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _on_interrupt_requested(self, event: InterruptRequested):
        self.cancel()

    def cancel(self) -> None:
        """Stops new dispatch and terminates every external process this run owns."""
        if self._cancel_event.is_set():
            return
        self.logger.info("Cancellation requested - stopping dispatch and terminating active encoders...")
        self._cancel_event.set()
        survivors = self.process_registry.terminate_all()
        if survivors:
            self.logger.warning(f"Could not terminate process(es): {survivors}")

    # ------------------------------------------------------------------
    # Job building
    # ------------------------------------------------------------------

    def media_kind(self, path: Path) -> MediaKind:
        if path.suffix.lower() in self.config.general.image_extensions:
            return MediaKind.IMAGE
        return MediaKind.VIDEO

    def output_extension(self, kind: MediaKind) -> str:
        if kind == MediaKind.IMAGE:
            return f".{self.config.general.image_format}"
        return ".mp4"

    def default_output_dir(self, input_dir: Path) -> Path:
        return input_dir.with_name(f"{input_dir.name}{self.config.general.output_suffix}")

    def _probe(self, source_file: SourceFile) -> Optional[SourceMediaDescriptor]:
        try:
            return self.ffprobe_adapter.probe(source_file.path)
        except ProbeError as exc:
            self.logger.warning(f"PROBE_FAILED: {source_file.path.name} - {exc.message}; using defaults")
            return None

    def build_jobs(self, files: Iterable[SourceFile], input_dir: Path, output_dir: Path) -> List[ConversionJob]:
        """Probes each file and resolves its encoding parameters. Order follows ``files``."""
        jobs: List[ConversionJob] = []
        probe_failures = 0
        files_found = 0

        for source_file in files:
            files_found += 1
            descriptor = self._probe(source_file)
            if descriptor is None:
                probe_failures += 1
                descriptor = SourceMediaDescriptor.unknown(source_file.path, source_file.size_bytes)

            kind = self.media_kind(source_file.path)
            parameters = None
            if kind == MediaKind.VIDEO:
                profile = self.resolver.resolve(descriptor.width, descriptor.height, descriptor.frame_rate)
                parameters = self.governor.apply(profile, descriptor.bitrate_bps)
                self.logger.info(
                    f"PROFILE: {source_file.path.name} {descriptor.width}x{descriptor.height}"
                    f"@{descriptor.frame_rate:.3f} src={descriptor.bitrate_bps}bps "
                    f"({descriptor.bitrate_method.value}) -> {parameters.profile_name} "
                    f"b:v={parameters.video_bitrate} maxrate={parameters.max_rate} "
                    f"bufsize={parameters.buf_size} preset={parameters.preset}"
                    + (f" clamped from {parameters.original_bitrate}" if parameters.clamped else "")
                )

            try:
                rel_path = source_file.path.relative_to(input_dir)
            except ValueError:
                rel_path = Path(source_file.path.name)
            desired = output_dir / rel_path.with_suffix(self.output_extension(kind))
            with self._claim_lock:
                output_path = claim_output_path(desired, self._claimed)
                self._claimed.add(output_path)

            jobs.append(ConversionJob(
                index=len(jobs),
                source=descriptor,
                media_kind=kind,
                parameters=parameters,
                output_path=output_path,
            ))

        self.event_bus.publish(DiscoveryFinished(
            files_found=files_found,
            jobs_built=len(jobs),
            probe_failures=probe_failures,
        ))
        return jobs

    def scan(self, input_dir: Path) -> List[SourceFile]:
        """Lists input files. No input files is a ConfigurationError."""
        if not input_dir.is_dir():
            raise ConfigurationError(f"Input directory does not exist: {input_dir}")
        files = list(self.file_scanner.scan(input_dir))
        self.logger.info(f"Discovery finished: {len(files)} file(s) in {input_dir}")
        if not files:
            raise ConfigurationError(f"No input files found in {input_dir}")
        return files

    def discover(self, input_dir: Path, output_dir: Optional[Path] = None) -> List[ConversionJob]:
        output_dir = output_dir or self.default_output_dir(input_dir)
        return self.build_jobs(self.scan(input_dir), input_dir, output_dir)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _encoder_for(self, job: ConversionJob):
        if job.media_kind == MediaKind.IMAGE:
            if self.heif_adapter is None:
                raise EncodeError("No image encoder configured")
            return self.heif_adapter
        return self.ffmpeg_adapter

    def _measure(self, job: ConversionJob) -> None:
        metrics = self.config.quality.enabled_metrics
        if not metrics or self.quality_meter is None:
            return
        try:
            job.quality = self.quality_meter.measure(job.source.path, job.output_path, metrics)
        except Exception as exc:
            # The output is already in place; a broken measurement keeps the job successful
            self.logger.warning(f"MEASURE_FAILED: {job.name} - {exc}")
            job.quality = None
            return
        if job.quality is None:
            self.logger.warning(f"MEASURE_EMPTY: {job.name} converted without quality data")

    def _process_job(self, job: ConversionJob) -> ConversionJob:
        """Runs one job to a terminal state. Never raises."""
        if self._cancel_event.is_set():
            return job

        general = self.config.general
        started = time.monotonic()
        tmp_path: Optional[Path] = None

        job.start()
        self.event_bus.publish(JobStarted(job=job))
        if general.debug:
            self.logger.info(f"PROCESS_START: {job.name} (thread {threading.get_ident()})")

        try:
            with self._claim_lock:
                decision = resolve_output_path(job.output_path, general.skip_existing, taken=self._claimed)
                self._claimed.add(decision.path)
            if decision.skip:
                job.finish(JobStatus.SKIPPED)
                self.logger.info(f"SKIPPED: {job.name} (destination exists: {decision.path})")
                self.event_bus.publish(JobSkipped(job=job, reason="Destination already exists"))
                return job

            job.output_path = decision.path
            job.output_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = temp_path_for(job.output_path)

            encoder = self._encoder_for(job)
            outcome = encoder.encode(job, general, tmp_path)
            if outcome.cancelled:
                raise EncodeError("Cancelled")
            if outcome.returncode != 0:
                raise EncodeError(
                    f"Encoder exited with code {outcome.returncode}",
                    output=output_tail(outcome.output),
                )
            if not tmp_path.exists() or tmp_path.stat().st_size == 0:
                raise EncodeError("Encoder exited cleanly but produced no output", output=output_tail(outcome.output))

            tmp_path.replace(job.output_path)
            output_size = job.output_path.stat().st_size

            self._measure(job)
            job.finish(JobStatus.SUCCESS, output_size_bytes=output_size)
            self.event_bus.publish(JobCompleted(job=job))

        except EncodeError as exc:
            message = exc.message if not exc.output else f"{exc.message}\n{exc.output}"
            self._fail(job, message)
        except Exception as exc:
            self._fail(job, f"Exception: {exc}")
        finally:
            if tmp_path is not None and tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError as exc:
                    self.logger.warning(f"Failed to cleanup temp file {tmp_path}: {exc}")
            job.duration_seconds = time.monotonic() - started
            if general.debug:
                self.logger.info(
                    f"PROCESS_END: {job.name} status={job.status.value} elapsed={job.duration_seconds:.2f}s"
                )

        return job

    def _fail(self, job: ConversionJob, message: str) -> None:
        if job.status != JobStatus.PROCESSING:
            # Already terminal; the exception came after the transition
            self.logger.error(f"Error after {job.name} finished as {job.status.value}: {message}")
            return
        job.finish(JobStatus.FAILED, error_message=message)
        self.logger.error(f"FAILED: {job.name} - {message.splitlines()[0]}")
        self.event_bus.publish(JobFailed(job=job, error_message=message))

    # ------------------------------------------------------------------
    # Pool
    # ------------------------------------------------------------------

    def _collect(self, future: concurrent.futures.Future, job: ConversionJob, aggregator: ResultAggregator) -> None:
        try:
            future.result()
        except Exception as e:
            # _process_job catches everything; this only guards against bugs in it
            self.logger.error(f"Worker for {job.name} raised: {e}")
            if job.status == JobStatus.PROCESSING:
                job.finish(JobStatus.FAILED, error_message=f"Exception: {e}")

        if not job.status.is_terminal:
            return
        if self._cancel_event.is_set() and job.status == JobStatus.FAILED:
            # Interrupted by the cancellation itself; not a real outcome
            self.logger.info(f"DISCARDED: {job.name} (finished after cancellation)")
            return
        aggregator.record(job)

    def _stagger_remaining(self, last_dispatch: Optional[float]) -> float:
        delay = self.config.general.stagger_delay_s
        if delay <= 0 or last_dispatch is None:
            return 0.0
        return max(0.0, delay - (time.monotonic() - last_dispatch))

    def _dispatch(
        self,
        executor: concurrent.futures.ThreadPoolExecutor,
        pending: Deque[ConversionJob],
        in_flight: Dict[concurrent.futures.Future, ConversionJob],
        last_dispatch: Optional[float],
    ) -> Optional[float]:
        """Submits jobs while slots are free and the stagger delay has elapsed."""
        slots = self.config.general.threads
        while pending and len(in_flight) < slots and not self._cancel_event.is_set():
            if self._stagger_remaining(last_dispatch) > 0:
                break
            job = pending.popleft()
            in_flight[executor.submit(self._process_job, job)] = job
            last_dispatch = time.monotonic()
            self.event_bus.publish(QueueUpdated(pending=len(pending), in_flight=len(in_flight)))
        return last_dispatch

    def _drain_after_cancel(
        self,
        in_flight: Dict[concurrent.futures.Future, ConversionJob],
        aggregator: ResultAggregator,
    ) -> None:
        """Gives active workers a grace period to exit, then abandons the rest."""
        for future in list(in_flight):
            if future.cancel():
                del in_flight[future]

        deadline = time.monotonic() + self.config.general.cancel_grace_s
        while in_flight:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            done, _ = concurrent.futures.wait(
                set(in_flight),
                timeout=min(self.config.general.poll_interval_s, remaining),
                return_when=concurrent.futures.FIRST_COMPLETED,
            )
            for future in done:
                self._collect(future, in_flight.pop(future), aggregator)

        if in_flight:
            self.logger.warning(f"Abandoning {len(in_flight)} job(s) still running after cancellation")

    def run(self, jobs: List[ConversionJob]) -> BatchResult:
        """Processes ``jobs`` with the configured parallelism and returns the batch result."""
        general = self.config.general
        aggregator = ResultAggregator()
        aggregator.start()
        self.logger.info(f"Processing started: {len(jobs)} job(s), threads={general.threads}")

        pending: Deque[ConversionJob] = deque(jobs)
        in_flight: Dict[concurrent.futures.Future, ConversionJob] = {}
        last_dispatch: Optional[float] = None
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=general.threads,
            thread_name_prefix="mbc-worker",
        )

        try:
            while (pending or in_flight) and not self._cancel_event.is_set():
                last_dispatch = self._dispatch(executor, pending, in_flight, last_dispatch)

                timeout = general.poll_interval_s
                if pending and len(in_flight) < general.threads:
                    # Waiting only for the stagger delay
                    timeout = min(timeout, max(self._stagger_remaining(last_dispatch), 0.01))

                if not in_flight:
                    self._cancel_event.wait(timeout)
                    continue

                done, _ = concurrent.futures.wait(
                    set(in_flight),
                    timeout=timeout,
                    return_when=concurrent.futures.FIRST_COMPLETED,
                )
                for future in done:
                    self._collect(future, in_flight.pop(future), aggregator)

            if self._cancel_event.is_set():
                self._drain_after_cancel(in_flight, aggregator)

        except KeyboardInterrupt:
            self.logger.info("Ctrl+C detected - stopping new tasks and interrupting active jobs...")
            self.event_bus.publish(InterruptRequested())
            self.cancel()
            self._drain_after_cancel(in_flight, aggregator)
            self.last_result = self._finish(aggregator, len(jobs))
            executor.shutdown(wait=False, cancel_futures=True)
            raise

        executor.shutdown(wait=not self._cancel_event.is_set(), cancel_futures=True)
        self.last_result = self._finish(aggregator, len(jobs))
        return self.last_result

    def _finish(self, aggregator: ResultAggregator, total: int) -> BatchResult:
        cancelled = self._cancel_event.is_set()
        result = aggregator.finalize(cancelled=cancelled, abandoned=total - aggregator.recorded_count)
        self.logger.info(
            f"Processing finished: success={result.success_count}, skipped={result.skipped_count}, "
            f"failed={result.failed_count}, abandoned={result.abandoned_count}, "
            f"elapsed={result.duration_seconds:.1f}s"
        )
        self.event_bus.publish(ProcessingFinished(cancelled=cancelled))
        return result
