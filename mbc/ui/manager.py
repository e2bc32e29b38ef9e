from typing import Optional

from rich.console import Console
from rich.markup import escape

from mbc.domain.events import (
    ActionMessage,
    DiscoveryFinished,
    InterruptRequested,
    JobCompleted,
    JobFailed,
    JobSkipped,
    JobStarted,
    ProcessingFinished,
    QueueUpdated,
)
from mbc.infrastructure.event_bus import EventBus
from mbc.ui.state import UIState
from mbc.ui.summary import format_size


class UIManager:
    """Subscribes to EventBus, updates UIState and prints one line per finished job."""

    def __init__(self, bus: EventBus, state: UIState, console: Optional[Console] = None, verbose: bool = False):
        self.bus = bus
        self.state = state
        self.console = console or Console()
        self.verbose = verbose
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(DiscoveryFinished, self.on_discovery_finished)
        self.bus.subscribe(QueueUpdated, self.on_queue_updated)
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobCompleted, self.on_job_completed)
        self.bus.subscribe(JobSkipped, self.on_job_skipped)
        self.bus.subscribe(JobFailed, self.on_job_failed)
        self.bus.subscribe(InterruptRequested, self.on_interrupt_request)
        self.bus.subscribe(ActionMessage, self.on_action_message)
        self.bus.subscribe(ProcessingFinished, self.on_processing_finished)

    def _progress(self) -> str:
        with self.state._lock:
            return f"[{self.state.done_count}/{self.state.jobs_total}]"

    def on_discovery_finished(self, event: DiscoveryFinished):
        with self.state._lock:
            self.state.files_found = event.files_found
            self.state.jobs_total = event.jobs_built
            self.state.probe_failures = event.probe_failures
            self.state.discovery_finished = True
        line = f"Found {event.files_found} file(s), {event.jobs_built} job(s) queued"
        if event.probe_failures:
            line += f" [yellow]({event.probe_failures} could not be probed, using defaults)[/yellow]"
        self.console.print(line)

    def on_queue_updated(self, event: QueueUpdated):
        with self.state._lock:
            self.state.pending_count = event.pending
            self.state.in_flight_count = event.in_flight

    def on_job_started(self, event: JobStarted):
        self.state.add_active_job(event.job)
        if self.verbose:
            self.console.print(f"[dim]Started {escape(event.job.name)}[/dim]")

    def on_job_completed(self, event: JobCompleted):
        job = event.job
        self.state.add_completed_job(job)
        line = (
            f"{self._progress()} [green]OK[/green] {escape(job.name)} "
            f"{format_size(job.source.file_size_bytes)} -> {format_size(job.output_size_bytes)}"
        )
        if job.parameters is not None:
            line += f" ({job.parameters.profile_name}, {job.parameters.video_bitrate})"
        self.console.print(line)

    def on_job_skipped(self, event: JobSkipped):
        self.state.add_skipped_job(event.job)
        self.console.print(f"{self._progress()} [yellow]SKIP[/yellow] {escape(event.job.name)}: {escape(event.reason)}")

    def on_job_failed(self, event: JobFailed):
        self.state.add_failed_job(event.job)
        reason = event.error_message.splitlines()[0] if event.error_message else "Unknown error"
        self.console.print(f"{self._progress()} [red]FAIL[/red] {escape(event.job.name)}: {escape(reason)}")

    def on_interrupt_request(self, event: InterruptRequested):
        with self.state._lock:
            if self.state.interrupt_requested:
                return
            self.state.interrupt_requested = True
            active = len(self.state.active_jobs)
        self.console.print(f"[yellow]Interrupt requested, stopping {active} active encoder(s)...[/yellow]")

    def on_action_message(self, event: ActionMessage):
        self.console.print(escape(event.message))

    def on_processing_finished(self, event: ProcessingFinished):
        with self.state._lock:
            self.state.finished = True
            self.state.cancelled = event.cancelled
