"""Domain events for the conversion pipeline.

Events flow through the EventBus so the orchestrator never talks to the console
UI directly. See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pydantic import BaseModel
from .models import ConversionJob


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class JobEvent(Event):
    """Base class for events related to a specific conversion job."""

    job: ConversionJob


class JobStarted(JobEvent):
    """Emitted when a worker takes a job off the queue."""

    pass


class JobCompleted(JobEvent):
    """Emitted when a job finishes with SUCCESS."""

    pass


class JobSkipped(JobEvent):
    """Emitted when the destination exists and skip-existing is on."""

    reason: str


class JobFailed(JobEvent):
    """Emitted when a job finishes with FAILED."""

    error_message: str


class DiscoveryFinished(Event):
    files_found: int
    jobs_built: int = 0
    probe_failures: int = 0


class QueueUpdated(Event):
    pending: int
    in_flight: int


class InterruptRequested(Event):
    """User asked to cancel the batch (Ctrl+C)."""

    pass


class ProcessingFinished(Event):
    cancelled: bool = False


class ActionMessage(Event):
    message: str
