"""Error taxonomy for the conversion pipeline.

Only ``ConfigurationError`` is fatal for a batch. Everything else is raised and
caught at the job boundary, where it turns into a Failed job or a job without
quality data.
"""

from typing import List, Optional


class MbcError(Exception):
    """Base exception carrying the external command and its output, if any."""

    def __init__(self, message: str, command: Optional[List[str]] = None, output: Optional[str] = None):
        self.message = message
        self.command = command
        self.output = output
        super().__init__(self.message)


class ConfigurationError(MbcError):
    """Missing tool, no input files or malformed profile table. Aborts the run."""


class ProbeError(MbcError):
    """Metadata could not be read from a source file."""


class EncodeError(MbcError):
    """External encoder exited non-zero or produced no output."""


class MeasurementError(MbcError):
    """Quality tool produced no parseable score."""


class CancellationError(MbcError):
    """An owned external process could not be terminated."""


class InvalidTransitionError(MbcError):
    """A job was moved through its state machine out of order."""
