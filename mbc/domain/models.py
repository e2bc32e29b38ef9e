from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from mbc.config.rate_control import validate_bitrate_string
from mbc.domain.errors import InvalidTransitionError


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCESS, JobStatus.SKIPPED, JobStatus.FAILED)


class BitrateMethod(str, Enum):
    STREAM = "Stream"
    CONTAINER = "Container"
    CALCULATED = "Calculated"
    UNKNOWN = "Unknown"


class MediaKind(str, Enum):
    VIDEO = "video"
    IMAGE = "image"


class SourceFile(BaseModel):
    """A discovered input file, before probing."""

    path: Path
    size_bytes: int


class SourceMediaDescriptor(BaseModel):
    """Normalized probe output for one source file. Built once, never mutated."""

    model_config = ConfigDict(frozen=True)

    path: Path
    width: int = 0
    height: int = 0
    frame_rate: float = 0.0
    duration_seconds: float = 0.0
    bit_depth: int = 8
    video_codec: str = "unknown"
    pixel_format: Optional[str] = None
    color_space: Optional[str] = None
    color_primaries: Optional[str] = None
    color_transfer: Optional[str] = None
    color_range: Optional[str] = None
    audio_codec: Optional[str] = None
    audio_bitrate: Optional[int] = None
    audio_channels: Optional[int] = None
    audio_sample_rate: Optional[int] = None
    container_format: Optional[str] = None
    file_size_bytes: int = 0
    bitrate_bps: int = 0
    bitrate_method: BitrateMethod = BitrateMethod.UNKNOWN

    @property
    def max_dimension(self) -> int:
        return max(self.width, self.height)

    @classmethod
    def unknown(cls, path: Path, file_size_bytes: int = 0) -> "SourceMediaDescriptor":
        """Zeroed descriptor used when probing fails."""
        return cls(path=path, file_size_bytes=file_size_bytes)


class EncodingProfile(BaseModel):
    """One row of the profile table: bitrate/preset for a resolution + FPS bracket."""

    model_config = ConfigDict(frozen=True)

    name: str
    resolution_min_threshold: int = Field(ge=0)
    frame_rate_min: float = Field(ge=0)
    frame_rate_max: float = Field(ge=0)
    video_bitrate_target: str
    max_rate: str
    buffer_size: str
    encoder_preset: str = "medium"

    @field_validator("video_bitrate_target", "max_rate", "buffer_size", mode="before")
    @classmethod
    def validate_bitrate(cls, v):
        return validate_bitrate_string(v)

    @model_validator(mode="after")
    def validate_fps_range(self):
        if self.frame_rate_min > self.frame_rate_max:
            raise ValueError(
                f"Profile {self.name}: frame_rate_min ({self.frame_rate_min}) "
                f"must be <= frame_rate_max ({self.frame_rate_max})"
            )
        return self

    @property
    def fps_span(self) -> float:
        return self.frame_rate_max - self.frame_rate_min

    def fps_distance(self, frame_rate: float) -> float:
        if frame_rate < self.frame_rate_min:
            return self.frame_rate_min - frame_rate
        if frame_rate > self.frame_rate_max:
            return frame_rate - self.frame_rate_max
        return 0.0


class ResolvedEncodingParameters(BaseModel):
    """Final bitrate/preset set for one job, after multiplier and clamping."""

    model_config = ConfigDict(frozen=True)

    profile_name: str
    video_bitrate: str
    max_rate: str
    buf_size: str
    video_bitrate_bps: int
    max_rate_bps: int
    buf_size_bps: int
    preset: str
    clamped: bool = False
    original_bitrate: Optional[str] = None


class QualityMetrics(BaseModel):
    ssim: Optional[float] = None
    psnr: Optional[float] = None
    vmaf: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return self.ssim is None and self.psnr is None and self.vmaf is None


class ConversionJob(BaseModel):
    index: int
    source: SourceMediaDescriptor
    media_kind: MediaKind = MediaKind.VIDEO
    parameters: Optional[ResolvedEncodingParameters] = None
    output_path: Path
    status: JobStatus = JobStatus.PENDING
    output_size_bytes: Optional[int] = None
    quality: Optional[QualityMetrics] = None
    error_message: Optional[str] = None
    duration_seconds: Optional[float] = None

    @property
    def name(self) -> str:
        return self.source.path.name

    def start(self) -> None:
        if self.status != JobStatus.PENDING:
            raise InvalidTransitionError(f"Job {self.index} cannot start from {self.status.value}")
        self.status = JobStatus.PROCESSING

    def finish(
        self,
        status: JobStatus,
        *,
        output_size_bytes: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> None:
        if self.status != JobStatus.PROCESSING:
            raise InvalidTransitionError(f"Job {self.index} cannot finish from {self.status.value}")
        if not status.is_terminal:
            raise InvalidTransitionError(f"Job {self.index}: {status.value} is not a terminal status")
        self.status = status
        self.output_size_bytes = output_size_bytes
        self.error_message = error_message


class QualityRecord(BaseModel):
    index: int
    source_name: str
    output_name: str
    original_size_bytes: int
    converted_size_bytes: int
    metrics: QualityMetrics


class FailureRecord(BaseModel):
    index: int
    source_name: str
    error_message: str


class BatchResult(BaseModel):
    success_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    abandoned_count: int = 0
    total_original_bytes: int = 0
    total_converted_bytes: int = 0
    duration_seconds: float = 0.0
    quality_records: List[QualityRecord] = Field(default_factory=list)
    failures: List[FailureRecord] = Field(default_factory=list)
    cancelled: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def total_jobs(self) -> int:
        return self.success_count + self.skipped_count + self.failed_count

    @property
    def space_saved_bytes(self) -> int:
        return max(0, self.total_original_bytes - self.total_converted_bytes)

    @property
    def compression_ratio(self) -> float:
        if self.total_original_bytes == 0:
            return 0.0
        return self.total_converted_bytes / self.total_original_bytes
