from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from mbc.domain.models import EncodingProfile
from mbc.pipeline.profiles import default_profile_table


def _normalize_extensions(values: List[str]) -> List[str]:
    return [(ext if ext.startswith(".") else f".{ext}").lower() for ext in values]


class GeneralConfig(BaseModel):
    threads: int = Field(default=2, gt=0)
    bitrate_multiplier: float = Field(default=1.0, gt=0)
    skip_existing: bool = True
    stagger_delay_s: float = Field(default=2.0, ge=0)
    poll_interval_s: float = Field(default=0.5, gt=0)
    cancel_grace_s: float = Field(default=10.0, ge=0)
    video_codec: Literal["hevc", "av1"] = "hevc"
    image_format: Literal["heic", "avif"] = "heic"
    image_quality: int = Field(default=50, ge=0, le=100)
    chroma: Literal["420", "422", "444"] = "420"
    bit_depth: Optional[Literal[8, 10]] = None  # None = follow the source
    video_extensions: List[str] = Field(default_factory=lambda: [".mp4", ".mov", ".mkv", ".avi", ".m4v", ".webm"])
    image_extensions: List[str] = Field(default_factory=lambda: [".jpg", ".jpeg", ".png", ".tif", ".tiff"])
    min_size_bytes: int = Field(default=0, ge=0)
    copy_metadata: bool = True
    output_suffix: str = "_out"
    log_path: Optional[str] = None
    report_path: Optional[str] = None
    debug: bool = False

    @field_validator("video_extensions", "image_extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        return _normalize_extensions(v)

    @field_validator("chroma", mode="before")
    @classmethod
    def coerce_chroma(cls, v):
        # YAML reads 420 as an int
        return str(v)

    @field_validator("output_suffix")
    @classmethod
    def validate_suffix(cls, v: str) -> str:
        if not v or "/" in v or "\\" in v:
            raise ValueError(f"Invalid output_suffix '{v}'")
        return v

    @property
    def extensions(self) -> List[str]:
        return self.video_extensions + [ext for ext in self.image_extensions if ext not in self.video_extensions]


class QualityConfig(BaseModel):
    ssim: bool = False
    psnr: bool = False
    vmaf: bool = False
    sample_seconds: Optional[float] = Field(default=None, gt=0)
    vmaf_model: str = "version=vmaf_v0.6.1"

    @property
    def enabled_metrics(self) -> List[str]:
        return [name for name in ("ssim", "psnr", "vmaf") if getattr(self, name)]


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    profiles: List[EncodingProfile] = Field(default_factory=default_profile_table)

    @model_validator(mode="after")
    def validate_profiles(self):
        if not self.profiles:
            raise ValueError("profiles must contain at least one entry")
        names = [profile.name for profile in self.profiles]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate profile names: {', '.join(duplicates)}")
        return self
