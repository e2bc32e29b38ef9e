import threading
import time
import pytest
import yaml
from pathlib import Path
from typing import Callable, Dict, List, Optional

from mbc.config.models import AppConfig
from mbc.domain.errors import ProbeError
from mbc.domain.models import (
    BitrateMethod,
    ConversionJob,
    MediaKind,
    ResolvedEncodingParameters,
    SourceMediaDescriptor,
)
from mbc.infrastructure.event_bus import EventBus
from mbc.infrastructure.processes import ProcessOutcome


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: orchestrator runs with fake adapters")


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """AppConfig tuned for fast tests: no stagger, short polling."""
    return AppConfig(
        general={
            "threads": 2,
            "bitrate_multiplier": 1.0,
            "skip_existing": True,
            "stagger_delay_s": 0.0,
            "poll_interval_s": 0.01,
            "cancel_grace_s": 2.0,
            "video_codec": "hevc",
            "copy_metadata": True,
            "debug": False,
        }
    )


@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "mbc.yaml"

    content = {
        'general': {
            'threads': 3,
            'bitrate_multiplier': 0.8,
            'video_codec': 'av1',
            'chroma': 422,
            'video_extensions': ['mp4', 'MOV'],
        },
        'quality': {
            'ssim': True,
        },
        'profiles': {
            'uhd': {
                'resolution_min_threshold': 3840,
                'frame_rate_min': 0,
                'frame_rate_max': 60,
                'video_bitrate_target': '25M',
                'max_rate': '35M',
                'buffer_size': '50M',
                'encoder_preset': 'slow',
            },
            'any': {
                'resolution_min_threshold': 0,
                'frame_rate_min': 0,
                'frame_rate_max': 60,
                'video_bitrate_target': '4M',
                'max_rate': '6M',
                'buffer_size': '8M',
            },
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file


# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()


@pytest.fixture
def event_recorder(event_bus):
    """Subscribes to the given event types and collects published events."""
    received: List = []

    def record(*event_types):
        for event_type in event_types:
            event_bus.subscribe(event_type, received.append)
        return received

    return record


# ============================================================================
# Domain Fixtures
# ============================================================================

@pytest.fixture
def make_descriptor():
    def factory(path: Path = Path("/input/clip.mp4"), **overrides) -> SourceMediaDescriptor:
        fields = dict(
            path=path,
            width=1920,
            height=1080,
            frame_rate=29.97,
            duration_seconds=10.0,
            video_codec="h264",
            pixel_format="yuv420p",
            audio_codec="aac",
            file_size_bytes=25_000_000,
            bitrate_bps=20_000_000,
            bitrate_method=BitrateMethod.STREAM,
        )
        fields.update(overrides)
        return SourceMediaDescriptor(**fields)

    return factory


@pytest.fixture
def sample_parameters():
    return ResolvedEncodingParameters(
        profile_name="1080p-30",
        video_bitrate="8M",
        max_rate="12M",
        buf_size="16M",
        video_bitrate_bps=8_000_000,
        max_rate_bps=12_000_000,
        buf_size_bps=16_000_000,
        preset="slow",
    )


@pytest.fixture
def make_job(make_descriptor, sample_parameters):
    def factory(index: int = 0, name: Optional[str] = None, media_kind: MediaKind = MediaKind.VIDEO,
                output_dir: Path = Path("/output"), **descriptor_overrides) -> ConversionJob:
        name = name or f"clip{index}.mp4"
        source = make_descriptor(path=Path("/input") / name, **descriptor_overrides)
        suffix = ".heic" if media_kind == MediaKind.IMAGE else ".mp4"
        return ConversionJob(
            index=index,
            source=source,
            media_kind=media_kind,
            parameters=sample_parameters if media_kind == MediaKind.VIDEO else None,
            output_path=output_dir / Path(name).with_suffix(suffix).name,
        )

    return factory


# ============================================================================
# Fake Adapters
# ============================================================================

class FakeProbe:
    """ffprobe stand-in driven by a path-name -> descriptor-fields table."""

    def __init__(self, table: Optional[Dict[str, dict]] = None, failing: tuple = ()):
        self.table = table or {}
        self.failing = set(failing)
        self.calls: List[Path] = []

    def probe(self, file_path: Path) -> SourceMediaDescriptor:
        self.calls.append(file_path)
        if file_path.name in self.failing:
            raise ProbeError(f"ffprobe failed for {file_path}")
        fields = dict(width=1920, height=1080, frame_rate=30.0, bitrate_bps=20_000_000,
                      bitrate_method=BitrateMethod.STREAM)
        fields.update(self.table.get(file_path.name, {}))
        size = file_path.stat().st_size if file_path.exists() else 0
        return SourceMediaDescriptor(path=file_path, file_size_bytes=size, **fields)


class FakeEncoder:
    """Encoder stand-in that writes a small output file.

    ``fail`` names source files whose encode exits non-zero; ``delay`` holds each
    encode for that many seconds, or until ``release`` is set.
    """

    def __init__(self, fail: tuple = (), delay: float = 0.0, output_bytes: int = 1000):
        self.fail = set(fail)
        self.delay = delay
        self.output_bytes = output_bytes
        self.release = threading.Event()
        self._lock = threading.Lock()
        self.calls: List[str] = []
        self.start_times: List[float] = []
        self.active = 0
        self.max_active = 0

    def encode(self, job, config, output_path: Path) -> ProcessOutcome:
        with self._lock:
            self.calls.append(job.name)
            self.start_times.append(time.monotonic())
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                self.release.wait(self.delay)
            if job.name in self.fail:
                return ProcessOutcome(returncode=1, output="Error while encoding\nInvalid data found")
            output_path.write_bytes(b"\0" * self.output_bytes)
            return ProcessOutcome(returncode=0, output="")
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def fake_probe_factory() -> Callable[..., FakeProbe]:
    return FakeProbe


@pytest.fixture
def fake_encoder_factory() -> Callable[..., FakeEncoder]:
    return FakeEncoder


@pytest.fixture
def media_tree(tmp_path):
    """Creates ``input/`` with the given file names (nested paths allowed)."""
    def factory(names, size: int = 5000) -> Path:
        input_dir = tmp_path / "input"
        input_dir.mkdir(exist_ok=True)
        for name in names:
            path = input_dir / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b"\1" * size)
        return input_dir

    return factory
