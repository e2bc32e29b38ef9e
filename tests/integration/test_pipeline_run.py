import json
import pytest
from unittest.mock import MagicMock

from mbc.config.models import AppConfig
from mbc.domain.events import JobCompleted, JobFailed, JobSkipped, QueueUpdated
from mbc.domain.models import QualityMetrics
from mbc.infrastructure.file_scanner import FileScanner
from mbc.infrastructure.housekeeping import HousekeepingService, temp_path_for
from mbc.infrastructure.report import JsonReportWriter
from mbc.pipeline.orchestrator import Orchestrator

pytestmark = pytest.mark.integration


@pytest.fixture
def config():
    return AppConfig(
        general={"threads": 2, "stagger_delay_s": 0, "poll_interval_s": 0.01},
        quality={"ssim": True},
    )


def _build(config, event_bus, probe, encoder, heif=None, meter=None):
    return Orchestrator(
        config=config,
        event_bus=event_bus,
        file_scanner=FileScanner(config.general.extensions, output_suffix=config.general.output_suffix),
        ffprobe_adapter=probe,
        ffmpeg_adapter=encoder,
        heif_adapter=heif,
        quality_meter=meter,
    )


def test_mixed_batch_end_to_end(config, event_bus, event_recorder, media_tree, fake_probe_factory,
                                fake_encoder_factory, tmp_path):
    events = event_recorder(JobCompleted, JobFailed, JobSkipped)
    input_dir = media_tree(["trip/4k.mov", "trip/phone.mp4", "photos/img.jpg", "broken.mkv"])
    probe = fake_probe_factory(
        {"4k.mov": {"width": 3840, "height": 2160, "frame_rate": 29.97, "bitrate_bps": 80_000_000},
         "phone.mp4": {"width": 1080, "height": 1920, "frame_rate": 59.94, "bitrate_bps": 6_000_000}},
        failing=("broken.mkv",),
    )
    encoder = fake_encoder_factory(fail=("broken.mkv",), output_bytes=2000)
    heif = fake_encoder_factory(output_bytes=500)
    meter = MagicMock()
    meter.measure.return_value = QualityMetrics(ssim=0.985)

    orchestrator = _build(config, event_bus, probe, encoder, heif=heif, meter=meter)
    output_dir = orchestrator.default_output_dir(input_dir)
    jobs = orchestrator.discover(input_dir)
    result = orchestrator.run(jobs)

    by_name = {job.name: job for job in jobs}
    assert by_name["4k.mov"].parameters.profile_name == "2160p-30"
    assert by_name["4k.mov"].parameters.clamped is False
    assert by_name["phone.mp4"].parameters.profile_name == "1080p-60"
    assert by_name["phone.mp4"].parameters.video_bitrate == "6M"
    assert by_name["phone.mp4"].parameters.clamped is True

    assert result.success_count == 3
    assert result.failed_count == 1
    assert result.failures[0].source_name == "broken.mkv"
    assert (output_dir / "trip" / "4k.mp4").exists()
    assert (output_dir / "trip" / "phone.mp4").exists()
    assert (output_dir / "photos" / "img.heic").exists()
    assert not list(output_dir.rglob("*.tmp"))
    assert heif.calls == ["img.jpg"]

    # Every successful job gets measured, images included
    assert meter.measure.call_count == 3
    assert len(result.quality_records) == 3
    assert result.total_converted_bytes == 2000 + 2000 + 500
    assert len(events) == 4


def test_parallel_renames_never_share_an_output(event_bus, media_tree, fake_probe_factory,
                                                 fake_encoder_factory, tmp_path):
    config = AppConfig(general={"threads": 2, "stagger_delay_s": 0, "poll_interval_s": 0.01,
                                "skip_existing": False})
    input_dir = media_tree(["a.mov", "a.mp4"])
    output_dir = tmp_path / "output"
    output_dir.mkdir()
    (output_dir / "a.mp4").write_bytes(b"existing")
    encoder = fake_encoder_factory(delay=0.3, output_bytes=700)

    orchestrator = _build(config, event_bus, fake_probe_factory(), encoder)
    jobs = orchestrator.discover(input_dir, output_dir)
    result = orchestrator.run(jobs)

    outputs = [job.output_path for job in jobs]
    assert result.success_count == 2
    assert encoder.max_active == 2
    assert len(set(outputs)) == 2
    assert (output_dir / "a.mp4").read_bytes() == b"existing"
    assert sorted(path.name for path in output_dir.iterdir()) == ["a.mp4", "a_1.mp4", "a_2.mp4"]
    assert result.total_converted_bytes == sum(path.stat().st_size for path in outputs)


def test_skip_existing_never_invokes_encoder(config, event_bus, media_tree, fake_probe_factory,
                                             fake_encoder_factory, tmp_path):
    input_dir = media_tree(["done.mp4", "todo.mp4"])
    output_dir = tmp_path / "output"
    output_dir.mkdir()
    (output_dir / "done.mp4").write_bytes(b"existing")
    encoder = fake_encoder_factory()

    orchestrator = _build(config, event_bus, fake_probe_factory(), encoder)
    result = orchestrator.run(orchestrator.discover(input_dir, output_dir))

    assert result.skipped_count == 1
    assert result.success_count == 1
    assert encoder.calls == ["todo.mp4"]
    assert (output_dir / "done.mp4").read_bytes() == b"existing"


def test_queue_updates_report_progress(config, event_bus, event_recorder, media_tree, fake_probe_factory,
                                       fake_encoder_factory, tmp_path):
    updates = event_recorder(QueueUpdated)
    input_dir = media_tree([f"c{i}.mp4" for i in range(5)])
    orchestrator = _build(config, event_bus, fake_probe_factory(), fake_encoder_factory())

    orchestrator.run(orchestrator.discover(input_dir, tmp_path / "output"))

    assert len(updates) == 5
    assert updates[-1].pending == 0
    assert all(update.in_flight <= config.general.threads for update in updates)


def test_rerun_after_interrupted_run(config, event_bus, media_tree, fake_probe_factory, fake_encoder_factory, tmp_path):
    input_dir = media_tree(["clip.mp4"])
    output_dir = tmp_path / "output"
    output_dir.mkdir()
    # Partial output left by a killed encoder
    temp_path_for(output_dir / "clip.mp4").write_bytes(b"partial")

    assert HousekeepingService().cleanup_temp_files(output_dir) == 1
    orchestrator = _build(config, event_bus, fake_probe_factory(), fake_encoder_factory())
    result = orchestrator.run(orchestrator.discover(input_dir, output_dir))

    assert result.success_count == 1
    assert (output_dir / "clip.mp4").exists()


def test_report_for_real_run(config, event_bus, media_tree, fake_probe_factory, fake_encoder_factory, tmp_path):
    input_dir = media_tree(["a.mp4", "b.mp4"])
    meter = MagicMock()
    meter.measure.return_value = QualityMetrics(ssim=0.99, psnr=float("inf"))
    orchestrator = _build(config, event_bus, fake_probe_factory(), fake_encoder_factory(fail=("b.mp4",)), meter=meter)

    result = orchestrator.run(orchestrator.discover(input_dir, tmp_path / "output"))
    report = JsonReportWriter().write(result, tmp_path / "report.json")

    data = json.loads(report.read_text())
    assert data["success_count"] == 1
    assert data["failed_count"] == 1
    assert data["quality_records"][0]["metrics"] == {"ssim": 0.99, "psnr": None, "vmaf": None}
    assert data["summary"]["total_jobs"] == 2
