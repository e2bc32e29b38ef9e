import logging
import traceback
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console

from mbc.config.loader import load_config
from mbc.config.models import AppConfig
from mbc.config.rate_control import format_bps_human, to_bps
from mbc.domain.errors import ConfigurationError
from mbc.domain.events import ActionMessage
from mbc.domain.models import MediaKind
from mbc.infrastructure.binaries import require_tools, required_tools
from mbc.infrastructure.event_bus import EventBus
from mbc.infrastructure.ffmpeg import FFmpegAdapter
from mbc.infrastructure.ffprobe import FFprobeAdapter
from mbc.infrastructure.file_scanner import FileScanner
from mbc.infrastructure.heif_enc import HeifEncAdapter
from mbc.infrastructure.housekeeping import HousekeepingService
from mbc.infrastructure.logging import log_run_settings, setup_logging
from mbc.infrastructure.processes import ProcessRegistry
from mbc.infrastructure.quality import QualityMeter
from mbc.infrastructure.report import JsonReportWriter
from mbc.pipeline.bitrate import BitrateGovernor
from mbc.pipeline.orchestrator import Orchestrator
from mbc.pipeline.profiles import ProfileResolver
from mbc.ui.manager import UIManager
from mbc.ui.state import UIState
from mbc.ui.summary import render_failures, render_parameters, render_profiles, render_quality, render_summary

DEFAULT_CONFIG_PATH = Path("conf/mbc.yaml")

app = typer.Typer(help="MBC (Media Batch Converter) - adaptive bitrate batch encoding")
console = Console()


def _load(config_path: Optional[Path]) -> AppConfig:
    # The default path is optional; an explicit one must exist
    if config_path is None and DEFAULT_CONFIG_PATH.exists():
        config_path = DEFAULT_CONFIG_PATH
    return load_config(config_path)


def _fatal(message: str) -> typer.Exit:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    return typer.Exit(code=1)


@app.command()
def convert(
    input_dir: Path = typer.Argument(..., help="Directory with source media"),
    output_dir: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory (default: <input>_out)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", help="Override number of parallel jobs"),
    multiplier: Optional[float] = typer.Option(None, "--multiplier", "-m", help="Override bitrate multiplier"),
    codec: Optional[str] = typer.Option(None, "--codec", help="Override video codec (hevc, av1)"),
    skip_existing: Optional[bool] = typer.Option(None, "--skip-existing/--no-skip-existing", help="Skip jobs whose output exists"),
    stagger: Optional[float] = typer.Option(None, "--stagger", help="Seconds between successive job starts"),
    ssim: bool = typer.Option(False, "--ssim", help="Measure SSIM after each video"),
    psnr: bool = typer.Option(False, "--psnr", help="Measure PSNR after each video"),
    vmaf: bool = typer.Option(False, "--vmaf", help="Measure VMAF after each video"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    report_path: Optional[Path] = typer.Option(None, "--report", help="Write a JSON batch report to this path"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Convert every media file under INPUT_DIR with resolution/FPS-aware bitrates."""
    orchestrator: Optional[Orchestrator] = None
    report_target: Optional[Path] = None
    try:
        config = _load(config_path)
        overrides = {}
        if threads is not None: overrides["threads"] = threads
        if multiplier is not None: overrides["bitrate_multiplier"] = multiplier
        if codec is not None: overrides["video_codec"] = codec
        if skip_existing is not None: overrides["skip_existing"] = skip_existing
        if stagger is not None: overrides["stagger_delay_s"] = stagger
        if log_path is not None: overrides["log_path"] = str(log_path)
        if report_path is not None: overrides["report_path"] = str(report_path)
        if debug: overrides["debug"] = True
        if overrides:
            # Re-validate so overrides obey the same bounds as the YAML
            general = config.general.model_dump()
            general.update(overrides)
            try:
                config = AppConfig(general=general, quality=config.quality, profiles=config.profiles)
            except ValidationError as exc:
                raise ConfigurationError(f"Invalid command line option:\n{exc}") from exc
        for name, enabled in (("ssim", ssim), ("psnr", psnr), ("vmaf", vmaf)):
            if enabled:
                setattr(config.quality, name, True)

        general = config.general
        if general.report_path:
            report_target = Path(general.report_path)
        input_dir = input_dir.resolve()
        output_dir = (output_dir or input_dir.with_name(f"{input_dir.name}{general.output_suffix}")).resolve()

        logger = setup_logging(output_dir, debug=general.debug, log_path=general.log_path)
        log_run_settings(logger, config)

        bus = EventBus()
        registry = ProcessRegistry()
        scanner = FileScanner(
            extensions=general.extensions,
            min_size_bytes=general.min_size_bytes,
            output_suffix=general.output_suffix,
        )
        metrics = config.quality.enabled_metrics
        orchestrator = Orchestrator(
            config=config,
            event_bus=bus,
            file_scanner=scanner,
            ffprobe_adapter=FFprobeAdapter(),
            ffmpeg_adapter=FFmpegAdapter(registry),
            heif_adapter=HeifEncAdapter(registry),
            quality_meter=QualityMeter(
                registry,
                sample_seconds=config.quality.sample_seconds,
                vmaf_model=config.quality.vmaf_model,
            ) if metrics else None,
            process_registry=registry,
        )
        UIManager(bus, UIState(), console=console, verbose=general.debug)

        removed = HousekeepingService().cleanup_temp_files(output_dir)
        if removed:
            bus.publish(ActionMessage(message=f"Removed {removed} stale temp file(s) from {output_dir}"))

        files = orchestrator.scan(input_dir)
        kinds = {orchestrator.media_kind(f.path) for f in files}
        require_tools(required_tools(
            has_videos=MediaKind.VIDEO in kinds,
            has_images=MediaKind.IMAGE in kinds,
            metrics_enabled=bool(metrics),
        ))

        jobs = orchestrator.build_jobs(files, input_dir, output_dir)
        result = orchestrator.run(jobs)

        console.print(render_summary(result))
        for table in (render_quality(result), render_failures(result)):
            if table is not None:
                console.print(table)

        if report_target is not None:
            JsonReportWriter().write(result, report_target)

    except ConfigurationError as e:
        logging.getLogger(__name__).error(f"Configuration error: {e.message}")
        raise _fatal(e.message)

    except KeyboardInterrupt:
        if orchestrator is not None and orchestrator.last_result is not None:
            console.print(render_summary(orchestrator.last_result))
            if report_target is not None:
                # Keep the results recorded before the interrupt
                try:
                    JsonReportWriter().write(orchestrator.last_result, report_target)
                    typer.echo(f"Partial report written to {report_target}")
                except OSError as exc:
                    typer.secho(f"Could not write report: {exc}", fg=typer.colors.RED, err=True)
        typer.secho("\nConversion stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    except typer.Exit:
        raise

    except Exception as e:
        logging.getLogger(__name__).error(f"Fatal error: {e}\n{traceback.format_exc()}")
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command()
def profiles(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
):
    """Print the active encoding profile table."""
    try:
        config = _load(config_path)
    except ConfigurationError as e:
        raise _fatal(e.message)
    console.print(render_profiles(config.profiles))


@app.command()
def resolve(
    width: int = typer.Argument(..., min=0),
    height: int = typer.Argument(..., min=0),
    fps: float = typer.Argument(..., min=0.0),
    source_bitrate: Optional[str] = typer.Option(None, "--source-bitrate", "-s", help="Source bitrate, e.g. 12M or 8500000"),
    multiplier: Optional[float] = typer.Option(None, "--multiplier", "-m", help="Override bitrate multiplier"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
):
    """Show the parameters a source with these properties would get."""
    try:
        config = _load(config_path)
        source_bps = to_bps(source_bitrate) if source_bitrate else 0
        governor = BitrateGovernor(multiplier if multiplier is not None else config.general.bitrate_multiplier)
    except ConfigurationError as e:
        raise _fatal(e.message)
    except ValueError as e:
        raise _fatal(str(e))

    profile = ProfileResolver(config.profiles).resolve(width, height, fps)
    params = governor.apply(profile, source_bps)
    if source_bps:
        console.print(f"Source bitrate: {format_bps_human(source_bps)}")
    console.print(render_parameters(params))


if __name__ == "__main__":
    app()
