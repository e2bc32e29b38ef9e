from typing import Iterable, Optional

from rich.table import Table

from mbc.domain.models import BatchResult, EncodingProfile, ResolvedEncodingParameters


def format_size(size: Optional[int]) -> str:
    """Format size: 123B, 1.2KB, 45.1MB, 3.2GB."""
    if not size:
        return "0B"
    units = ["B", "KB", "MB", "GB", "TB"]
    idx = 0
    val = float(size)
    while val >= 1024.0 and idx < len(units) - 1:
        val /= 1024.0
        idx += 1
    if idx == 0:
        return f"{int(val)}B"
    return f"{val:.1f}{units[idx]}"


def format_duration(seconds: float) -> str:
    seconds = max(0, int(round(seconds)))
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def _metric(value: Optional[float], digits: int) -> str:
    if value is None:
        return "-"
    if value == float("inf"):
        return "inf"
    return f"{value:.{digits}f}"


def render_summary(result: BatchResult) -> Table:
    table = Table(title="Batch summary" + (" (cancelled)" if result.cancelled else ""), show_header=False)
    table.add_column("Item", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Converted", str(result.success_count))
    table.add_row("Skipped", str(result.skipped_count))
    table.add_row("Failed", f"[red]{result.failed_count}[/red]" if result.failed_count else "0")
    if result.abandoned_count:
        table.add_row("Not processed", f"[yellow]{result.abandoned_count}[/yellow]")
    table.add_row("Input size", format_size(result.total_original_bytes))
    table.add_row("Output size", format_size(result.total_converted_bytes))
    table.add_row("Space saved", format_size(result.space_saved_bytes))
    if result.total_original_bytes:
        table.add_row("Output / input", f"{result.compression_ratio:.1%}")
    table.add_row("Elapsed", format_duration(result.duration_seconds))
    return table


def render_quality(result: BatchResult) -> Optional[Table]:
    if not result.quality_records:
        return None
    table = Table(title="Quality")
    table.add_column("File")
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    table.add_column("SSIM", justify="right")
    table.add_column("PSNR", justify="right")
    table.add_column("VMAF", justify="right")
    for record in sorted(result.quality_records, key=lambda r: r.index):
        table.add_row(
            record.source_name,
            format_size(record.original_size_bytes),
            format_size(record.converted_size_bytes),
            _metric(record.metrics.ssim, 4),
            _metric(record.metrics.psnr, 2),
            _metric(record.metrics.vmaf, 2),
        )
    return table


def render_failures(result: BatchResult) -> Optional[Table]:
    if not result.failures:
        return None
    table = Table(title="Failures", title_style="red")
    table.add_column("File")
    table.add_column("Reason")
    for failure in sorted(result.failures, key=lambda f: f.index):
        table.add_row(failure.source_name, failure.error_message.splitlines()[0])
    return table


def render_profiles(profiles: Iterable[EncodingProfile]) -> Table:
    table = Table(title="Encoding profiles")
    table.add_column("Name")
    table.add_column("Min dimension", justify="right")
    table.add_column("FPS", justify="right")
    table.add_column("Bitrate", justify="right")
    table.add_column("Max rate", justify="right")
    table.add_column("Buffer", justify="right")
    table.add_column("Preset")
    ordered = sorted(profiles, key=lambda p: (-p.resolution_min_threshold, p.frame_rate_min))
    for profile in ordered:
        table.add_row(
            profile.name,
            str(profile.resolution_min_threshold),
            f"{profile.frame_rate_min:g}-{profile.frame_rate_max:g}",
            profile.video_bitrate_target,
            profile.max_rate,
            profile.buffer_size,
            profile.encoder_preset,
        )
    return table


def render_parameters(params: ResolvedEncodingParameters) -> Table:
    table = Table(title=f"Resolved: {params.profile_name}", show_header=False)
    table.add_column("Item", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Video bitrate", params.video_bitrate)
    table.add_row("Max rate", params.max_rate)
    table.add_row("Buffer size", params.buf_size)
    table.add_row("Preset", params.preset)
    if params.clamped:
        table.add_row("Clamped from", f"[yellow]{params.original_bitrate}[/yellow]")
    return table
