import logging
from pathlib import Path
from typing import Optional


def setup_logging(output_dir: Path, debug: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """
    Setup logging configuration for MBC.

    Creates the output directory and a conversion.log file inside it.
    Returns configured logger instance.

    Args:
        output_dir: Directory where converted files are written
        debug: If True, enable DEBUG level logging with per-job timings
        log_path: Optional path to log file (overrides output_dir)
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    log_file = Path(log_path) if log_path else (output_dir / "conversion.log")
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[logging.FileHandler(log_file)],
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger


def log_run_settings(logger: logging.Logger, config) -> None:
    """Writes the effective batch settings once at startup."""
    general = config.general
    metrics = [name for name in ("ssim", "psnr", "vmaf") if getattr(config.quality, name)]
    logger.info(
        f"Config: threads={general.threads}, multiplier={general.bitrate_multiplier}, "
        f"video_codec={general.video_codec}, image_format={general.image_format}, "
        f"chroma={general.chroma}, bit_depth={general.bit_depth or 'source'}, "
        f"skip_existing={general.skip_existing}, stagger={general.stagger_delay_s}s, "
        f"metrics={','.join(metrics) or 'none'}, profiles={len(config.profiles)}, debug={general.debug}"
    )
