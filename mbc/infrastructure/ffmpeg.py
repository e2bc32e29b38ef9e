import logging
from pathlib import Path
from typing import List

from mbc.config.models import GeneralConfig
from mbc.domain.models import ConversionJob, SourceMediaDescriptor
from mbc.infrastructure.processes import ProcessOutcome, ProcessRegistry

VIDEO_ENCODERS = {
    "hevc": "libx265",
    "av1": "libsvtav1",
}

# x264/x265 preset labels mapped onto SVT-AV1's numeric scale
SVT_AV1_PRESETS = {
    "placebo": 1,
    "veryslow": 2,
    "slower": 3,
    "slow": 4,
    "medium": 6,
    "fast": 8,
    "faster": 9,
    "veryfast": 10,
    "superfast": 11,
    "ultrafast": 12,
}

# Audio codecs that can be stream-copied into MP4
MP4_AUDIO_COPY = {"aac", "mp3", "ac3", "eac3", "opus", "alac", "flac"}


def target_bit_depth(source: SourceMediaDescriptor, config: GeneralConfig) -> int:
    if config.bit_depth:
        return config.bit_depth
    return 10 if source.bit_depth >= 10 else 8


def pixel_format(chroma: str, bit_depth: int) -> str:
    return f"yuv{chroma}p10le" if bit_depth >= 10 else f"yuv{chroma}p"


def encoder_preset(codec: str, preset: str) -> str:
    if codec == "av1" and not preset.isdigit():
        return str(SVT_AV1_PRESETS.get(preset.lower(), SVT_AV1_PRESETS["medium"]))
    return preset


class FFmpegAdapter:
    """Wrapper around ffmpeg for video transcodes with resolved bitrate parameters."""

    def __init__(self, registry: ProcessRegistry, binary: str = "ffmpeg"):
        self.registry = registry
        self.binary = binary
        self.logger = logging.getLogger(__name__)

    def build_command(self, job: ConversionJob, config: GeneralConfig, output_path: Path) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        if job.parameters is None:
            raise ValueError(f"Job {job.index} has no encoding parameters")
        params = job.parameters
        source = job.source
        codec = config.video_codec

        chroma = config.chroma
        if codec == "av1" and chroma != "420":
            # libsvtav1 only encodes 4:2:0
            self.logger.debug(f"ENCODE_CHROMA: {job.name} {chroma} -> 420 for av1")
            chroma = "420"
        pix_fmt = pixel_format(chroma, target_bit_depth(source, config))

        cmd = [
            self.binary,
            "-y",
            "-hide_banner",
            "-nostdin",
            "-i", str(source.path),
            "-map", "0:v:0",
            "-map", "0:a?",
            "-c:v", VIDEO_ENCODERS[codec],
            "-preset", encoder_preset(codec, params.preset),
            "-b:v", params.video_bitrate,
            "-maxrate", params.max_rate,
            "-bufsize", params.buf_size,
            "-pix_fmt", pix_fmt,
        ]
        if codec == "hevc":
            cmd.extend(["-tag:v", "hvc1"])

        # Keep the source's color description
        for flag, value in (
            ("-color_primaries", source.color_primaries),
            ("-color_trc", source.color_transfer),
            ("-colorspace", source.color_space),
            ("-color_range", source.color_range),
        ):
            if value and value != "unknown":
                cmd.extend([flag, value])

        if source.audio_codec is None or source.audio_codec in MP4_AUDIO_COPY:
            cmd.extend(["-c:a", "copy"])
        else:
            cmd.extend(["-c:a", "aac", "-b:a", "192k"])

        if config.copy_metadata:
            cmd.extend(["-map_metadata", "0", "-movflags", "+faststart+use_metadata_tags"])
        else:
            cmd.extend(["-map_metadata", "-1", "-movflags", "+faststart"])

        # Output goes to a temp name; force the container since the suffix doesn't say
        cmd.extend(["-f", "mp4", str(output_path)])
        return cmd

    def encode(self, job: ConversionJob, config: GeneralConfig, output_path: Path) -> ProcessOutcome:
        cmd = self.build_command(job, config, output_path)
        if config.debug:
            self.logger.debug(f"ENCODE_CMD: {' '.join(cmd)}")
        return self.registry.run(cmd)
