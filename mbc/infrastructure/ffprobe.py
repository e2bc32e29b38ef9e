import subprocess
import json
import re
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

from mbc.domain.errors import ProbeError
from mbc.domain.models import BitrateMethod, SourceMediaDescriptor

# Bitrate reserved for audio when the video bitrate has to be derived from file size
AUDIO_OVERHEAD_BPS = 256_000
CALCULATED_BITRATE_FLOOR = 0.9

_PIX_FMT_DEPTH = re.compile(r"(?:p0?|gray)(9|10|12|14|16)(?:le|be)?$")
_HIGH_DEPTH_CODECS = ("prores", "dnxhd", "dnxhr", "ffv1", "v210")


class FFprobeAdapter:
    """Wrapper around ffprobe that builds a SourceMediaDescriptor."""

    def __init__(self, binary: str = "ffprobe"):
        self.binary = binary

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    @staticmethod
    def _to_int(value: Any) -> Optional[int]:
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None

    @classmethod
    def _parse_duration_tag(cls, value: Any) -> float:
        if value is None:
            return 0.0
        text = str(value).strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            pass
        if ":" in text:
            parts = text.split(":")
            if len(parts) in (2, 3):
                try:
                    parts_f = [float(p) for p in parts]
                except ValueError:
                    return 0.0
                if len(parts_f) == 2:
                    minutes, seconds = parts_f
                    return minutes * 60 + seconds
                hours, minutes, seconds = parts_f
                return hours * 3600 + minutes * 60 + seconds
        return 0.0

    @classmethod
    def parse_frame_rate(cls, value: Any) -> float:
        """Resolves an ffprobe rational like ``30000/1001`` to a float (0.0 if unusable)."""
        if value is None:
            return 0.0
        text = str(value).strip()
        if "/" in text:
            num_text, den_text = text.split("/", 1)
            num = cls._to_float(num_text)
            den = cls._to_float(den_text)
            if den == 0:
                return 0.0
            return num / den
        return cls._to_float(text)

    @staticmethod
    def infer_bit_depth(stream: Dict[str, Any]) -> int:
        """Bit depth from the stream field, else pixel format, else codec family, else 8."""
        raw = stream.get("bits_per_raw_sample")
        try:
            depth = int(raw)
            if depth > 0:
                return depth
        except (TypeError, ValueError):
            pass

        pix_fmt = (stream.get("pix_fmt") or "").lower()
        if pix_fmt:
            match = _PIX_FMT_DEPTH.search(pix_fmt)
            if match:
                return int(match.group(1))
            return 8

        codec = (stream.get("codec_name") or "").lower()
        if any(codec.startswith(family) for family in _HIGH_DEPTH_CODECS):
            return 10
        return 8

    @classmethod
    def determine_bitrate(
        cls,
        stream: Dict[str, Any],
        fmt: Dict[str, Any],
        file_size_bytes: int,
        duration: float,
    ) -> Tuple[int, BitrateMethod]:
        stream_bitrate = cls._to_int(stream.get("bit_rate"))
        if stream_bitrate and stream_bitrate > 0:
            return stream_bitrate, BitrateMethod.STREAM

        format_bitrate = cls._to_int(fmt.get("bit_rate"))
        if format_bitrate and format_bitrate > 0:
            return format_bitrate, BitrateMethod.CONTAINER

        if file_size_bytes > 0 and duration > 0:
            gross = file_size_bytes * 8 / duration
            net = max(gross - AUDIO_OVERHEAD_BPS, gross * CALCULATED_BITRATE_FLOOR)
            return int(net), BitrateMethod.CALCULATED

        return 0, BitrateMethod.UNKNOWN

    def _run(self, file_path: Path) -> Dict[str, Any]:
        cmd = [
            self.binary,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path)
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as exc:
            raise ProbeError(f"ffprobe could not be started for {file_path}: {exc}", command=cmd) from exc
        if result.returncode != 0:
            raise ProbeError(f"ffprobe failed for {file_path}", command=cmd, output=result.stderr)
        try:
            return json.loads(result.stdout)
        except (json.JSONDecodeError, TypeError) as exc:
            raise ProbeError(f"ffprobe returned unreadable output for {file_path}", command=cmd, output=result.stdout) from exc

    def probe(self, file_path: Path) -> SourceMediaDescriptor:
        """Executes ffprobe and normalizes the first video stream (images included)."""
        data = self._run(file_path)
        streams = data.get("streams", []) or []

        video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
        if not video_stream:
            raise ProbeError(f"No video stream found in {file_path}")
        audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None) or {}

        fps = self.parse_frame_rate(video_stream.get("avg_frame_rate"))
        if fps <= 0:
            fps = self.parse_frame_rate(video_stream.get("r_frame_rate"))

        fmt = data.get("format", {}) or {}
        duration = self._to_float(fmt.get("duration"))
        if duration <= 0:
            duration = self._to_float(video_stream.get("duration"))
        if duration <= 0:
            tags = video_stream.get("tags", {}) or {}
            duration = self._parse_duration_tag(tags.get("DURATION") or tags.get("duration"))

        size = self._to_int(fmt.get("size"))
        if not size:
            try:
                size = file_path.stat().st_size
            except OSError:
                size = 0

        bitrate, method = self.determine_bitrate(video_stream, fmt, size, duration)

        return SourceMediaDescriptor(
            path=file_path,
            width=int(video_stream.get("width", 0) or 0),
            height=int(video_stream.get("height", 0) or 0),
            frame_rate=fps,
            duration_seconds=duration,
            bit_depth=self.infer_bit_depth(video_stream),
            video_codec=video_stream.get("codec_name", "unknown"),
            pixel_format=video_stream.get("pix_fmt"),
            color_space=video_stream.get("color_space"),
            color_primaries=video_stream.get("color_primaries"),
            color_transfer=video_stream.get("color_transfer"),
            color_range=video_stream.get("color_range"),
            audio_codec=audio_stream.get("codec_name"),
            audio_bitrate=self._to_int(audio_stream.get("bit_rate")),
            audio_channels=self._to_int(audio_stream.get("channels")),
            audio_sample_rate=self._to_int(audio_stream.get("sample_rate")),
            container_format=fmt.get("format_name"),
            file_size_bytes=size,
            bitrate_bps=bitrate,
            bitrate_method=method,
        )
