"""SSIM / PSNR / VMAF measurement through ffmpeg's comparison filters.

Each metric is a separate ffmpeg run comparing the converted file (first input)
with the source (second input). Scores are parsed from ffmpeg's log output;
a run that exits non-zero or prints no score counts as a measurement failure
for that metric only.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from mbc.domain.errors import MeasurementError
from mbc.domain.models import QualityMetrics
from mbc.infrastructure.processes import ProcessRegistry

SUPPORTED_METRICS = ("ssim", "psnr", "vmaf")

_SCORE_PATTERNS: Dict[str, re.Pattern] = {
    "ssim": re.compile(r"SSIM .*All:\s*([0-9.]+|inf)"),
    "psnr": re.compile(r"PSNR .*average:\s*([0-9.]+|inf)"),
    "vmaf": re.compile(r"VMAF score[:=]\s*([0-9.]+)"),
}


def parse_score(metric: str, output: str) -> float:
    pattern = _SCORE_PATTERNS[metric]
    score = None
    # The summary line comes last; take the final match
    for line in output.splitlines():
        match = pattern.search(line)
        if match:
            score = match.group(1)
    if score is None:
        raise MeasurementError(f"No {metric.upper()} score in ffmpeg output", output=output)
    return float(score)


class QualityMeter:
    def __init__(
        self,
        registry: ProcessRegistry,
        binary: str = "ffmpeg",
        sample_seconds: Optional[float] = None,
        vmaf_model: str = "version=vmaf_v0.6.1",
    ):
        self.registry = registry
        self.binary = binary
        self.sample_seconds = sample_seconds
        self.vmaf_model = vmaf_model
        self.logger = logging.getLogger(__name__)

    def _filter(self, metric: str) -> str:
        if metric == "vmaf":
            return f"[0:v][1:v]libvmaf=model={self.vmaf_model}"
        return f"[0:v][1:v]{metric}"

    def build_command(self, metric: str, reference: Path, distorted: Path) -> List[str]:
        if metric not in SUPPORTED_METRICS:
            raise ValueError(f"Unsupported metric '{metric}'")
        limit: List[str] = ["-t", f"{self.sample_seconds:g}"] if self.sample_seconds else []
        return [
            self.binary,
            "-hide_banner",
            "-nostdin",
            *limit, "-i", str(distorted),
            *limit, "-i", str(reference),
            "-lavfi", self._filter(metric),
            "-f", "null", "-",
        ]

    def measure_metric(self, metric: str, reference: Path, distorted: Path) -> float:
        cmd = self.build_command(metric, reference, distorted)
        outcome = self.registry.run(cmd)
        if outcome.cancelled:
            raise MeasurementError(f"{metric.upper()} measurement cancelled", command=cmd)
        if outcome.returncode != 0:
            raise MeasurementError(
                f"{metric.upper()} measurement exited with code {outcome.returncode}",
                command=cmd,
                output=outcome.output,
            )
        return parse_score(metric, outcome.output)

    def measure(self, reference: Path, distorted: Path, metrics: Iterable[str]) -> Optional[QualityMetrics]:
        """Runs every requested metric. Returns None when no metric produced a score."""
        scores: Dict[str, float] = {}
        for metric in metrics:
            try:
                scores[metric] = self.measure_metric(metric, reference, distorted)
            except MeasurementError as exc:
                self.logger.warning(f"MEASURE_FAILED: {distorted.name} {exc.message}")
        if not scores:
            return None
        return QualityMetrics(**scores)
