import logging
from pathlib import Path
from typing import List

from mbc.config.models import GeneralConfig
from mbc.domain.models import ConversionJob
from mbc.infrastructure.ffmpeg import target_bit_depth
from mbc.infrastructure.processes import ProcessOutcome, ProcessRegistry


class HeifEncAdapter:
    """Wrapper around libheif's heif-enc for still images (HEIC or AVIF)."""

    def __init__(self, registry: ProcessRegistry, binary: str = "heif-enc"):
        self.registry = registry
        self.binary = binary
        self.logger = logging.getLogger(__name__)

    def build_command(self, job: ConversionJob, config: GeneralConfig, output_path: Path) -> List[str]:
        cmd = [self.binary, "-q", str(config.image_quality)]
        if config.image_format == "avif":
            cmd.append("--avif")
        cmd.extend([
            "-b", str(target_bit_depth(job.source, config)),
            "-p", f"chroma={config.chroma}",
            "-o", str(output_path),
            str(job.source.path),
        ])
        return cmd

    def encode(self, job: ConversionJob, config: GeneralConfig, output_path: Path) -> ProcessOutcome:
        cmd = self.build_command(job, config, output_path)
        if config.debug:
            self.logger.debug(f"ENCODE_CMD: {' '.join(cmd)}")
        return self.registry.run(cmd)
