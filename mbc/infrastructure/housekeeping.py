import logging
import os
from pathlib import Path

TEMP_SUFFIX = ".tmp"


def temp_path_for(output_path: Path) -> Path:
    """Partial output location used while an encoder is still writing."""
    return output_path.with_name(output_path.name + TEMP_SUFFIX)


class HousekeepingService:
    """Removes partial outputs left behind by interrupted runs."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def cleanup_temp_files(self, directory: Path) -> int:
        """Recursively removes all .tmp files in the directory. Returns the count removed."""
        removed = 0
        if not directory.exists():
            return removed
        for root, _dirs, files in os.walk(directory):
            for file in files:
                if not file.endswith(TEMP_SUFFIX):
                    continue
                try:
                    (Path(root) / file).unlink()
                    removed += 1
                except OSError as exc:
                    self.logger.warning(f"Cannot remove stale temp file {file}: {exc}")
        if removed:
            self.logger.info(f"Removed {removed} stale temp file(s) from {directory}")
        return removed
