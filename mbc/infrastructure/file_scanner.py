import os
from pathlib import Path
from typing import List, Generator
from mbc.domain.models import SourceFile


class FileScanner:
    """Recursively scans a directory for convertible media files."""

    def __init__(self, extensions: List[str], min_size_bytes: int = 0, output_suffix: str = "_out"):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.min_size_bytes = min_size_bytes
        self.output_suffix = output_suffix

    def scan(self, root_dir: Path) -> Generator[SourceFile, None, None]:
        """Yields SourceFile objects in deterministic (sorted) order."""
        for root, dirs, files in os.walk(str(root_dir)):
            root_path = Path(root)

            # Never descend into output directories
            dirs[:] = sorted(d for d in dirs if not d.endswith(self.output_suffix))
            files.sort()

            for file_name in files:
                file_path = root_path / file_name
                if file_path.suffix.lower() not in self.extensions:
                    continue
                try:
                    file_size = file_path.stat().st_size
                except OSError:
                    # Skip files we can't access
                    continue
                if file_size < self.min_size_bytes:
                    continue
                yield SourceFile(path=file_path, size_bytes=file_size)
