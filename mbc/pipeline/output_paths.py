from pathlib import Path
from typing import AbstractSet, NamedTuple

from mbc.infrastructure.housekeeping import temp_path_for


class OutputDecision(NamedTuple):
    path: Path
    skip: bool


def next_free_path(path: Path, taken: AbstractSet[Path] = frozenset()) -> Path:
    """First of ``name_1.ext``, ``name_2.ext``, ... that is neither on disk nor taken."""
    counter = 1
    while True:
        candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
        if candidate not in taken and not candidate.exists() and not temp_path_for(candidate).exists():
            return candidate
        counter += 1


def claim_output_path(path: Path, taken: AbstractSet[Path]) -> Path:
    """Keeps two jobs of one batch from targeting the same file (a.mov and a.mp4 -> a.mp4)."""
    if path not in taken:
        return path
    return next_free_path(path, taken)


def resolve_output_path(
    desired: Path,
    skip_existing: bool,
    taken: AbstractSet[Path] = frozenset(),
) -> OutputDecision:
    """Skips or renames when ``desired`` is on disk. A rename also avoids ``taken`` paths."""
    if not desired.exists():
        return OutputDecision(desired, False)
    if skip_existing:
        return OutputDecision(desired, True)
    return OutputDecision(next_free_path(desired, taken), False)
