"""Helpers for bitrate strings such as ``20M``, ``500K`` or ``1.5G``.

Magnitudes use decimal suffixes (K=10^3, M=10^6, G=10^9). All comparisons are
done in bits per second; strings are only for configuration and encoder args.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
import re
from typing import Any, Dict, Literal, Tuple, Union

BitrateUnit = Literal["", "K", "M", "G"]
Rounding = Literal["nearest", "floor"]

_RATE_PATTERN = re.compile(r"^(?P<number>\d+(?:\.\d+)?)(?P<suffix>[A-Za-z]*)$")
_SUFFIX_UNITS: Dict[str, BitrateUnit] = {
    "": "",
    "bps": "",
    "k": "K",
    "kbps": "K",
    "m": "M",
    "mbps": "M",
    "g": "G",
    "gbps": "G",
}
UNIT_MULTIPLIERS: Dict[str, int] = {
    "": 1,
    "K": 1_000,
    "M": 1_000_000,
    "G": 1_000_000_000,
}
# Largest first, used when picking a suffix for a bps value.
_UNITS_DESCENDING: Tuple[BitrateUnit, ...] = ("G", "M", "K", "")


@dataclass(frozen=True)
class ParsedBitrate:
    raw: str
    magnitude: float
    unit: BitrateUnit

    @property
    def bps(self) -> int:
        return int(round(self.magnitude * UNIT_MULTIPLIERS[self.unit]))


def _round1(value: float, rounding: Rounding = "nearest") -> float:
    if rounding == "floor":
        # Small epsilon keeps exact decimals (e.g. 4.9999999) from dropping a step.
        return math.floor(value * 10 + 1e-9) / 10
    return math.floor(value * 10 + 0.5) / 10


def _format_float(value: float) -> str:
    return f"{value:.1f}".rstrip("0").rstrip(".")


def format_magnitude(magnitude: float, unit: str) -> str:
    return f"{_format_float(magnitude)}{unit}"


def format_bps_human(bps: int) -> str:
    if bps >= 1_000_000:
        return f"{_format_float(bps / 1_000_000)} Mbps"
    if bps >= 1_000:
        return f"{_format_float(bps / 1_000)} kbps"
    return f"{bps} bps"


def parse_bitrate(raw_value: Any) -> ParsedBitrate:
    text = str(raw_value).strip()
    if not text:
        raise ValueError("Bitrate value cannot be empty.")

    compact = text.replace(" ", "")
    match = _RATE_PATTERN.fullmatch(compact)
    if not match:
        raise ValueError(
            f"Invalid bitrate value '{text}'. Use numeric bps or suffixes like K, M, G."
        )

    suffix = match.group("suffix").lower()
    if suffix not in _SUFFIX_UNITS:
        raise ValueError(
            f"Unsupported bitrate suffix '{suffix}' in '{text}'. Supported: K, M, G, bps."
        )
    return ParsedBitrate(raw=text, magnitude=float(match.group("number")), unit=_SUFFIX_UNITS[suffix])


def to_bps(value: Union[str, int, float]) -> int:
    """Converts a bitrate string (or a plain number of bps) to bits per second."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(round(value))
    return parse_bitrate(value).bps


def to_bitrate_string(bps: Union[int, float], rounding: Rounding = "nearest") -> str:
    """Formats bps with the largest suffix that keeps the numeric part >= 1."""
    if bps <= 0:
        return "0"
    for index, unit in enumerate(_UNITS_DESCENDING):
        multiplier = UNIT_MULTIPLIERS[unit]
        if bps < multiplier:
            continue
        magnitude = _round1(bps / multiplier, rounding)
        # 999.96K rounds to 1000K; promote to the next suffix
        if magnitude >= 1000 and index > 0:
            larger = _UNITS_DESCENDING[index - 1]
            return format_magnitude(_round1(magnitude / 1000, rounding), larger)
        return format_magnitude(magnitude, unit)
    return format_magnitude(_round1(bps, rounding), "")


def scale_bitrate(value: Union[str, ParsedBitrate], factor: float) -> str:
    """Scales a bitrate string keeping its own suffix, rounded to 1 decimal.

    A result below 1 in that suffix is re-expressed with a smaller one.
    """
    parsed = value if isinstance(value, ParsedBitrate) else parse_bitrate(value)
    if factor == 1.0:
        return format_magnitude(_round1(parsed.magnitude), parsed.unit)
    magnitude = _round1(parsed.magnitude * factor)
    if magnitude < 1 and parsed.unit:
        # 0.04M would round to 0M; drop to a smaller suffix instead
        return to_bitrate_string(parsed.bps * factor)
    return format_magnitude(magnitude, parsed.unit)


def validate_bitrate_string(value: Any) -> str:
    """Pydantic-friendly validator: returns the normalized string or raises ValueError."""
    parsed = parse_bitrate(value)
    if parsed.bps <= 0:
        raise ValueError(f"Bitrate must be > 0 (got '{parsed.raw}').")
    number = f"{parsed.magnitude:f}".rstrip("0").rstrip(".")
    return f"{number}{parsed.unit}"
