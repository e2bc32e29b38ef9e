"""Profile resolution: pick the encoding profile for a source's resolution and FPS.

The table is grouped into resolution tiers once, at construction. A tier is
keyed by ``resolution_min_threshold`` and compared against the larger of width
and height, so portrait and landscape sources of the same size share a tier.
Within a tier the profile whose FPS range contains the frame rate wins; when
none does, the closest range wins (narrower range first on equal distance, then
table order).
"""

import logging
from typing import Dict, Iterable, List, Tuple

from mbc.domain.models import EncodingProfile

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = EncodingProfile(
    name="default",
    resolution_min_threshold=0,
    frame_rate_min=0,
    frame_rate_max=1000,
    video_bitrate_target="15M",
    max_rate="25M",
    buffer_size="30M",
    encoder_preset="veryslow",
)

_DEFAULT_TABLE = [
    # name, threshold, fps_min, fps_max, target, maxrate, bufsize, preset
    ("2160p-30", 3840, 0, 30.5, "20M", "30M", "40M", "slow"),
    ("2160p-60", 3840, 47, 60.5, "30M", "45M", "60M", "slow"),
    ("1440p-30", 2560, 0, 30.5, "12M", "18M", "24M", "slow"),
    ("1440p-60", 2560, 47, 60.5, "18M", "27M", "36M", "slow"),
    ("1080p-30", 1920, 0, 30.5, "8M", "12M", "16M", "slow"),
    ("1080p-60", 1920, 47, 60.5, "12M", "18M", "24M", "slow"),
    ("720p-30", 1280, 0, 30.5, "4M", "6M", "8M", "medium"),
    ("720p-60", 1280, 47, 60.5, "6M", "9M", "12M", "medium"),
    ("sd-30", 0, 0, 30.5, "2M", "3M", "4M", "medium"),
    ("sd-60", 0, 47, 60.5, "3M", "4.5M", "6M", "medium"),
]


def default_profile_table() -> List[EncodingProfile]:
    return [
        EncodingProfile(
            name=name,
            resolution_min_threshold=threshold,
            frame_rate_min=fps_min,
            frame_rate_max=fps_max,
            video_bitrate_target=target,
            max_rate=maxrate,
            buffer_size=bufsize,
            encoder_preset=preset,
        )
        for name, threshold, fps_min, fps_max, target, maxrate, bufsize, preset in _DEFAULT_TABLE
    ]


class ProfileResolver:
    """Two-stage nearest match over a pre-sorted, immutable profile table."""

    def __init__(self, profiles: Iterable[EncodingProfile]):
        grouped: Dict[int, List[EncodingProfile]] = {}
        for profile in profiles:
            grouped.setdefault(profile.resolution_min_threshold, []).append(profile)
        # Descending thresholds; first qualifying tier wins
        self._tiers: Tuple[Tuple[int, Tuple[EncodingProfile, ...]], ...] = tuple(
            (threshold, tuple(grouped[threshold])) for threshold in sorted(grouped, reverse=True)
        )

    @property
    def thresholds(self) -> List[int]:
        return [threshold for threshold, _ in self._tiers]

    def select_tier(self, max_dimension: int) -> Tuple[int, Tuple[EncodingProfile, ...]]:
        if not self._tiers:
            return 0, ()
        for threshold, tier in self._tiers:
            if threshold <= max_dimension:
                return threshold, tier
        return self._tiers[-1]

    def resolve(self, width: int, height: int, frame_rate: float) -> EncodingProfile:
        max_dimension = max(width, height)
        threshold, tier = self.select_tier(max_dimension)
        if not tier:
            logger.warning(f"Profile tier {threshold} is empty; using default profile")
            return DEFAULT_PROFILE

        for profile in tier:
            if profile.frame_rate_min <= frame_rate <= profile.frame_rate_max:
                return profile

        # min() keeps the first of equal keys, so table order is the final tie-break
        closest = min(tier, key=lambda p: (p.fps_distance(frame_rate), p.fps_span))
        logger.debug(
            f"No FPS range in tier {threshold} contains {frame_rate:.3f}; "
            f"closest is {closest.name} ({closest.frame_rate_min}-{closest.frame_rate_max})"
        )
        return closest
