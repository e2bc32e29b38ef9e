"""Bitrate policy applied on top of a resolved profile.

Scales the profile target by the global multiplier, derives max rate and
buffer size from it (1.5x and 2.0x), and clamps all three proportionally so the
target never exceeds the source's own bitrate.
"""

import logging
from typing import Optional

from mbc.config.rate_control import (
    format_bps_human,
    parse_bitrate,
    scale_bitrate,
    to_bitrate_string,
    to_bps,
)
from mbc.domain.models import EncodingProfile, ResolvedEncodingParameters

logger = logging.getLogger(__name__)

MAX_RATE_RATIO = 1.5
BUF_SIZE_RATIO = 2.0


class BitrateGovernor:
    def __init__(self, multiplier: float = 1.0):
        if multiplier <= 0:
            raise ValueError(f"Bitrate multiplier must be > 0 (got {multiplier})")
        self.multiplier = multiplier

    def apply(self, profile: EncodingProfile, source_bitrate_bps: Optional[int]) -> ResolvedEncodingParameters:
        target = scale_bitrate(profile.video_bitrate_target, self.multiplier)
        parsed_target = parse_bitrate(target)
        max_rate = scale_bitrate(parsed_target, MAX_RATE_RATIO)
        buf_size = scale_bitrate(parsed_target, BUF_SIZE_RATIO)

        target_bps = parsed_target.bps
        source_bps = source_bitrate_bps or 0

        if source_bps <= 0 or target_bps <= source_bps:
            return ResolvedEncodingParameters(
                profile_name=profile.name,
                video_bitrate=target,
                max_rate=max_rate,
                buf_size=buf_size,
                video_bitrate_bps=target_bps,
                max_rate_bps=to_bps(max_rate),
                buf_size_bps=to_bps(buf_size),
                preset=profile.encoder_preset,
            )

        ratio = source_bps / target_bps
        # Round down so the clamped target stays <= the source bitrate
        clamped_target = to_bitrate_string(target_bps * ratio, rounding="floor")
        clamped_max = to_bitrate_string(to_bps(max_rate) * ratio, rounding="floor")
        clamped_buf = to_bitrate_string(to_bps(buf_size) * ratio, rounding="floor")

        logger.debug(
            f"Clamped {profile.name}: target {target} -> {clamped_target} "
            f"(source {format_bps_human(source_bps)}, ratio {ratio:.3f})"
        )
        return ResolvedEncodingParameters(
            profile_name=profile.name,
            video_bitrate=clamped_target,
            max_rate=clamped_max,
            buf_size=clamped_buf,
            video_bitrate_bps=to_bps(clamped_target),
            max_rate_bps=to_bps(clamped_max),
            buf_size_bps=to_bps(clamped_buf),
            preset=profile.encoder_preset,
            clamped=True,
            original_bitrate=target,
        )


def apply_bitrate_policy(
    profile: EncodingProfile,
    multiplier: float,
    source_bitrate_bps: Optional[int],
) -> ResolvedEncodingParameters:
    return BitrateGovernor(multiplier).apply(profile, source_bitrate_bps)
