import shutil
from typing import Iterable, List

from mbc.domain.errors import ConfigurationError


def missing_tools(names: Iterable[str]) -> List[str]:
    return [name for name in names if shutil.which(name) is None]


def require_tools(names: Iterable[str]) -> None:
    """Raises ConfigurationError if any external tool is not on PATH."""
    missing = missing_tools(names)
    if missing:
        raise ConfigurationError(f"Required tool(s) not found on PATH: {', '.join(missing)}")


def required_tools(has_videos: bool, has_images: bool, metrics_enabled: bool) -> List[str]:
    tools = ["ffprobe"]
    if has_videos or metrics_enabled:
        tools.append("ffmpeg")
    if has_images:
        tools.append("heif-enc")
    return tools
