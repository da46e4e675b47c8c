"""Resolution of the external probe and transcode executables."""

import shutil
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from rivertone.core.errors import ToolNotFound

PROBE_TOOLS = ("ffprobe", "avprobe")
TRANSCODE_TOOLS = ("ffmpeg", "avconv")


def resolve_tool(primary: str, fallback: str, override: Optional[str] = None) -> str:
    """Returns the path of the first usable executable.

    Args:
        primary: Preferred executable name (e.g. "ffmpeg").
        fallback: Legacy executable name (e.g. "avconv").
        override: Explicit name or path from configuration. When given it is
            the only candidate considered.

    Raises:
        ToolNotFound: If no candidate resolves on PATH.
    """
    candidates = (override,) if override else (primary, fallback)
    for name in candidates:
        path = shutil.which(name)
        if path:
            logger.debug(f"Resolved {name} -> {path}")
            return path
    raise ToolNotFound(*candidates)


@dataclass(frozen=True)
class ToolPaths:
    probe: str
    transcode: str


def resolve_tools(settings) -> ToolPaths:
    """Resolves both tools once at startup."""
    return ToolPaths(
        probe=resolve_tool(*PROBE_TOOLS, override=settings.FFPROBE_PATH),
        transcode=resolve_tool(*TRANSCODE_TOOLS, override=settings.FFMPEG_PATH),
    )
