"""Metadata extraction through the external probe tool (ffprobe/avprobe).

The prober runs the tool once per file, asking for both format-level and
stream-level information as JSON, and turns the output into a
``ProbeResult``. Files without an audio stream, or whose container was
identified with a probe score below the configured threshold, raise
``NotAudio``; anything wrong with running the tool or reading its output
raises ``ProbeFailure``. Both are per-file conditions for the reconciler.

Typical usage example:
    prober = MetadataProber(tools.probe, score_threshold=25)
    result = prober.probe(Path("/music/a.flac"))
    print(result.tags.artist, result.stream_codec)
"""

import json
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from rivertone.core.errors import NotAudio, ProbeFailure
from rivertone.core.models import TrackTags

# Logical tag -> tag names the probe tool may report it under
TAG_ALIASES: Dict[str, Sequence[str]] = {
    "artist": ("artist",),
    "album": ("album",),
    "title": ("title",),
    "disc": ("disc", "discnumber"),
    "track": ("track", "tracknumber"),
}


@dataclass
class ProbeResult:
    """Metadata for one audio file."""

    tags: TrackTags
    container_format: str
    stream_codec: str
    raw_tags: Dict[str, str] = field(default_factory=dict)
    duration: Optional[float] = None


def parse_number(value: Optional[str]) -> int:
    """Parses "N" or "N/total" into N; anything else is 0 (absent)."""
    if not value:
        return 0
    head = str(value).split("/", 1)[0].strip()
    try:
        return int(head)
    except ValueError:
        return 0


def lookup_tag(containers: List[Dict[str, Any]], aliases: Sequence[str]) -> Optional[str]:
    """Finds the first value for any alias across containers, in order.

    Each container is checked for every alias in lower-case and upper-case
    form before moving on to the next container.
    """
    for container in containers:
        tags = container.get("tags")
        if not isinstance(tags, dict):
            continue
        for alias in aliases:
            for key in (alias.lower(), alias.upper()):
                if key in tags:
                    return str(tags[key])
    return None


class MetadataProber:
    """Wraps the probe executable.

    Attributes:
        tool: Resolved path of ffprobe (or avprobe).
        score_threshold: Minimum ``probe_score`` for a file to count as audio.
        timeout: Optional subprocess timeout in seconds.
    """

    def __init__(self, tool: str, score_threshold: int = 25, timeout: Optional[float] = None):
        self.tool = tool
        self.score_threshold = score_threshold
        self.timeout = timeout

    def _command(self, path: Path) -> List[str]:
        return [
            self.tool,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]

    def _run(self, path: Path) -> Dict[str, Any]:
        try:
            result = subprocess.run(
                self._command(path),
                capture_output=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise ProbeFailure(path, f"could not run {self.tool}: {e}") from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise ProbeFailure(path, f"exit status {result.returncode}: {stderr[-200:]}")

        try:
            data = json.loads(result.stdout)
        except ValueError as e:
            raise ProbeFailure(path, f"malformed output: {e}") from e
        if not isinstance(data, dict):
            raise ProbeFailure(path, "malformed output: expected a JSON object")
        return data

    def probe(self, path: Path) -> ProbeResult:
        """Probes one file.

        Raises:
            NotAudio: No audio stream, or probe score below the threshold.
            ProbeFailure: Tool launch error, non-zero exit, malformed output.
        """
        data = self._run(path)
        fmt = data.get("format") or {}
        streams = [s for s in data.get("streams") or [] if isinstance(s, dict)]
        if not isinstance(fmt, dict):
            raise ProbeFailure(path, "malformed output: format is not an object")

        audio = [s for s in streams if s.get("codec_type") == "audio"]
        if not audio:
            raise NotAudio(path, "no audio stream")

        score = fmt.get("probe_score")
        if score is not None:
            try:
                score = int(score)
            except (TypeError, ValueError):
                raise ProbeFailure(path, f"invalid probe_score {score!r}") from None
            if score < self.score_threshold:
                raise NotAudio(path, f"probe score {score} below {self.score_threshold}")

        containers = [fmt, *streams]
        tags = TrackTags(
            artist=lookup_tag(containers, TAG_ALIASES["artist"]) or "",
            album=lookup_tag(containers, TAG_ALIASES["album"]) or "",
            title=lookup_tag(containers, TAG_ALIASES["title"]) or "",
            disc=parse_number(lookup_tag(containers, TAG_ALIASES["disc"])),
            track=parse_number(lookup_tag(containers, TAG_ALIASES["track"])),
        )

        raw_tags: Dict[str, str] = {}
        for container in containers:
            container_tags = container.get("tags")
            if isinstance(container_tags, dict):
                for key, value in container_tags.items():
                    raw_tags.setdefault(key, str(value))

        duration = None
        try:
            if fmt.get("duration") is not None:
                duration = float(fmt["duration"])
        except (TypeError, ValueError):
            logger.debug(f"Ignoring unparsable duration {fmt.get('duration')!r} for {path}")

        return ProbeResult(
            tags=tags,
            container_format=str(fmt.get("format_name") or ""),
            stream_codec=str(audio[0].get("codec_name") or ""),
            raw_tags=raw_tags,
            duration=duration,
        )
