"""Pydantic models for indexed tracks and the persisted index snapshot."""

from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

SNAPSHOT_VERSION = 1


class TrackTags(BaseModel):
    """Normalized tags used for sorting and display.

    Missing numeric fields are 0; any value below 1 means "absent".
    """

    model_config = ConfigDict(frozen=True)

    artist: str = ""
    album: str = ""
    title: str = ""
    disc: int = 0
    track: int = 0


class Track(BaseModel):
    """One audio file known to the library.

    Tracks are immutable between reconciliations; a changed file produces a
    new Track carrying the same ``id``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    path: str  # library-relative, POSIX separators
    modified_at: float
    tags: TrackTags = Field(default_factory=TrackTags)
    raw_tags: Dict[str, str] = Field(default_factory=dict)
    container_format: str = ""
    stream_codec: str = ""
    duration: Optional[float] = None

    def source_path(self, library_path: Path) -> Path:
        return Path(library_path, *self.path.split("/"))


class IndexSnapshot(BaseModel):
    """On-disk form of the track index."""

    version: int = SNAPSHOT_VERSION
    library_path: str
    tracks: Dict[str, Track] = Field(default_factory=dict)
    tracks_by_id: Dict[str, Track] = Field(default_factory=dict)
