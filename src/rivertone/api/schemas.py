from typing import Dict, Optional

from pydantic import BaseModel

from rivertone.core.formats import FORMATS
from rivertone.core.models import Track


class TrackListItem(BaseModel):
    """One row of the sorted listing."""
    id: str
    path: str
    artist: str
    album: str
    disc: int
    track: int
    title: str
    duration: Optional[float] = None

    @classmethod
    def from_track(cls, track: Track) -> "TrackListItem":
        return cls(
            id=track.id,
            path=track.path,
            artist=track.tags.artist,
            album=track.tags.album,
            disc=track.tags.disc,
            track=track.tags.track,
            title=track.tags.title,
            duration=track.duration,
        )


class TrackDetail(TrackListItem):
    """Single track with every reported tag and its stream URLs."""
    modified_at: float
    container_format: str
    stream_codec: str
    tags: Dict[str, str]
    streams: Dict[str, str]

    @classmethod
    def from_track(cls, track: Track) -> "TrackDetail":
        item = TrackListItem.from_track(track)
        return cls(
            **item.model_dump(),
            modified_at=track.modified_at,
            container_format=track.container_format,
            stream_codec=track.stream_codec,
            tags=dict(track.raw_tags),
            streams={name: f"/songs/{track.id}/{name}" for name in FORMATS},
        )
