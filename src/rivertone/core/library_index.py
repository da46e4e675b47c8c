"""Track index: path and id lookups plus the tag-sorted listing.

A ``TrackIndex`` is immutable. The reconciler builds a new one off to the
side and the library service swaps it in as a single reference, so readers
always see one consistent index.

Usage:
    index = TrackIndex.load(settings.INDEX_PATH, library_path)
    for track in index.list():
        print(track.id, track.tags.artist)
    track = index.by_id("abcdefgh")
"""

import os
from contextlib import suppress
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

from loguru import logger
from pydantic import ValidationError

from rivertone.core.errors import PersistFailure
from rivertone.core.models import SNAPSHOT_VERSION, IndexSnapshot, Track


def _present(number: int) -> int:
    return number if number >= 1 else 0


def sort_key(track: Track) -> Tuple:
    """Listing order: artist, album, disc, track, title, then path.

    Text compares case-insensitively; absent disc/track numbers sort as 0,
    ahead of any real number. The raw path breaks remaining ties.
    """
    tags = track.tags
    return (
        tags.artist.lower(),
        tags.album.lower(),
        _present(tags.disc),
        _present(tags.track),
        tags.title.lower(),
        track.path,
    )


class TrackIndex:
    """Immutable path -> Track and id -> Track mappings with a sorted listing.

    All three views are built together in the constructor and never change
    afterwards.

    Attributes:
        library_path: Absolute library root the paths are relative to.
    """

    def __init__(self, library_path: Path, tracks: Iterable[Track] = ()):
        self.library_path = Path(library_path)
        by_path: Dict[str, Track] = {}
        by_id: Dict[str, Track] = {}
        for track in tracks:
            if track.path in by_path:
                raise ValueError(f"Duplicate path in index: {track.path}")
            if track.id in by_id:
                raise ValueError(
                    f"Duplicate id {track.id} for {by_id[track.id].path} and {track.path}"
                )
            by_path[track.path] = track
            by_id[track.id] = track
        self._by_path = by_path
        self._by_id = by_id
        self._sorted = tuple(sorted(by_path.values(), key=sort_key))

    @classmethod
    def empty(cls, library_path: Path) -> "TrackIndex":
        return cls(library_path)

    def list(self) -> Tuple[Track, ...]:
        return self._sorted

    def by_id(self, track_id: str) -> Optional[Track]:
        return self._by_id.get(track_id)

    def get(self, path: str) -> Optional[Track]:
        return self._by_path.get(path)

    def ids(self) -> frozenset:
        return frozenset(self._by_id)

    def paths(self) -> frozenset:
        return frozenset(self._by_path)

    def __len__(self) -> int:
        return len(self._by_path)

    def __contains__(self, path: object) -> bool:
        return path in self._by_path

    def __repr__(self) -> str:
        return f"TrackIndex({str(self.library_path)!r}, tracks={len(self)})"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_snapshot(self) -> IndexSnapshot:
        return IndexSnapshot(
            library_path=str(self.library_path),
            tracks=dict(self._by_path),
            tracks_by_id=dict(self._by_id),
        )

    def save(self, index_path: Path) -> None:
        """Writes the snapshot atomically.

        Raises:
            PersistFailure: If the file could not be written.
        """
        index_path = Path(index_path)
        tmp_path = index_path.with_name(index_path.name + ".tmp")
        payload = self.to_snapshot().model_dump_json()
        try:
            index_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, index_path)
        except OSError as e:
            with suppress(OSError):
                tmp_path.unlink()
            raise PersistFailure(index_path, str(e)) from e

    @classmethod
    def load(cls, index_path: Path, library_path: Path) -> "TrackIndex":
        """Reads a persisted snapshot for ``library_path``.

        Any problem with the snapshot (missing, unreadable, invalid, written
        for another library root) yields an empty index so the next
        reconciliation probes every file again.
        """
        index_path = Path(index_path)
        library_path = Path(library_path)
        if not index_path.exists():
            logger.info(f"No index at {index_path}; starting with an empty library")
            return cls.empty(library_path)

        try:
            snapshot = IndexSnapshot.model_validate_json(index_path.read_bytes())
        except OSError as e:
            logger.warning(f"Could not read index {index_path}: {e}")
            return cls.empty(library_path)
        except ValidationError as e:
            logger.warning(f"Discarding invalid index {index_path}: {e.error_count()} errors")
            return cls.empty(library_path)

        if snapshot.version != SNAPSHOT_VERSION:
            logger.warning(
                f"Index version {snapshot.version} != {SNAPSHOT_VERSION}; rebuilding"
            )
            return cls.empty(library_path)

        if Path(snapshot.library_path) != library_path:
            logger.warning(
                f"Index was built for {snapshot.library_path}, not {library_path}; rebuilding"
            )
            return cls.empty(library_path)

        tracks = [
            track for path, track in snapshot.tracks.items() if path == track.path
        ]
        if len(tracks) != len(snapshot.tracks):
            logger.warning("Index has entries keyed by the wrong path; dropping them")

        expected_ids = {track.id for track in tracks}
        if expected_ids != set(snapshot.tracks_by_id):
            logger.warning("Index id mapping disagrees with path mapping; using path mapping")

        try:
            index = cls(library_path, tracks)
        except ValueError as e:
            logger.warning(f"Discarding inconsistent index {index_path}: {e}")
            return cls.empty(library_path)

        logger.info(f"Loaded index with {len(index)} tracks from {index_path}")
        return index
