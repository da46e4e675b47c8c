"""The library service: one object owning the index, reconciler and cache.

It is constructed once at startup and handed to the HTTP layer, which only
ever calls ``list``, ``by_id``, ``reload`` and ``stream``.

Readers take a shared hold on a read/write lock for the duration of their
read. A reload builds the candidate index without any index lock (probing is
slow and runs external tools) and takes the exclusive hold only to swap the
reference, so a read sees either the old or the new index, never a mix.
Reloads are serialized among themselves by a separate mutex.
"""

import threading
from pathlib import Path
from typing import BinaryIO, Iterable, Optional, Tuple

from loguru import logger

from rivertone.core.errors import TrackNotFound
from rivertone.core.formats import AudioFormat, get_format
from rivertone.core.library_index import TrackIndex
from rivertone.core.locks import ReadWriteLock
from rivertone.core.models import Track
from rivertone.core.stats import ReconcileStats
from rivertone.core.tools import ToolPaths
from rivertone.worker.prober import MetadataProber
from rivertone.worker.reconciler import LibraryReconciler
from rivertone.worker.transcoder import TranscodeCache


class Library:
    """Thread-safe facade over the track index and transcode cache.

    Usage:
        library = Library.from_settings(settings, resolve_tools(settings))
        library.open()
        library.reload()
        audio, fmt = library.stream("abcdefgh", "opus")
    """

    def __init__(
        self,
        library_path: Path,
        prober: MetadataProber,
        transcoder: TranscodeCache,
        index_path: Optional[Path] = None,
        id_length: int = 8,
        exclude: Iterable[Path] = (),
    ):
        self.library_path = Path(library_path).resolve()
        self.index_path = index_path
        self.transcoder = transcoder
        self.reconciler = LibraryReconciler(
            self.library_path,
            prober,
            transcoder=transcoder,
            index_path=index_path,
            id_length=id_length,
            exclude=exclude,
        )
        self._rw = ReadWriteLock()
        self._reload_lock = threading.Lock()
        self._index = TrackIndex.empty(self.library_path)
        self.last_stats: Optional[ReconcileStats] = None

    @classmethod
    def from_settings(cls, settings, tools: ToolPaths, library_path: Optional[Path] = None) -> "Library":
        library_path = library_path or settings.LIBRARY_DIR
        if library_path is None:
            raise ValueError("LIBRARY_DIR is not configured")
        library_path = Path(library_path).resolve()
        return cls(
            library_path,
            MetadataProber(tools.probe, score_threshold=settings.PROBE_SCORE_THRESHOLD),
            TranscodeCache(tools.transcode, settings.STREAM_DIR, library_path),
            index_path=settings.INDEX_PATH,
            id_length=settings.ID_LENGTH,
            exclude=(settings.STREAM_DIR, settings.INDEX_PATH, settings.DATA_DIR / "logs"),
        )

    def open(self) -> TrackIndex:
        """Publishes the persisted index, if there is a usable one."""
        if self.index_path is not None:
            index = TrackIndex.load(self.index_path, self.library_path)
        else:
            index = TrackIndex.empty(self.library_path)
        self._publish(index)
        return index

    def _publish(self, index: TrackIndex) -> None:
        with self._rw.write_locked():
            self._index = index

    @property
    def index(self) -> TrackIndex:
        with self._rw.read_locked():
            return self._index

    def list(self) -> Tuple[Track, ...]:
        with self._rw.read_locked():
            return self._index.list()

    def by_id(self, track_id: str) -> Track:
        with self._rw.read_locked():
            track = self._index.by_id(track_id)
        if track is None:
            raise TrackNotFound(track_id)
        return track

    def by_path(self, path: str) -> Optional[Track]:
        with self._rw.read_locked():
            return self._index.get(path)

    def reload(self) -> ReconcileStats:
        """Reconciles the library and publishes the result."""
        with self._reload_lock:
            previous = self.index
            index, stats = self.reconciler.reconcile(previous)
            self._publish(index)
            self.last_stats = stats
        logger.info(f"Published index with {len(index)} tracks")
        return stats

    def stream(self, track_id: str, format_name: str) -> Tuple[BinaryIO, AudioFormat]:
        """Opens a complete file for the track in the requested format.

        The caller owns the returned handle and must close it. It stays
        readable even if a reload removes the artifact meanwhile.

        Raises:
            TrackNotFound: Unknown id.
            UnknownFormat: Unregistered format name.
            EncodeFailure: The transcoding tool failed.
            FileNotFoundError: The source file of an as-is track is gone.
        """
        fmt = get_format(format_name)
        track = self.by_id(track_id)
        return self.transcoder.open_artifact(track, fmt.name), fmt
