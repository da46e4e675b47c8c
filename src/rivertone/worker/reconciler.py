"""Library reconciliation: bring the track index in line with the disk.

The reconciler walks the library root, keeps tracks whose file has not been
modified since it was last probed, probes everything else, and carries ids
over for paths it already knew. Vanished paths are dropped. Cached
transcodes of dropped or re-probed tracks are deleted, the new index is
persisted, and orphaned artifacts are swept from the stream directory.

The result is a fresh ``TrackIndex``; the previous one is never modified,
so readers holding it are unaffected until the caller publishes the new one.

Typical usage example:
    reconciler = LibraryReconciler(library_path, prober, transcoder, index_path)
    index, stats = reconciler.reconcile(previous_index)
    print(f"Added: {stats.added}, Removed: {stats.removed}")
"""

import os
import stat
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, Set, Tuple

from loguru import logger

from rivertone.core.errors import NotAudio, PersistFailure, ProbeFailure
from rivertone.core.identifiers import allocate_unique_id
from rivertone.core.library_index import TrackIndex
from rivertone.core.models import Track
from rivertone.core.stats import ReconcileStats
from rivertone.worker.prober import MetadataProber
from rivertone.worker.transcoder import TranscodeCache


class LibraryReconciler:
    """Incremental rebuild of the track index from the library directory.

    Attributes:
        library_path: Absolute library root.
        prober: MetadataProber (or any object with a compatible ``probe``).
        transcoder: TranscodeCache whose artifacts are invalidated; optional.
        index_path: Where the snapshot is persisted; ``None`` disables it.
        id_length: Length of newly allocated track ids.
    """

    def __init__(
        self,
        library_path: Path,
        prober: MetadataProber,
        transcoder: Optional[TranscodeCache] = None,
        index_path: Optional[Path] = None,
        id_length: int = 8,
        exclude: Iterable[Path] = (),
    ):
        self.library_path = Path(library_path)
        self.prober = prober
        self.transcoder = transcoder
        self.index_path = Path(index_path) if index_path is not None else None
        self.id_length = id_length
        # Bookkeeping paths that may live under the library root
        self._exclude: Set[Path] = {Path(p).resolve() for p in exclude}

    def _walk_error(self, error: OSError) -> None:
        if isinstance(error, PermissionError):
            logger.warning(f"Permission denied: {error.filename}")
        else:
            logger.error(f"Error scanning directory {error.filename}: {error}")

    def walk(self) -> Iterator[Tuple[str, Path]]:
        """Yields (library-relative POSIX path, absolute path) for every file.

        Directories are visited in sorted order and symlinked directories are
        not followed.
        """
        for dirpath, dirnames, filenames in os.walk(self.library_path, onerror=self._walk_error):
            resolved_dir = Path(dirpath).resolve()
            dirnames[:] = sorted(
                d for d in dirnames if resolved_dir / d not in self._exclude
            )
            for name in sorted(filenames):
                if resolved_dir / name in self._exclude:
                    continue
                abs_path = Path(dirpath, name)
                yield abs_path.relative_to(self.library_path).as_posix(), abs_path

    def _build_track(self, track_id: str, rel_path: str, abs_path: Path, mtime: float) -> Track:
        result = self.prober.probe(abs_path)
        return Track(
            id=track_id,
            path=rel_path,
            modified_at=mtime,
            tags=result.tags,
            raw_tags=result.raw_tags,
            container_format=result.container_format,
            stream_codec=result.stream_codec,
            duration=result.duration,
        )

    def reconcile(self, previous: TrackIndex) -> Tuple[TrackIndex, ReconcileStats]:
        """Builds the index that matches the library as it is now.

        Args:
            previous: The currently published index; left untouched.

        Returns:
            The new index and the statistics of this pass.

        Raises:
            FileNotFoundError: The library root does not exist.
            NotADirectoryError: The library root is not a directory.
        """
        if not self.library_path.exists():
            raise FileNotFoundError(f"Library directory not found: {self.library_path}")
        if not self.library_path.is_dir():
            raise NotADirectoryError(f"Library path is not a directory: {self.library_path}")

        logger.info(f"Reconciling {self.library_path} against {len(previous)} known tracks...")
        stats = ReconcileStats()
        tracks: Dict[str, Track] = {}
        stale_ids: Set[str] = set()
        # Ids of known paths stay reserved for the whole pass, including ids
        # about to be retired, so no new file can inherit their artifacts.
        taken: Set[str] = set(previous.ids())

        for rel_path, abs_path in self.walk():
            try:
                st = abs_path.stat()
            except OSError as e:
                logger.warning(f"Could not stat {abs_path}: {e}")
                stats.skipped += 1
                continue
            if not stat.S_ISREG(st.st_mode):
                continue
            stats.scanned += 1

            known = previous.get(rel_path)
            if known is not None and known.modified_at >= st.st_mtime:
                tracks[rel_path] = known
                stats.unchanged += 1
                continue

            track_id = known.id if known is not None else allocate_unique_id(self.id_length, taken)
            stats.probed += 1
            try:
                track = self._build_track(track_id, rel_path, abs_path, st.st_mtime)
            except NotAudio as e:
                logger.debug(f"Skipping {rel_path}: {e.reason}")
                stats.skipped += 1
                continue
            except ProbeFailure as e:
                logger.warning(f"Skipping {rel_path}: {e.reason}")
                stats.skipped += 1
                continue

            taken.add(track_id)
            tracks[rel_path] = track
            if known is not None:
                stats.refreshed += 1
                stale_ids.add(track_id)
                logger.debug(f"Refreshed {rel_path} ({track_id})")
            else:
                stats.added += 1
                logger.debug(f"Added {rel_path} ({track_id})")

        for rel_path in previous.paths() - tracks.keys():
            gone = previous.get(rel_path)
            stale_ids.add(gone.id)
            stats.removed += 1
            logger.debug(f"Removed {rel_path} ({gone.id})")

        index = TrackIndex(self.library_path, tracks.values())

        if self.transcoder is not None:
            for track_id in sorted(stale_ids):
                stats.invalidated += self.transcoder.invalidate(track_id)

        if self.index_path is not None:
            try:
                index.save(self.index_path)
                stats.persisted = True
            except PersistFailure as e:
                logger.error(f"{e.message}; the in-memory index is still current")

        if self.transcoder is not None:
            stats.invalidated += self.transcoder.sweep(index.ids())

        logger.success(f"Reconciled {self.library_path}: {stats}")
        return index, stats
