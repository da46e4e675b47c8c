"""On-demand transcode cache.

Each (track, format) pair maps to one artifact file in the stream directory.
``obtain`` returns a complete artifact, running the transcoding tool at most
once at a time per artifact path: concurrent requests for the same artifact
wait on a per-path lock from a ``KeyedLockRegistry`` and reuse the result,
while requests for different artifacts encode in parallel.

The encoder writes ``<artifact>.part`` and the finished file is moved into
place with ``os.replace``, so an artifact is either absent or complete. A
failed encode removes whatever it wrote.

Callers that serve the file should use ``open_artifact``: the file is opened
while its lock is held, so a reload that invalidates the artifact right
afterwards only unlinks the name and the open handle stays readable.

Typical usage example:
    cache = TranscodeCache(tools.transcode, settings.STREAM_DIR, library_path)
    with cache.open_artifact(track, "opus") as f:
        data = f.read()
"""

import os
import subprocess
import threading
import time
from contextlib import suppress
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Iterable, List, Optional, TypeVar

from loguru import logger

from rivertone.core.errors import EncodeFailure
from rivertone.core.formats import FORMATS, AudioFormat, get_format
from rivertone.core.locks import KeyedLockRegistry
from rivertone.core.models import Track

PART_SUFFIX = ".part"

T = TypeVar("T")


class TranscodeCache:
    """Disk cache of transcoded tracks with per-artifact encode dedup.

    Attributes:
        tool: Resolved path of ffmpeg (or avconv).
        stream_dir: Directory holding one file per cached transcode.
        library_path: Library root the track paths are relative to.
        timeout: Optional subprocess timeout in seconds.
    """

    def __init__(
        self,
        tool: str,
        stream_dir: Path,
        library_path: Path,
        timeout: Optional[float] = None,
    ):
        self.tool = tool
        self.stream_dir = Path(stream_dir)
        self.library_path = Path(library_path)
        self.timeout = timeout
        self._locks = KeyedLockRegistry()
        # Bookkeeping so that requests queued behind a failed encode report
        # that failure instead of immediately running the tool again.
        self._state = threading.Lock()
        self._attempts: Dict[Path, int] = {}
        self._failures: Dict[Path, EncodeFailure] = {}

    def artifact_path(self, track_id: str, fmt: AudioFormat) -> Path:
        return self.stream_dir / f"{track_id}.{fmt.extension}"

    def obtain(self, track: Track, format_name: str) -> Path:
        """Returns the path of a complete file for ``track`` in ``format_name``.

        Sources already in the requested container/codec are returned as-is.
        The path is only guaranteed to exist when this returns; use
        ``open_artifact`` to read it safely alongside reloads.

        Raises:
            UnknownFormat: ``format_name`` is not registered.
            EncodeFailure: The transcoding tool failed for this request, or
                for the in-flight encode this request waited on.
        """
        return self._obtain(track, format_name, lambda path: path)

    def open_artifact(self, track: Track, format_name: str) -> BinaryIO:
        """Like ``obtain``, but returns the file opened for binary reading.

        Artifacts are opened while their lock is held, so ``invalidate`` and
        ``sweep`` cannot remove them between the check and the open.

        Raises:
            UnknownFormat: ``format_name`` is not registered.
            EncodeFailure: See ``obtain``.
            FileNotFoundError: A source served as-is vanished from the library.
        """
        return self._obtain(track, format_name, lambda path: open(path, "rb"))

    def _obtain(self, track: Track, format_name: str, finish: Callable[[Path], T]) -> T:
        fmt = get_format(format_name)
        if fmt.matches(track.container_format, track.stream_codec):
            logger.debug(f"Serving {track.path} as-is for {fmt.name}")
            return finish(track.source_path(self.library_path))

        dest = self.artifact_path(track.id, fmt)
        with self._state:
            seen_attempts = self._attempts.get(dest, 0)

        with self._locks.locked(dest):
            if dest.exists():
                logger.debug(f"Cache HIT: {dest.name}")
                return finish(dest)

            with self._state:
                if self._attempts.get(dest, 0) != seen_attempts and dest in self._failures:
                    raise self._failures[dest]

            logger.debug(f"Cache MISS: {dest.name}")
            try:
                self.encode(track.source_path(self.library_path), dest, fmt)
            except EncodeFailure as e:
                with self._state:
                    self._attempts[dest] = self._attempts.get(dest, 0) + 1
                    self._failures[dest] = e
                raise
            with self._state:
                self._forget(dest)
            return finish(dest)

    def _forget(self, dest: Path) -> None:
        # Caller holds self._state
        self._attempts.pop(dest, None)
        self._failures.pop(dest, None)

    def _command(self, source: Path, part: Path, fmt: AudioFormat) -> List[str]:
        return [
            self.tool,
            "-nostdin",
            "-y",
            "-v", "error",
            "-i", str(source),
            "-map", "0:a:0",
            "-c:a", fmt.encoder,
            *fmt.args,
            "-f", fmt.container,
            str(part),
        ]

    def encode(self, source: Path, dest: Path, fmt: AudioFormat) -> None:
        """Runs the transcoding tool once, leaving either ``dest`` or nothing.

        Callers must hold the artifact's lock.

        Raises:
            EncodeFailure: Launch error, non-zero exit, or the finished file
                could not be moved into place.
        """
        part = dest.with_name(dest.name + PART_SUFFIX)
        logger.info(f"Encoding {source} -> {dest.name} ({fmt.encoder})")
        start = time.monotonic()
        try:
            self.stream_dir.mkdir(parents=True, exist_ok=True)
            result = subprocess.run(
                self._command(source, part, fmt),
                capture_output=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            self._discard(part, dest)
            raise EncodeFailure(dest, f"could not run {self.tool}: {e}") from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            logger.error(
                f"{self.tool} exited with {result.returncode} for {source}: {stderr[-500:]}"
            )
            self._discard(part, dest)
            raise EncodeFailure(dest, f"exit status {result.returncode}")

        try:
            os.replace(part, dest)
        except OSError as e:
            self._discard(part, dest)
            raise EncodeFailure(dest, f"could not finalize artifact: {e}") from e

        logger.success(f"Encoded {dest.name} in {time.monotonic() - start:.1f}s")

    @staticmethod
    def _discard(*paths: Path) -> None:
        for path in paths:
            with suppress(FileNotFoundError):
                path.unlink()

    def invalidate(self, track_id: str) -> int:
        """Deletes every cached artifact of ``track_id``.

        Each artifact's lock is taken first, so an in-flight encode finishes
        before its output is removed rather than landing afterwards. Any
        recorded encode failure for the artifact is forgotten as well.

        Returns:
            Number of files deleted.
        """
        removed = 0
        for fmt in FORMATS.values():
            dest = self.artifact_path(track_id, fmt)
            with self._locks.locked(dest):
                with self._state:
                    self._forget(dest)
                try:
                    dest.unlink()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning(f"Could not remove artifact {dest}: {e}")
                    continue
                removed += 1
                logger.debug(f"Invalidated {dest.name}")
        return removed

    def sweep(self, known_ids: Iterable[str]) -> int:
        """Deletes artifacts whose track id is not in ``known_ids``.

        Leftover partial files of known tracks are removed too. Each file is
        removed only while its artifact's lock can be taken without waiting,
        so a partial file belonging to an encode in flight is left alone.

        Returns:
            Number of files deleted.
        """
        if not self.stream_dir.is_dir():
            return 0
        known = set(known_ids)
        removed = 0
        for entry in self.stream_dir.iterdir():
            if not entry.is_file():
                continue
            track_id = entry.name.split(".", 1)[0]
            artifact = self.stream_dir / entry.name.removesuffix(PART_SUFFIX)
            is_part = entry.name.endswith(PART_SUFFIX)
            if track_id in known and not is_part:
                continue
            with self._locks.try_locked(artifact) as acquired:
                if not acquired:
                    continue
                if track_id not in known:
                    with self._state:
                        self._forget(artifact)
                try:
                    entry.unlink()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning(f"Could not remove orphaned artifact {entry}: {e}")
                    continue
                removed += 1
        if removed:
            logger.info(f"Removed {removed} orphaned artifacts from {self.stream_dir}")
        return removed

    def stats(self) -> Dict[str, int]:
        """Returns the number and size of cached artifacts and in-flight encodes."""
        files = 0
        total_bytes = 0
        if self.stream_dir.is_dir():
            for entry in self.stream_dir.iterdir():
                if entry.is_file() and not entry.name.endswith(PART_SUFFIX):
                    files += 1
                    with suppress(OSError):
                        total_bytes += entry.stat().st_size
        return {
            "artifacts": files,
            "bytes": total_bytes,
            "active": len(self._locks),
        }
