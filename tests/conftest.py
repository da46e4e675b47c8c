import os
import threading
from pathlib import Path
from typing import Dict, List, Union

import pytest
from httpx import ASGITransport, AsyncClient

from rivertone.api.deps import get_library
from rivertone.api.main import app
from rivertone.core.errors import NotAudio
from rivertone.core.models import TrackTags
from rivertone.library import Library
from rivertone.worker.prober import ProbeResult
from rivertone.worker.transcoder import TranscodeCache

# ============================================================================
# TEST LIBRARY CONFIGURATION
# ============================================================================
# Tests never run ffprobe/ffmpeg. Probing goes through FakeProber (keyed by
# file name) and transcoding through a patched subprocess.run.
# ============================================================================


def make_result(
    artist: str = "",
    album: str = "",
    title: str = "",
    disc: int = 0,
    track: int = 0,
    container: str = "flac",
    codec: str = "flac",
) -> ProbeResult:
    raw = {k: str(v) for k, v in dict(artist=artist, album=album, title=title).items() if v}
    if track:
        raw["track"] = str(track)
    if disc:
        raw["disc"] = str(disc)
    return ProbeResult(
        tags=TrackTags(artist=artist, album=album, title=title, disc=disc, track=track),
        container_format=container,
        stream_codec=codec,
        raw_tags=raw,
        duration=180.0,
    )


class FakeProber:
    """Stands in for MetadataProber; unknown file names are not audio."""

    def __init__(self) -> None:
        self.results: Dict[str, Union[ProbeResult, Exception]] = {}
        self.calls: List[Path] = []
        self._lock = threading.Lock()

    def add(self, name: str, **kwargs) -> None:
        self.results[name] = make_result(**kwargs)

    def fail(self, name: str, error: Exception) -> None:
        self.results[name] = error

    def probe(self, path: Path) -> ProbeResult:
        path = Path(path)
        with self._lock:
            self.calls.append(path)
        result = self.results.get(path.name)
        if result is None:
            raise NotAudio(path, "no audio stream")
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def fake_prober():
    return FakeProber()


@pytest.fixture
def library_dir(tmp_path):
    path = tmp_path / "music"
    path.mkdir()
    return path


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def make_file(library_dir):
    """Creates a file under the library with a fixed mtime."""

    def _make(rel_path: str, mtime: float = 1_000_000.0, content: bytes = b"audio") -> Path:
        path = library_dir / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        os.utime(path, (mtime, mtime))
        return path

    return _make


@pytest.fixture
def transcoder(library_dir, data_dir):
    return TranscodeCache("ffmpeg", data_dir / ".stream", library_dir)


@pytest.fixture
def library(library_dir, data_dir, fake_prober, transcoder):
    lib = Library(
        library_dir,
        fake_prober,
        transcoder,
        index_path=data_dir / ".db.json",
        id_length=8,
    )
    lib.open()
    return lib


@pytest.fixture(scope="function")
async def client(library):
    """Create an async test client with the library override."""
    app.dependency_overrides[get_library] = lambda: library
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
