import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest
from httpx import AsyncClient

from rivertone.worker.transcoder import TranscodeCache


def _fake_ffmpeg(cmd, **kwargs):
    Path(cmd[-1]).write_bytes(b"transcoded")
    return subprocess.CompletedProcess(cmd, 0, b"", b"")


def _broken_ffmpeg(cmd, **kwargs):
    return subprocess.CompletedProcess(cmd, 1, b"", b"Conversion failed!")


@pytest.fixture
def populated(fake_prober, make_file):
    """A small library: two albums by one artist plus an untagged file."""
    make_file("b/2-01.flac")
    make_file("b/1-02.flac")
    make_file("b/1-01.flac")
    make_file("a/song.mp3")
    make_file("loose.flac")
    make_file("notes.txt")
    fake_prober.add("2-01.flac", artist="Beta", album="Two", disc=2, track=1, title="Z")
    fake_prober.add("1-02.flac", artist="Beta", album="Two", disc=1, track=2, title="A")
    fake_prober.add("1-01.flac", artist="beta", album="two", disc=1, track=1, title="M")
    fake_prober.add("song.mp3", artist="Alpha", album="One", title="Song", container="mp3", codec="mp3")
    fake_prober.add("loose.flac")


async def _reload(client: AsyncClient):
    response = await client.put("/songs")
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_list_empty_before_reload(client: AsyncClient):
    response = await client.get("/songs")
    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_reload_returns_sorted_listing(client: AsyncClient, populated):
    songs = await _reload(client)

    assert [s["path"] for s in songs] == [
        "loose.flac",
        "a/song.mp3",
        "b/1-01.flac",
        "b/1-02.flac",
        "b/2-01.flac",
    ]
    listed = (await client.get("/songs")).json()
    assert listed == songs


@pytest.mark.asyncio
async def test_reload_keeps_ids(client: AsyncClient, populated):
    first = {s["path"]: s["id"] for s in await _reload(client)}
    second = {s["path"]: s["id"] for s in await _reload(client)}
    assert first == second
    assert len(set(first.values())) == len(first)


@pytest.mark.asyncio
async def test_reload_missing_library(client: AsyncClient, library_dir):
    library_dir.rmdir()
    response = await client.put("/songs")
    assert response.status_code == 500


@pytest.mark.asyncio
async def test_get_song(client: AsyncClient, populated):
    songs = await _reload(client)
    song = next(s for s in songs if s["path"] == "a/song.mp3")

    response = await client.get(f"/songs/{song['id']}")
    assert response.status_code == 200
    data = response.json()
    assert data["artist"] == "Alpha"
    assert data["container_format"] == "mp3"
    assert data["tags"]["title"] == "Song"
    assert data["streams"]["opus"] == f"/songs/{song['id']}/opus"


@pytest.mark.asyncio
async def test_get_song_not_found(client: AsyncClient):
    response = await client.get("/songs/zzzzzzzz")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_stream_transcodes(client: AsyncClient, populated, transcoder):
    songs = await _reload(client)
    song = next(s for s in songs if s["path"] == "b/1-01.flac")

    with patch("rivertone.worker.transcoder.subprocess.run", side_effect=_fake_ffmpeg) as run:
        response = await client.get(f"/songs/{song['id']}/opus")
        again = await client.get(f"/songs/{song['id']}/opus")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("audio/ogg")
    assert response.content == b"transcoded"
    assert again.content == b"transcoded"
    assert run.call_count == 1
    assert (transcoder.stream_dir / f"{song['id']}.opus").exists()


@pytest.mark.asyncio
async def test_stream_source_as_is(client: AsyncClient, populated):
    songs = await _reload(client)
    song = next(s for s in songs if s["path"] == "a/song.mp3")

    with patch("rivertone.worker.transcoder.subprocess.run") as run:
        response = await client.get(f"/songs/{song['id']}/mp3")

    run.assert_not_called()
    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/mpeg"
    assert response.content == b"audio"


@pytest.mark.asyncio
async def test_stream_unknown_format(client: AsyncClient, populated):
    songs = await _reload(client)
    response = await client.get(f"/songs/{songs[0]['id']}/wav")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_stream_unknown_track(client: AsyncClient):
    response = await client.get("/songs/zzzzzzzz/mp3")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_stream_encode_failure(client: AsyncClient, populated, transcoder):
    songs = await _reload(client)
    song = next(s for s in songs if s["path"] == "loose.flac")

    with patch("rivertone.worker.transcoder.subprocess.run", side_effect=_broken_ffmpeg):
        response = await client.get(f"/songs/{song['id']}/mp3")

    assert response.status_code == 500
    assert not (transcoder.stream_dir / f"{song['id']}.mp3").exists()


@pytest.mark.asyncio
async def test_stream_survives_invalidation_before_send(client: AsyncClient, populated, transcoder):
    """A reload dropping the artifact after it was opened does not break the response."""
    songs = await _reload(client)
    song = next(s for s in songs if s["path"] == "b/1-01.flac")
    real_open = TranscodeCache.open_artifact

    def open_then_invalidate(self, track, format_name):
        audio = real_open(self, track, format_name)
        self.invalidate(track.id)
        return audio

    with patch("rivertone.worker.transcoder.subprocess.run", side_effect=_fake_ffmpeg), patch.object(
        TranscodeCache, "open_artifact", open_then_invalidate
    ):
        response = await client.get(f"/songs/{song['id']}/mp3")

    assert response.status_code == 200
    assert response.content == b"transcoded"
    assert response.headers["content-length"] == str(len(b"transcoded"))
    assert not (transcoder.stream_dir / f"{song['id']}.mp3").exists()


@pytest.mark.asyncio
async def test_stream_missing_source(client: AsyncClient, populated, library_dir):
    songs = await _reload(client)
    song = next(s for s in songs if s["path"] == "a/song.mp3")
    (library_dir / "a" / "song.mp3").unlink()

    response = await client.get(f"/songs/{song['id']}/mp3")
    assert response.status_code == 404
