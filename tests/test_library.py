"""Tests for the Library service: publishing, lookups, concurrent access."""

import threading
import time
from unittest.mock import patch

import pytest

from rivertone.core.errors import TrackNotFound, UnknownFormat
from rivertone.core.library_index import TrackIndex
from rivertone.library import Library


def test_reload_publishes_new_index(library, fake_prober, make_file):
    make_file("a.flac")
    fake_prober.add("a.flac", artist="A")
    assert library.list() == ()

    stats = library.reload()

    assert stats.added == 1
    assert [t.path for t in library.list()] == ["a.flac"]
    assert library.last_stats is stats


def test_by_id(library, fake_prober, make_file):
    make_file("a.flac")
    fake_prober.add("a.flac", artist="A")
    library.reload()
    track = library.list()[0]
    assert library.by_id(track.id) is track
    with pytest.raises(TrackNotFound):
        library.by_id("zzzzzzzz")


def test_open_restores_persisted_ids(library_dir, data_dir, fake_prober, make_file, transcoder, library):
    make_file("a.flac")
    fake_prober.add("a.flac", artist="A")
    library.reload()
    original = library.list()[0].id

    restarted = Library(library_dir, fake_prober, transcoder, index_path=data_dir / ".db.json")
    restarted.open()
    assert restarted.list()[0].id == original
    fake_prober.calls.clear()
    restarted.reload()
    assert fake_prober.calls == []
    assert restarted.list()[0].id == original


def test_reads_during_reload_see_a_consistent_index(library, fake_prober, make_file):
    for i in range(5):
        make_file(f"old{i}.flac")
        fake_prober.add(f"old{i}.flac", artist="Old")
    library.reload()
    old_paths = {t.path for t in library.list()}

    for i in range(5):
        (library.library_path / f"old{i}.flac").unlink()
        make_file(f"new{i}.flac")
        fake_prober.add(f"new{i}.flac", artist="New")

    slow_probe = fake_prober.probe

    def probe(path):
        time.sleep(0.02)
        return slow_probe(path)

    seen = []
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            seen.append(frozenset(t.path for t in library.list()))

    readers = [threading.Thread(target=reader) for _ in range(3)]
    with patch.object(fake_prober, "probe", side_effect=probe):
        for t in readers:
            t.start()
        library.reload()
        stop.set()
        for t in readers:
            t.join()

    new_paths = {f"new{i}.flac" for i in range(5)}
    assert seen
    assert all(s == old_paths or s == new_paths for s in seen)
    assert {t.path for t in library.list()} == new_paths


def test_reloads_are_serialized(library, fake_prober, make_file):
    make_file("a.flac")
    fake_prober.add("a.flac", artist="A")
    inside = 0
    max_inside = 0
    lock = threading.Lock()
    real_reconcile = library.reconciler.reconcile

    def reconcile(previous):
        nonlocal inside, max_inside
        with lock:
            inside += 1
            max_inside = max(max_inside, inside)
        time.sleep(0.05)
        try:
            return real_reconcile(previous)
        finally:
            with lock:
                inside -= 1

    with patch.object(library.reconciler, "reconcile", side_effect=reconcile):
        threads = [threading.Thread(target=library.reload) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    assert max_inside == 1
    assert len(library.list()) == 1


def test_stream_resolves_and_obtains(library, fake_prober, make_file):
    make_file("a.mp3")
    fake_prober.add("a.mp3", artist="A", container="mp3", codec="mp3")
    library.reload()
    track_id = library.list()[0].id

    audio, fmt = library.stream(track_id, "mp3")
    with audio:
        assert str(audio.name) == str(library.library_path / "a.mp3")
        assert audio.read() == b"audio"
    assert fmt.media_type == "audio/mpeg"
    assert library.by_path("a.mp3").id == track_id
    assert library.by_path("missing.mp3") is None

    with pytest.raises(UnknownFormat):
        library.stream(track_id, "wav")
    with pytest.raises(TrackNotFound):
        library.stream("zzzzzzzz", "mp3")


def test_index_property_is_a_snapshot(library):
    assert isinstance(library.index, TrackIndex)
    assert len(library.index) == 0
