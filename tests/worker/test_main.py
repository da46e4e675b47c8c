"""Tests for the command line entry point."""

from unittest.mock import patch

import pytest

from rivertone.core.config import settings
from rivertone.core.errors import ToolNotFound
from rivertone.core.library_index import TrackIndex
from rivertone.core.models import Track, TrackTags
from rivertone.worker import main as cli


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    # Record the originals so overrides applied by main() are undone
    monkeypatch.setattr(settings, "LIBRARY_DIR", None)
    monkeypatch.setattr(settings, "DATA_DIR", settings.DATA_DIR)
    monkeypatch.setattr(settings, "LOG_LEVEL", settings.LOG_LEVEL)
    with patch("rivertone.worker.main.setup_logging"):
        yield


def test_list_prints_persisted_index(library_dir, data_dir, capsys):
    index = TrackIndex(
        library_dir.resolve(),
        [
            Track(
                id="abcdefgh",
                path="a.flac",
                modified_at=1.0,
                tags=TrackTags(artist="Nina", album="Pastel", title="Blue", track=3),
            )
        ],
    )
    index.save(data_dir / ".db.json")

    code = cli.main(["--library", str(library_dir), "--data-dir", str(data_dir), "list"])

    assert code == 0
    out = capsys.readouterr().out
    assert "abcdefgh" in out
    assert "Nina - Pastel - 03 Blue" in out


def test_list_without_library():
    assert cli.main(["list"]) == 1


def test_missing_tool_exits_nonzero(library_dir, data_dir):
    with patch("rivertone.worker.main.resolve_tools", side_effect=ToolNotFound("ffprobe", "avprobe")):
        code = cli.main(["--library", str(library_dir), "--data-dir", str(data_dir), "scan"])
    assert code == 1


def test_scan_without_library():
    with patch("rivertone.worker.main.resolve_tools"):
        assert cli.main(["scan"]) == 1


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 2
    assert "usage" in capsys.readouterr().out


def test_verbose_sets_level_for_the_server(library_dir, data_dir):
    with patch("rivertone.worker.main.run_serve", return_value=0) as serve:
        code = cli.main(["-v", "--library", str(library_dir), "--data-dir", str(data_dir), "serve"])
    assert code == 0
    serve.assert_called_once()
    # The server lifespan reconfigures logging from settings
    assert settings.LOG_LEVEL == "DEBUG"
