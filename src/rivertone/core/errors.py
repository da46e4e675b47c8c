"""Error taxonomy for the library index and transcode cache.

Per-file errors (``NotAudio``, ``ProbeFailure``) are contained by the
reconciler; per-request errors (``UnknownFormat``, ``TrackNotFound``,
``EncodeFailure``) are mapped to HTTP status codes by the API layer.
``ToolNotFound`` is the only error that is fatal to the process, and only
at startup.
"""

from typing import Any


class RivertoneError(Exception):
    """Base exception for all rivertone errors."""

    status_code = 500

    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class NotAudio(RivertoneError):
    """File has no audio stream or the container was identified with low confidence."""

    def __init__(self, path: Any, reason: str) -> None:
        super().__init__(f"{path} is not an audio file: {reason}")
        self.path = path
        self.reason = reason


class ProbeFailure(RivertoneError):
    """The probe tool could not be run or produced unusable output."""

    def __init__(self, path: Any, reason: str) -> None:
        super().__init__(f"Probing {path} failed: {reason}")
        self.path = path
        self.reason = reason


class UnknownFormat(RivertoneError):
    """Requested transcode format is not registered."""

    status_code = 404

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown format {name!r}")
        self.name = name


class TrackNotFound(RivertoneError):
    """No track with the requested identifier."""

    status_code = 404

    def __init__(self, track_id: str) -> None:
        super().__init__(f"Track with id {track_id} not found")
        self.track_id = track_id


class EncodeFailure(RivertoneError):
    """The transcoding tool failed; no artifact was left behind."""

    def __init__(self, destination: Any, reason: str) -> None:
        super().__init__(f"Encoding {destination} failed: {reason}")
        self.destination = destination
        self.reason = reason


class PersistFailure(RivertoneError):
    """The index snapshot could not be written."""

    def __init__(self, path: Any, reason: str) -> None:
        super().__init__(f"Could not persist index to {path}: {reason}")
        self.path = path
        self.reason = reason


class ToolNotFound(RivertoneError):
    """Neither the primary nor the fallback executable is available."""

    def __init__(self, *names: str) -> None:
        quoted = " or ".join(f"'{n}'" for n in names)
        super().__init__(f"Could not find {quoted} executable")
        self.names = names
