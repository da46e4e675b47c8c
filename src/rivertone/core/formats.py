"""Output formats the transcode cache can produce."""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Tuple

from rivertone.core.errors import UnknownFormat


@dataclass(frozen=True)
class AudioFormat:
    """A streaming target format.

    Attributes:
        name: Name used in stream URLs (e.g. "opus").
        encoder: Encoder name passed to the transcoder's ``-c:a``.
        container: Muxer name passed to the transcoder's ``-f``.
        extension: File extension of cached artifacts.
        media_type: Content type of the HTTP response.
        source_codecs: Source codecs that already satisfy this format when
            carried in ``container``; such sources are served as-is.
        args: Codec/quality arguments appended after the encoder.
    """

    name: str
    encoder: str
    container: str
    extension: str
    media_type: str
    source_codecs: FrozenSet[str]
    args: Tuple[str, ...] = ()

    def matches(self, container_format: str, stream_codec: str) -> bool:
        """True when a source with this container/codec needs no transcode."""
        # ffprobe reports demuxer aliases comma-separated, e.g. "mov,mp4,m4a"
        containers = {c.strip() for c in (container_format or "").split(",")}
        return self.container in containers and stream_codec in self.source_codecs


FORMATS: Dict[str, AudioFormat] = {
    "opus": AudioFormat(
        name="opus",
        encoder="libopus",
        container="ogg",
        extension="opus",
        media_type="audio/ogg",
        source_codecs=frozenset({"opus"}),
        args=("-b:a", "128000", "-compression_level", "0"),
    ),
    "mp3": AudioFormat(
        name="mp3",
        encoder="libmp3lame",
        container="mp3",
        extension="mp3",
        media_type="audio/mpeg",
        source_codecs=frozenset({"mp3"}),
        args=("-q:a", "4"),
    ),
}


def get_format(name: str) -> AudioFormat:
    try:
        return FORMATS[name]
    except KeyError:
        raise UnknownFormat(name) from None
