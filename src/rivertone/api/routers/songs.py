"""Listing, reload, track detail and stream endpoints.

Handlers are plain ``def`` functions so each request runs on its own worker
thread; the library service does its own locking.
"""

import os
from typing import BinaryIO, Iterator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from loguru import logger
from starlette.background import BackgroundTask

from rivertone.api.deps import get_library
from rivertone.api.schemas import TrackDetail, TrackListItem
from rivertone.core.errors import EncodeFailure, TrackNotFound, UnknownFormat
from rivertone.core.models import Track
from rivertone.library import Library

router = APIRouter()


def _get_track_or_404(library: Library, track_id: str) -> Track:
    """Get track by ID or raise 404."""
    try:
        return library.by_id(track_id)
    except TrackNotFound:
        raise HTTPException(status_code=404, detail="Track not found")


@router.get("", response_model=list[TrackListItem])
def list_songs(library: Library = Depends(get_library)):
    """List every track, sorted by artist, album, disc, track and title."""
    return [TrackListItem.from_track(t) for t in library.list()]


@router.put("", response_model=list[TrackListItem])
def reload_songs(library: Library = Depends(get_library)):
    """Reconcile the library with the disk, then return the new listing."""
    try:
        stats = library.reload()
    except (FileNotFoundError, NotADirectoryError) as e:
        logger.error(f"Reload failed: {e}")
        raise HTTPException(status_code=500, detail="Library directory unavailable")
    logger.info(f"Reload via API: {stats}")
    return [TrackListItem.from_track(t) for t in library.list()]


@router.get("/{track_id}", response_model=TrackDetail)
def get_song(track_id: str, library: Library = Depends(get_library)):
    """Get one track with all of its tags."""
    return TrackDetail.from_track(_get_track_or_404(library, track_id))


def _iter_file(audio: BinaryIO, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
    with audio:
        while True:
            chunk = audio.read(chunk_size)
            if not chunk:
                break
            yield chunk


@router.get("/{track_id}/{format_name}")
def stream_song(track_id: str, format_name: str, library: Library = Depends(get_library)):
    """Stream a track, transcoding it first if no cached copy exists.

    The file is opened before the response starts, so a reload that drops
    the cached copy mid-stream does not cut the response short.
    """
    try:
        audio, fmt = library.stream(track_id, format_name)
    except (TrackNotFound, UnknownFormat) as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except EncodeFailure as e:
        logger.error(e.message)
        raise HTTPException(status_code=e.status_code, detail="Transcoding failed")
    except FileNotFoundError:
        logger.warning(f"Source of track {track_id} is missing; reload the library")
        raise HTTPException(status_code=404, detail="Track file not found")

    size = os.fstat(audio.fileno()).st_size
    return StreamingResponse(
        _iter_file(audio),
        media_type=fmt.media_type,
        headers={"Content-Length": str(size)},
        background=BackgroundTask(audio.close),
    )
