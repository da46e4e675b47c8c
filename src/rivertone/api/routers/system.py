from fastapi import APIRouter, Depends

from rivertone import __version__
from rivertone.api.deps import get_library
from rivertone.core.config import settings
from rivertone.library import Library

router = APIRouter()


@router.get("/health")
def health_check(library: Library = Depends(get_library)):
    """Report index size and the outcome of the last reload."""
    last = library.last_stats
    return {
        "status": "ok",
        "tracks": len(library.index),
        "last_reload": last.to_dict() if last else None,
        "version": __version__,
    }


@router.get("/config")
def get_config():
    """Return public configuration."""
    return {
        "log_level": settings.LOG_LEVEL,
        "id_length": settings.ID_LENGTH,
        "probe_score_threshold": settings.PROBE_SCORE_THRESHOLD,
    }


@router.get("/cache/stats")
def get_cache_stats(library: Library = Depends(get_library)):
    """Get transcode cache statistics for monitoring."""
    return library.transcoder.stats()
