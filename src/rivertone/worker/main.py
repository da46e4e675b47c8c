import argparse
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from rivertone.core.config import settings
from rivertone.core.errors import ToolNotFound
from rivertone.core.library_index import TrackIndex
from rivertone.core.logger import setup_logging
from rivertone.core.tools import resolve_tools
from rivertone.library import Library


def _apply_overrides(args: argparse.Namespace) -> None:
    """Copies command line options onto the global settings."""
    if getattr(args, "library", None):
        settings.LIBRARY_DIR = Path(args.library)
    if getattr(args, "data_dir", None):
        settings.DATA_DIR = Path(args.data_dir)
    if getattr(args, "host", None):
        settings.HOST = args.host
    if getattr(args, "port", None):
        settings.PORT = args.port
    if getattr(args, "verbose", False):
        # Written to settings so the server lifespan keeps the same level
        settings.LOG_LEVEL = "DEBUG"


def run_scan() -> int:
    """Reconciles the library once and prints the statistics."""
    tools = resolve_tools(settings)
    library = Library.from_settings(settings, tools)
    library.open()
    try:
        stats = library.reload()
    except (FileNotFoundError, NotADirectoryError) as e:
        logger.error(str(e))
        return 1
    print(stats)
    return 0 if stats.persisted else 1


def run_list() -> int:
    """Prints the persisted listing without touching the disk library."""
    if settings.LIBRARY_DIR is None:
        logger.error("No library directory configured (use --library or LIBRARY_DIR)")
        return 1
    index = TrackIndex.load(settings.INDEX_PATH, Path(settings.LIBRARY_DIR).resolve())
    for track in index.list():
        tags = track.tags
        print(f"{track.id}  {tags.artist} - {tags.album} - {tags.track:02d} {tags.title or track.path}")
    return 0


def run_serve() -> int:
    import uvicorn

    from rivertone.api.main import app

    # Fail before binding the port if a tool is missing
    resolve_tools(settings)
    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        ssl_certfile=str(settings.SSL_CERTFILE) if settings.SSL_CERTFILE else None,
        ssl_keyfile=str(settings.SSL_KEYFILE) if settings.SSL_KEYFILE else None,
        log_level=settings.LOG_LEVEL.lower(),
    )
    return 0


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="rivertone audio library server")
    parser.add_argument("--library", help="The library directory")
    parser.add_argument("--data-dir", help="Directory for the index and transcode cache")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("--host", help="Interface to bind")
    serve_parser.add_argument("--port", type=int, help="Port to listen on")

    subparsers.add_parser("scan", help="Reconcile the library once and exit")
    subparsers.add_parser("list", help="Print the persisted track listing")

    args = parser.parse_args(argv)
    _apply_overrides(args)
    setup_logging()

    try:
        if args.command == "serve":
            return run_serve()
        elif args.command == "scan":
            return run_scan()
        elif args.command == "list":
            return run_list()
        else:
            parser.print_help()
            return 2
    except ToolNotFound as e:
        logger.critical(e.message)
        return 1
    except ValueError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
