from fastapi import Request

from rivertone.library import Library


def get_library(request: Request) -> Library:
    """Dependency returning the library service built at startup."""
    return request.app.state.library
