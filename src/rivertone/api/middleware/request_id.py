"""Request ID middleware for log correlation."""

import re
from typing import Callable

from fastapi import Request, Response
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from rivertone.core.identifiers import allocate_id

REQUEST_ID_HEADER = "X-Request-ID"

# Client-supplied ids end up in every log line of the request
_ACCEPTED_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags every log line emitted while a request is handled.

    A well-formed X-Request-ID header is reused; otherwise a fresh id is
    allocated. Work done on the handler's thread (reloads, encodes) runs
    inside the same context and carries the id too. The id is echoed in the
    response header.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        supplied = request.headers.get(REQUEST_ID_HEADER, "")
        request_id = supplied if _ACCEPTED_ID.match(supplied) else allocate_id(8)
        with logger.contextualize(request_id=request_id):
            response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
