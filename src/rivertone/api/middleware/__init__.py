"""API middleware package."""

from rivertone.api.middleware.request_id import RequestIDMiddleware
from rivertone.api.middleware.timing import TimingMiddleware

__all__ = ["RequestIDMiddleware", "TimingMiddleware"]
