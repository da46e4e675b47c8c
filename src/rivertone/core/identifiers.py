"""Random track identifiers.

Identifiers are drawn from ``secrets`` so that ids allocated by concurrent
reloads or by separate process runs do not follow a shared, predictable
sequence.
"""

import secrets
import string
from typing import Container

ID_ALPHABET = string.ascii_lowercase


def allocate_id(length: int) -> str:
    """Returns a new identifier of ``length`` lowercase ASCII letters."""
    if length < 1:
        raise ValueError("length must be >= 1")
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def allocate_unique_id(length: int, taken: Container[str]) -> str:
    """Allocates an identifier that is not already in ``taken``."""
    while True:
        candidate = allocate_id(length)
        if candidate not in taken:
            return candidate
