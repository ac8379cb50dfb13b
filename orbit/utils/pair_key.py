"""Order-independent keys over two identifiers.

Rows whose identity is an unordered pair (matches, conversations) are only
ever stored in canonical order, so "A with B" and "B with A" resolve to the
same single-sided equality lookup.
"""

from __future__ import annotations

import uuid
from typing import TypeVar, Union

Identifier = Union[uuid.UUID, str, int]
T = TypeVar("T", uuid.UUID, str, int)


def canonicalize(x: T, y: T) -> tuple[T, T]:
    """Return ``(lo, hi)`` under the natural total order of the id type.

    ``uuid.UUID`` orders by its 128-bit integer value, which matches the
    byte-wise ordering Postgres applies to ``uuid`` columns.
    """
    if y < x:
        return y, x
    return x, y


def pair_key(x: Identifier, y: Identifier) -> str:
    """Stable string form of the canonical pair, e.g. for correlation keys."""
    lo, hi = canonicalize(str(x), str(y))
    return f"{lo}:{hi}"
