"""
Character-level feature hashing shared by both towers.

Text attributes (titles, genres, moods, ids ...) have no vocabulary here;
each character code is spread over a band of coordinates instead. The
mapping is deterministic and order-sensitive, but not semantic: unrelated
words can land on the same coordinates.
"""

from typing import Any, Optional

import numpy as np


def _code_units(text: str) -> np.ndarray:
    """UTF-16 code units of ``text`` (what browsers' charCodeAt returns)."""
    return np.frombuffer(text.encode("utf-16-le"), dtype="<u2")


def hash_to_vector(
    text: Any,
    vec: np.ndarray,
    offset: int = 0,
    weight: float = 1.0,
    band: Optional[int] = None,
) -> None:
    """
    Add the character codes of ``text`` into ``vec`` in place.

    Each code ``c`` at position ``i`` contributes ``(c / 255) * weight``.

    band=None: coordinate ``(offset + i) % len(vec)``. Long strings spill
    into the following coordinates and wrap around the whole vector.

    band=N: coordinate ``offset + i % N``, stopping once ``offset + i``
    reaches the end of the vector.
    """
    string = str(text or "").lower()
    if not string:
        return
    size = len(vec)
    for i, code in enumerate(_code_units(string)):
        if band is None:
            idx = (offset + i) % size
        else:
            if offset + i >= size:
                break
            idx = offset + (i % band)
        vec[idx] += (float(code) / 255.0) * weight


def hash_user(user_id: Any) -> float:
    """Fold a user id into [0, 1) through a signed 32-bit string hash."""
    h = 0
    for code in _code_units(str(user_id)):
        h = ((h << 5) - h + int(code)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return (abs(h) % 1000) / 1000.0
