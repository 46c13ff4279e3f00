"""Winner selection."""

from __future__ import annotations

import random
import secrets
from typing import Iterable, List, Optional, TypeVar

T = TypeVar("T")


def select_winners(
    pool: Iterable[T], count: int, *, rng: Optional[random.Random] = None
) -> List[T]:
    """Draw up to ``count`` distinct entrants from ``pool`` without replacement.

    Uses an in-place Fisher-Yates shuffle of a de-duplicated copy and returns
    the first ``min(count, len(pool))`` elements.
    """
    candidates = list(dict.fromkeys(pool))
    if count <= 0 or not candidates:
        return []
    rng = rng or secrets.SystemRandom()
    for i in range(len(candidates) - 1, 0, -1):
        j = rng.randrange(i + 1)
        candidates[i], candidates[j] = candidates[j], candidates[i]
    return candidates[: min(count, len(candidates))]
