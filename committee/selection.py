from __future__ import annotations

import random
from collections.abc import Sequence


def select_evaluators(
    pool: Sequence[str],
    count: int | None = None,
    subset: Sequence[str] | None = None,
    rng: random.Random | None = None,
) -> list[str]:
    """Pick the committee for one task.

    An explicit ``subset`` is used verbatim. Otherwise ``count`` distinct ids are
    drawn uniformly without replacement; a pool smaller than ``count`` is
    returned whole.
    """
    if subset is not None:
        return list(subset)

    distinct = list(dict.fromkeys(pool))
    if count is None or count >= len(distinct):
        return distinct
    if count <= 0:
        return []

    rng = rng or random.Random()
    return rng.sample(distinct, count)
