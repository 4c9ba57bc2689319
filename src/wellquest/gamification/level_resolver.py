"""Level curve: cumulative XP -> level and progress.

level = floor(sqrt(total_xp) / 10) + 1

Level L starts at ((L - 1) * 10) ** 2 XP and ends at (L * 10) ** 2, so each
level costs 200 * L - 100 XP more than the previous one. No per-level table.
"""

from __future__ import annotations

from dataclasses import dataclass
from math import isqrt

# League bands shown next to ranking entries: (min_xp, league), highest first.
LEAGUE_BANDS: list[tuple[int, str]] = [
    (8000, "diamond"),
    (3000, "gold"),
    (500, "silver"),
    (0, "bronze"),
]


@dataclass(frozen=True)
class LevelInfo:
    level: int
    xp_into_level: int
    xp_for_next_level: int
    progress_percent: float
    next_level_at: int


def level_for_xp(total_xp: int) -> int:
    """Level number for a cumulative XP amount."""
    if total_xp < 0:
        raise ValueError(f"total_xp must be non-negative, got {total_xp}")
    # isqrt(x) // 10 == floor(sqrt(x) / 10) for every non-negative integer x
    return isqrt(total_xp) // 10 + 1


def level_threshold(level: int) -> int:
    """Cumulative XP at which ``level`` starts."""
    if level < 1:
        raise ValueError(f"level must be >= 1, got {level}")
    return ((level - 1) * 10) ** 2


def resolve_level(total_xp: int) -> LevelInfo:
    """Resolve level, XP into the level, XP span of the level and progress percent."""
    level = level_for_xp(total_xp)
    start = level_threshold(level)
    end = level_threshold(level + 1)

    xp_into_level = total_xp - start
    xp_for_next_level = end - start
    # hundredths, floored so a level never shows 100 %
    progress = (10000 * xp_into_level // xp_for_next_level) / 100

    return LevelInfo(
        level=level,
        xp_into_level=xp_into_level,
        xp_for_next_level=xp_for_next_level,
        progress_percent=progress,
        next_level_at=end,
    )


def league_for_xp(total_xp: int) -> str:
    """League band for a cumulative XP amount."""
    for min_xp, league in LEAGUE_BANDS:
        if total_xp >= min_xp:
            return league
    return LEAGUE_BANDS[-1][1]
