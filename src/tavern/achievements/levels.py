"""Achievement level derivation.

A template's ``upgrades`` are sorted by strictly increasing
``required_count``. Level ``i`` (1-based) is reached once a counter's count
is at least ``upgrades[i-1]["required_count"]``; below the first threshold
the counter sits at level 0, the base tier.
"""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Sequence
from typing import Any

from sqlalchemy import ColumnElement, case, literal

Upgrades = Sequence[dict[str, Any]]


def thresholds(upgrades: Upgrades) -> list[int]:
    """Required counts in level order."""
    return [int(u["required_count"]) for u in upgrades]


def derive_level(count: int, upgrades: Upgrades) -> int:
    """Highest level whose threshold ``count`` has reached, or 0.

    Binary search over the sorted thresholds: the number of thresholds
    that are <= count is exactly the reached level.
    """
    return bisect_right(thresholds(upgrades), count)


def level_points(base_points: int, upgrades: Upgrades, level: int) -> int:
    """Cumulative points for a tier: base points plus every reached upgrade's increment."""
    return base_points + sum(int(u["points"]) for u in upgrades[:level])


def award_points(template: Any, count: int) -> int:  # noqa: ANN401
    """Points a counter of ``count`` is worth against ``template``."""
    return level_points(template.base_points, template.upgrades, derive_level(count, template.upgrades))


def level_info(template: Any, level: int) -> dict:  # noqa: ANN401
    """Display info for a tier of ``template``. Level 0 uses the template's own name and description."""
    upgrades = template.upgrades
    level = max(0, min(level, len(upgrades)))
    if level == 0:
        tier_name, tier_description = template.name, template.description
    else:
        tier_name = upgrades[level - 1]["name"]
        tier_description = upgrades[level - 1]["description"]

    next_threshold = upgrades[level]["required_count"] if level < len(upgrades) else None
    return {
        "level": level,
        "name": tier_name,
        "description": tier_description,
        "points": level_points(template.base_points, upgrades, level),
        "next_required_count": next_threshold,
        "max_level": len(upgrades),
    }


def level_case(count_expr: ColumnElement[int], upgrades: Upgrades) -> ColumnElement[int]:
    """SQL expression deriving the level from ``count_expr``.

    Lets a counter update write count and level in a single statement, so the
    level always matches the count the database actually stored.
    """
    if not upgrades:
        return literal(0)
    whens = [
        (count_expr >= required, level)
        for level, required in reversed(list(enumerate(thresholds(upgrades), start=1)))
    ]
    return case(*whens, else_=0)
