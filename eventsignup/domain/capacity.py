from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

WORKSHOP = "workshop"
PLACES_PER_GUIDE = 7

RIDE_LEVELS = ("level1", "level2", "level2plus", "level3")

_LEVEL_LABELS = {
    "level1": "Level 1",
    "level2": "Level 2",
    "level2plus": "Level 2+",
    "level3": "Level 3",
    WORKSHOP: "Workshop",
}


@dataclass(frozen=True)
class EventAccessData:
    """Read-only event facts from the content source, fetched per request."""

    public_release_date: Optional[str] = None
    is_flinta_only: bool = False
    workshop_capacity: Optional[int] = None
    guide_counts: dict[str, int] = field(default_factory=dict)


def capacity_for(level: str, access: EventAccessData, *, places_per_guide: int = PLACES_PER_GUIDE) -> Optional[int]:
    """Maximum confirmed seats for ``level``.

    ``None`` means uncapped. A ride level with no guides has capacity 0, so
    every signup goes to the waitlist until a guide is assigned.
    """
    if level == WORKSHOP:
        return access.workshop_capacity
    guides = access.guide_counts.get(level, 0)
    if not guides:
        return 0
    return guides * places_per_guide


def level_label(level: str) -> str:
    return _LEVEL_LABELS.get(level, level)
