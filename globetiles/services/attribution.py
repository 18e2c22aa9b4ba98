from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Sequence, Tuple

from ..geometry import Rectangle
from .config import AttributionEntry, CoverageArea, Credit


class AttributionIndex:
    """Answers which credits apply to a displayed rectangle at a given level.

    Coverage zoom ranges use the 1-based levels of the imagery service, so
    the 0-based tile level is shifted before comparing. Both the entry list
    and the coverage areas per entry are small, so a linear scan is used.
    """

    def __init__(self, entries: Iterable[AttributionEntry]) -> None:
        self._entries: Tuple[AttributionEntry, ...] = tuple(entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> Tuple[AttributionEntry, ...]:
        return self._entries

    def credits_for(self, rectangle: Rectangle, level: int) -> List[Credit]:
        service_level = level + 1
        credits: List[Credit] = []
        for entry in self._entries:
            if entry.credit in credits:
                continue
            if any(_area_applies(area, rectangle, service_level) for area in entry.coverage_areas):
                credits.append(entry.credit)
        return credits


def _area_applies(area: CoverageArea, rectangle: Rectangle, level: int) -> bool:
    if not area.zoom_min <= level <= area.zoom_max:
        return False
    return rectangle.intersection(area.bbox) is not None


def parse_attribution_list(providers: Sequence[Mapping[str, Any]] | None) -> Tuple[AttributionEntry, ...]:
    """Build entries from ``imageryProviders`` records.

    Each coverage ``bbox`` is ``[south, west, north, east]`` in degrees.
    """

    entries: List[AttributionEntry] = []
    for provider in providers or ():
        areas = []
        for area in provider.get("coverageAreas") or ():
            south, west, north, east = (float(value) for value in area["bbox"])
            areas.append(
                CoverageArea(
                    zoom_min=int(area["zoomMin"]),
                    zoom_max=int(area["zoomMax"]),
                    bbox=Rectangle(west, south, east, north),
                )
            )
        entries.append(
            AttributionEntry(credit=Credit(str(provider["attribution"])), coverage_areas=tuple(areas))
        )
    return tuple(entries)
