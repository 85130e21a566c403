from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Dict

MAX_TRIP_DAYS = 30

SECTION_HEADINGS = {
    "must_visit": "MUST VISIT",
    "packing_list": "PACKING LIST",
    "precautions": "PRECAUTIONS",
}

_HEADING_PATTERN = re.compile(
    r"^[ \t#*]*(MUST VISIT|PACKING LIST|PRECAUTIONS)[ \t*]*:?[ \t*]*",
    re.IGNORECASE | re.MULTILINE,
)


class TripError(ValueError):
    """Raised for incomplete or impossible trip requests."""


@dataclass(frozen=True)
class Trip:
    destination: str
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


def _parse_date(value: object, label: str) -> date:
    if not isinstance(value, str) or not value.strip():
        raise TripError(f"Missing {label}.")
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise TripError(f"{label.capitalize()} must be a date like 2024-05-01.") from exc


def validate_trip(destination: object, start_date: object, end_date: object) -> Trip:
    if not isinstance(destination, str) or not destination.strip():
        raise TripError("Missing destination.")
    start = _parse_date(start_date, "start date")
    end = _parse_date(end_date, "end date")
    if end < start:
        raise TripError("End date must not be before start date.")
    trip = Trip(destination=destination.strip(), start=start, end=end)
    if trip.days > MAX_TRIP_DAYS:
        raise TripError(f"Trips longer than {MAX_TRIP_DAYS} days are not supported.")
    return trip


def build_travel_prompt(trip: Trip) -> str:
    return (
        f"I am travelling to {trip.destination} from {trip.start.isoformat()} "
        f"to {trip.end.isoformat()} ({trip.days} days).\n"
        "Answer in plain text with exactly these three headed sections:\n"
        "MUST VISIT: the places I should not miss, one per line.\n"
        "PACKING LIST: what to pack for the season and activities, one item per line.\n"
        "PRECAUTIONS: safety, health and local etiquette tips, one per line.\n"
        "Keep each section short."
    )


def parse_sections(text: str) -> Dict[str, str]:
    """
    Split a travel answer into its headed sections.

    A section runs from its heading to the next known heading; headings are
    matched case-insensitively and may carry markdown decoration.
    """
    sections = {key: "" for key in SECTION_HEADINGS}
    lookup = {heading: key for key, heading in SECTION_HEADINGS.items()}
    matches = list(_HEADING_PATTERN.finditer(text or ""))
    for index, match in enumerate(matches):
        key = lookup[match.group(1).upper()]
        end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        if not sections[key]:
            sections[key] = text[match.end():end].strip()
    return sections
