"""
Map raw Discovery API event records to the event store schema.

Record shape (only the fields we read):
    {
        "id": "G5diZ9...", "name": "...", "url": "...",
        "info": "...", "pleaseNote": "...",
        "dates": {"start": {"dateTime": "...", "localDate": "..."}},
        "classifications": [{"segment": {"name": ...}, "genre": {"name": ...}}],
        "images": [{"url": ..., "ratio": "16_9", "width": 1024}],
        "_embedded": {"venues": [{"name": ..., "city": {"name": ...},
                                  "country": {"name": ...},
                                  "location": {"latitude": ..., "longitude": ...}}]}
    }
"""

from typing import Any, Optional

from dateutil import parser as date_parser

from .models import StoredEvent

DEFAULT_START_TIME = "20:00"


def map_category(segment: Optional[str], genre: Optional[str]) -> str:
    """Normalize upstream segment/genre names to store categories."""
    seg = (segment or "").lower()
    gen = (genre or "").lower()

    if "music" in seg or "music" in gen:
        return "music"
    if "sports" in seg or "sport" in gen:
        return "sports"
    if "arts" in seg or "theatre" in seg:
        return "art"
    if "comedy" in gen:
        return "nightlife"
    return "other"


def select_best_image(images: list[dict[str, Any]]) -> Optional[str]:
    """Pick a wide 16:9 image, then any wide image, then the first one."""
    if not images:
        return None

    def width(img: dict[str, Any]) -> int:
        return img.get("width") or 0

    for img in images:
        if img.get("ratio") == "16_9" and width(img) > 1000:
            return img.get("url")
    for img in images:
        if width(img) > 800:
            return img.get("url")
    return images[0].get("url")


def build_location(venue: dict[str, Any]) -> str:
    """Join venue name, city and country into one address line."""
    parts = [
        venue.get("name") or "",
        (venue.get("city") or {}).get("name") or "",
        (venue.get("country") or {}).get("name") or "",
    ]
    return ", ".join(part for part in parts if part)


def split_start(dates: dict[str, Any]) -> Optional[tuple[str, str]]:
    """Split the start into (YYYY-MM-DD, HH:MM).

    Records with only a local date start at DEFAULT_START_TIME.
    Returns None when the record has no usable start.
    """
    start = dates.get("start") or {}
    raw = start.get("dateTime") or start.get("localDate")
    if not raw:
        return None

    try:
        parsed = date_parser.isoparse(raw)
    except (ValueError, TypeError, OverflowError):
        return None

    if "T" not in raw:
        return parsed.strftime("%Y-%m-%d"), DEFAULT_START_TIME
    return parsed.strftime("%Y-%m-%d"), parsed.strftime("%H:%M")


def _parse_coordinate(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def category_label(record: dict[str, Any]) -> str:
    """Label used for the per-run category breakdown."""
    classification = (record.get("classifications") or [{}])[0]
    segment = (classification.get("segment") or {}).get("name")
    genre = (classification.get("genre") or {}).get("name")
    return segment or genre or "Other"


def map_event_record(record: dict[str, Any], external_source: str) -> Optional[StoredEvent]:
    """Convert one upstream record into a StoredEvent.

    Returns None for records that cannot be stored (no id, name or start).
    """
    external_id = record.get("id")
    title = record.get("name")
    if not external_id or not title:
        return None

    start = split_start(record.get("dates") or {})
    if start is None:
        return None
    start_date, start_time = start

    classification = (record.get("classifications") or [{}])[0]
    segment = (classification.get("segment") or {}).get("name")
    genre = (classification.get("genre") or {}).get("name")

    venues = (record.get("_embedded") or {}).get("venues") or [{}]
    venue = venues[0]
    coordinates = venue.get("location") or {}

    description = (
        record.get("info")
        or record.get("pleaseNote")
        or f"{title} from Ticketmaster"
    )

    return StoredEvent(
        external_id=str(external_id),
        external_source=external_source,
        title=title,
        description=description,
        category=map_category(segment, genre),
        location=build_location(venue),
        latitude=_parse_coordinate(coordinates.get("latitude")),
        longitude=_parse_coordinate(coordinates.get("longitude")),
        start_date=start_date,
        start_time=start_time,
        image_url=select_best_image(record.get("images") or []),
        ticket_url=record.get("url"),
        external_url=record.get("url"),
    )
