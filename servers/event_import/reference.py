"""
Static lookup tables for categories (upstream segments) and cities.

User-typed names are resolved with fuzzy matching so that
"arts & theater", "Arts-Theatre" and "arts-theatre" all map to the
upstream segment "Arts & Theatre".
"""

import re
from typing import Optional

from rapidfuzz import fuzz, process

# Category key -> upstream segment name
SEGMENTS = {
    "music": "Music",
    "sports": "Sports",
    "arts-theatre": "Arts & Theatre",
    "family": "Family",
    "film": "Film",
    "miscellaneous": "Miscellaneous",
}

SEGMENT_DESCRIPTIONS = {
    "music": "Concerts, festivals, live music",
    "sports": "Football, basketball, tennis, etc.",
    "arts-theatre": "Theatre, musicals, opera",
    "family": "Kids events, family shows",
    "film": "Screenings, premieres",
    "miscellaneous": "Everything else",
}

TOP_CITIES = {
    "DE": [
        "Berlin",
        "München",
        "Hamburg",
        "Köln",
        "Frankfurt",
        "Stuttgart",
        "Düsseldorf",
        "Dortmund",
        "Leipzig",
        "Dresden",
        "Hannover",
        "Nürnberg",
    ],
    "AT": ["Wien", "Graz", "Linz", "Salzburg", "Innsbruck"],
    "CH": ["Zürich", "Genf", "Basel", "Bern", "Lausanne"],
}

# Minimum fuzzy score (0-100) to accept a match
MATCH_THRESHOLD = 80


def _normalize(name: str) -> str:
    name = name.lower().strip()
    name = name.replace("&", " ")
    name = re.sub(r"[-_/]+", " ", name)
    name = name.replace("theater", "theatre")
    return re.sub(r"\s+", " ", name)


def resolve_category(name: str) -> Optional[str]:
    """Map a category key or loosely typed name to an upstream segment name.

    Args:
        name: Category key ("music"), segment name ("Arts & Theatre") or a
              close spelling of either

    Returns:
        Segment name, or None when nothing is close enough
    """
    if not name or not name.strip():
        return None

    if name in SEGMENTS:
        return SEGMENTS[name]
    if name in SEGMENTS.values():
        return name

    choices: dict[str, str] = {}
    for key, segment in SEGMENTS.items():
        choices[_normalize(key)] = segment
        choices[_normalize(segment)] = segment

    match = process.extractOne(
        _normalize(name),
        list(choices),
        scorer=fuzz.token_sort_ratio,
        score_cutoff=MATCH_THRESHOLD,
    )
    if match is None:
        return None
    return choices[match[0]]


def resolve_city(name: str, country_code: str) -> str:
    """Return the reference spelling of a city, or the input unchanged.

    Unknown cities are passed through: the upstream accepts free text.
    """
    name = name.strip()
    known = TOP_CITIES.get(country_code.upper(), [])
    if not known or not name:
        return name

    match = process.extractOne(
        name.lower(),
        [city.lower() for city in known],
        scorer=fuzz.ratio,
        score_cutoff=MATCH_THRESHOLD,
    )
    if match is None:
        return name
    return known[match[2]]


def default_cities(country_code: str, limit: int) -> list[str]:
    return TOP_CITIES.get(country_code.upper(), [])[:limit]


def category_options() -> list[dict[str, str]]:
    """Categories as shown to a user picking what to import."""
    return [
        {"key": key, "label": label, "description": SEGMENT_DESCRIPTIONS.get(key, "")}
        for key, label in SEGMENTS.items()
    ]
