"""
Runtime settings for the adaptive importer.

Values come from keyword arguments or from the environment:
- TICKETMASTER_API_KEY: Discovery API key
- EVENT_IMPORT_PAGE_SIZE, EVENT_IMPORT_PAGING_CEILING
- EVENT_IMPORT_RATE_LIMIT_DELAY_MS, EVENT_IMPORT_MAX_RETRY_ATTEMPTS
- EVENT_IMPORT_REQUEST_TIMEOUT, EVENT_IMPORT_COUNTRY
"""

import os
from datetime import timedelta
from typing import Optional

from pydantic import BaseModel, Field

from .models import ImportMode


DISCOVERY_API_URL = "https://app.ticketmaster.com/discovery/v2/events.json"

# The Discovery API refuses size * page beyond this offset
DEEP_PAGING_LIMIT = 1000
MAX_PAGE_SIZE = 200
RATE_LIMIT_DELAY_MS = 250
MAX_RETRY_ATTEMPTS = 3

# Width of the initial time windows per mode
WINDOW_DAYS = {
    ImportMode.QUICK: 90,
    ImportMode.STANDARD: 60,
    ImportMode.ADAPTIVE: 60,
    ImportMode.FULL: 30,
}

# Number of reference cities a full import crosses with when none are given
FULL_MODE_DEFAULT_CITIES = 3


class ImportSettings(BaseModel):
    """Tunable limits for one importer instance."""

    api_key: Optional[str] = None
    base_url: str = DISCOVERY_API_URL

    paging_ceiling: int = Field(default=DEEP_PAGING_LIMIT, gt=0)
    page_size: int = Field(default=MAX_PAGE_SIZE, gt=0, le=MAX_PAGE_SIZE)

    # Seconds slept between pages and between partitions
    rate_limit_delay: float = Field(default=RATE_LIMIT_DELAY_MS / 1000, ge=0)
    max_retry_attempts: int = Field(default=MAX_RETRY_ATTEMPTS, ge=1)

    request_timeout: float = Field(default=30.0, gt=0)
    rate_limit_retries: int = Field(default=3, ge=1)
    backoff_base_delay: float = Field(default=1.0, ge=0)

    default_country: str = "DE"
    external_source: str = "ticketmaster"

    def window_width(self, mode: ImportMode) -> timedelta:
        return timedelta(days=WINDOW_DAYS[mode])

    @classmethod
    def from_env(cls, **overrides) -> "ImportSettings":
        """Build settings from environment variables, then apply overrides."""
        values: dict = {}

        api_key = os.environ.get("TICKETMASTER_API_KEY")
        if api_key:
            values["api_key"] = api_key

        env_map = {
            "EVENT_IMPORT_PAGE_SIZE": ("page_size", int),
            "EVENT_IMPORT_PAGING_CEILING": ("paging_ceiling", int),
            "EVENT_IMPORT_MAX_RETRY_ATTEMPTS": ("max_retry_attempts", int),
            "EVENT_IMPORT_REQUEST_TIMEOUT": ("request_timeout", float),
            "EVENT_IMPORT_COUNTRY": ("default_country", str),
        }
        for env_name, (field_name, cast) in env_map.items():
            raw = os.environ.get(env_name)
            if raw:
                values[field_name] = cast(raw)

        delay_ms = os.environ.get("EVENT_IMPORT_RATE_LIMIT_DELAY_MS")
        if delay_ms:
            values["rate_limit_delay"] = int(delay_ms) / 1000

        values.update(overrides)
        return cls(**values)
