"""
Adaptive Event Importer

Imports listings from the Ticketmaster Discovery API into a local event store:
- Splits a coarse request into time/category/city partitions
- Bisects partitions that exceed the API's deep-paging limit
- Fetches pages under rate limiting and retries failed partitions
- Deduplicates against already imported events and reports live progress

Run with: python -m servers.event_import
"""

__version__ = "1.0.0"
