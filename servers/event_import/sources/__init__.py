"""
Upstream search adapters.

Each source implements:
- search(partition, page, size) -> SearchPage
- Source-specific error mapping (UpstreamError / RateLimitedError)
"""

from .ticketmaster import SearchClient, TicketmasterClient, build_search_params

__all__ = [
    "SearchClient",
    "TicketmasterClient",
    "build_search_params",
]
