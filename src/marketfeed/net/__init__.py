"""HTTP reliability layer shared by every provider client."""

from marketfeed.net.coalesce import RequestCoalescer
from marketfeed.net.reliable import (
    ReliableHttpClient,
    is_retryable_status,
    parse_json_safe,
)

__all__ = [
    "RequestCoalescer",
    "ReliableHttpClient",
    "is_retryable_status",
    "parse_json_safe",
]
