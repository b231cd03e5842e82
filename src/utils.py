"""Utility functions for the NSX subnet operator."""

import datetime
import ipaddress
from collections.abc import Iterable

from constants import STATUS_MESSAGE_LIMIT


def now_iso() -> str:
    """Return current UTC time in ISO format."""
    return datetime.datetime.now(datetime.UTC).isoformat()


def count_addresses(cidrs: Iterable[str]) -> int:
    """Count the addresses covered by a list of CIDRs.

    Example: ['10.0.0.0/28', '10.0.1.0/29'] -> 24
    """
    total = 0
    for cidr in cidrs:
        total += ipaddress.ip_network(cidr, strict=False).num_addresses
    return total


def truncate_message(message: str, limit: int = STATUS_MESSAGE_LIMIT) -> str:
    """Shorten an error message for use in a status field."""
    return message[:limit]
