"""Shared formatting helpers for log lines and alert messages.

Example:
    >>> from monitor.utils import format_rate
    >>> format_rate(500000)
    '488.28 KB/s'
"""

from __future__ import annotations

from typing import Union

# Type alias for numeric values
NumericValue = Union[int, float]


def format_rate(bytes_per_second: NumericValue) -> str:
    """Format a byte rate in KB/s with two decimals.

    Alert messages always use KB/s so that values and thresholds line up
    when operators compare them.

    Examples:
        >>> format_rate(0)
        '0.00 KB/s'
        >>> format_rate(1000000)
        '976.56 KB/s'
    """
    return f"{float(bytes_per_second) / 1024:.2f} KB/s"


def format_bytes(bytes_value: NumericValue, speed: bool = False) -> str:
    """Format bytes to a human-readable string (1024 base).

    Examples:
        >>> format_bytes(1500000)
        '1.4 MB'
        >>> format_bytes(1500000, speed=True)
        '1.4 MB/s'
    """
    suffix = "/s" if speed else ""
    if bytes_value == 0:
        return f"0 B{suffix}"

    value = float(bytes_value)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(value) < 1024.0:
            return f"{value:.1f} {unit}{suffix}"
        value /= 1024.0
    return f"{value:.1f} PB{suffix}"


__all__ = ["NumericValue", "format_bytes", "format_rate"]
