"""Common utility functions for recolink."""

from recolink.utils.hashing import calculate_bytes_sha256, format_sha256
from recolink.utils.timestamps import get_iso_timestamp

__all__ = [
    "get_iso_timestamp",
    "calculate_bytes_sha256",
    "format_sha256",
]
