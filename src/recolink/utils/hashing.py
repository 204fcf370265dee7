"""Hashing utilities for recolink.

Model artifacts are identified by the SHA-256 digest of their bytes.
"""

import hashlib

__all__ = [
    "format_sha256",
    "calculate_bytes_sha256",
]


def format_sha256(hex_digest: str) -> str:
    """Format SHA256 hash with standard prefix.

    Parameters
    ----------
    hex_digest : str
        Raw hexadecimal digest.

    Returns
    -------
    str
        Formatted hash with "sha256:" prefix.
    """
    return f"sha256:{hex_digest}"


def calculate_bytes_sha256(payload: bytes) -> str:
    """Calculate SHA-256 digest of bytes already in memory.

    Parameters
    ----------
    payload : bytes
        Complete content as bytes.

    Returns
    -------
    str
        SHA-256 digest in format "sha256:<hex>".
    """
    return format_sha256(hashlib.sha256(payload).hexdigest())
