"""
Utility Functions

Small helpers shared by the client, the server and the CLI.
"""

import re

from . import COMPATIBLE_VERSION

_CREDENTIALS_RE = re.compile(r'//(.+?)?:(.*?)@')


def safe_url(url: str) -> str:
    """Hide the password part of a URL so it can be shown to users."""
    return _CREDENTIALS_RE.sub(lambda m: f"//{m.group(1) or ''}:[hidden]@", url, count=1)


def format_number(num: int) -> str:
    """Format an integer with thousands separators (1234567 -> 1,234,567)."""
    return f"{num:,}"


def format_size(bytes_count: float) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


def compatible_version(version: str) -> str:
    """Reduce a version string to its major.minor part."""
    return '.'.join(version.strip().split('.')[:2])


def is_compatible(version: str, ours: str = COMPATIBLE_VERSION) -> bool:
    """True if a peer announcing `version` can talk to us."""
    return bool(version) and compatible_version(version) == compatible_version(ours)
