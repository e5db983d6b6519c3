"""Basic pubsub-session version information."""

from __future__ import annotations

__version__ = '0.1.0'

version_info: tuple[int, int, int] = (0, 1, 0)
"""
Integer tuple in the format <MAJOR>,<MINOR>,<PATCH> . Kept in sync with __version__ by tests.
"""

version_string = '.'.join(str(part) for part in version_info)
"""
Version string in the format <MAJOR>.<MINOR>.<PATCH> .
"""
