"""
edumigrate Utility Functions
============================
Formatting and naming helpers shared by the migration and backup tooling.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional


TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def timestamp(now: Optional[datetime] = None) -> str:
    """Return a sortable timestamp like ``20241201_143022``."""
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def generate_backup_name(prefix: str = "backup", now: Optional[datetime] = None) -> str:
    """
    Build a backup name from a category prefix and a sortable timestamp.

    Examples:
        >>> generate_backup_name("backup", datetime(2024, 12, 1, 14, 30, 22))
        'backup_20241201_143022'
    """
    return f"{prefix}_{timestamp(now)}"


def format_file_size(size_bytes: int) -> str:
    """
    Convert bytes to human-readable format with auto-unit selection.

    Examples:
        >>> format_file_size(1024)
        '1.0 KB'
        >>> format_file_size(0)
        '0 B'
    """
    if size_bytes == 0:
        return "0 B"

    size = float(size_bytes)
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if abs(size) < 1024.0:
            if unit == 'B':
                return f"{int(size)} {unit}"
            return f"{size:.1f} {unit}"
        size /= 1024.0
    return f"{size:.1f} PB"


def format_duration(seconds: float) -> str:
    """Convert seconds to a short duration like "2.5s", "1m 30s" or "2h 15m"."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"


def directory_size(path: Path) -> int:
    """Total size in bytes of all regular files below *path*."""
    if not path.exists():
        return 0
    if path.is_file():
        return path.stat().st_size
    return sum(p.stat().st_size for p in path.rglob('*') if p.is_file())
