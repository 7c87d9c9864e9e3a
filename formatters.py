"""Display formatting for elapsed time and file sizes."""

from __future__ import annotations


def format_elapsed(seconds: float) -> str:
    """Format seconds as MM:SS."""
    total = int(max(seconds, 0))
    return f"{total // 60:02d}:{total % 60:02d}"


def format_compact(seconds: float) -> str:
    """Format seconds as M:SS."""
    total = int(max(seconds, 0))
    return f"{total // 60}:{total % 60:02d}"


def format_file_size(size_bytes: int) -> str:
    kb = size_bytes / 1024
    if kb < 1024:
        return f"{kb:.0f} KB"
    return f"{kb / 1024:.1f} MB"
