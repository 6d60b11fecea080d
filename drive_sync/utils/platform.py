"""Filesystem and mount helpers.

Handles the OS-facing checks drive discovery and space admission rely on:
- Mount point detection (mountpoint command, /proc/mounts fallback)
- Readability checks
- Free space on a mounted filesystem
- Enumeration of candidate paths under removable-media roots
"""

import os
import shutil
import subprocess
from pathlib import Path
from typing import Iterable, Iterator, List, Set

PROC_MOUNTS = Path("/proc/mounts")

SIZE_UNITS = ["B", "KB", "MB", "GB", "TB"]


def _decode_mount_field(field: str) -> str:
    """Decode the octal escapes /proc/mounts uses for whitespace.

    Example:
        >>> _decode_mount_field("/media/usb\\\\040stick")
        '/media/usb stick'
    """
    for escaped, char in (("\\040", " "), ("\\011", "\t"), ("\\012", "\n"), ("\\134", "\\")):
        field = field.replace(escaped, char)
    return field


def read_mount_table(mounts_file: Path = PROC_MOUNTS) -> Set[str]:
    """Return the set of mount points listed in a mounts table.

    Returns an empty set if the table cannot be read.
    """
    mount_points: Set[str] = set()
    try:
        with open(mounts_file, "r", encoding="utf-8") as f:
            for line in f:
                parts = line.split()
                if len(parts) >= 2:
                    mount_points.add(_decode_mount_field(parts[1]))
    except OSError:
        pass
    return mount_points


def is_mountpoint(path: Path) -> bool:
    """Check if a path is a mount point.

    Args:
        path: Path to check

    Returns:
        True if path is a mount point
    """
    path = Path(path)
    if not path.is_dir():
        return False

    # Use mountpoint command if available
    if shutil.which("mountpoint"):
        try:
            result = subprocess.run(
                ["mountpoint", "-q", str(path)],
                check=False,
                capture_output=True,
            )
            return result.returncode == 0
        except OSError:
            pass

    # Fallback: exact match against the mount table
    return str(path.resolve()) in read_mount_table()


def is_readable(path: Path) -> bool:
    """Check if a directory can be listed."""
    path = Path(path)
    return path.is_dir() and os.access(path, os.R_OK | os.X_OK)


def get_free_bytes(path: Path) -> int:
    """Bytes available to an unprivileged user on the filesystem holding path.

    Raises:
        OSError: If the filesystem cannot be queried
    """
    stat = os.statvfs(path)
    return stat.f_bavail * stat.f_frsize


def iter_candidate_paths(roots: Iterable[Path], max_depth: int = 2) -> Iterator[Path]:
    """Yield directories up to max_depth levels below each root.

    Hidden directories are skipped. Roots that do not exist are ignored.
    No mount check is applied here.

    Example:
        /media/usb, /media/alice/usb, /run/media/alice/usb, /mnt/backup
    """
    seen: Set[Path] = set()
    level: List[Path] = [Path(r) for r in roots if Path(r).is_dir()]

    for _ in range(max_depth):
        next_level: List[Path] = []
        for parent in level:
            try:
                children = sorted(parent.iterdir())
            except OSError:
                continue
            for child in children:
                if child.name.startswith(".") or not child.is_dir():
                    continue
                if child in seen:
                    continue
                seen.add(child)
                next_level.append(child)
                yield child
        level = next_level


def format_bytes(num_bytes: int) -> str:
    """Render a byte count with a 1024-based unit, truncating like df does.

    Example:
        >>> format_bytes(1536)
        '1KB'
        >>> format_bytes(3 * 1024 ** 3)
        '3GB'
    """
    value = int(num_bytes)
    unit = 0
    while value >= 1024 and unit < len(SIZE_UNITS) - 1:
        value //= 1024
        unit += 1
    return f"{value}{SIZE_UNITS[unit]}"
