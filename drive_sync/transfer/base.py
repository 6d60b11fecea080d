"""Abstract base class for transfer backends.

This module defines the interface the sync components need from the tool
that actually moves bytes: a dry-run diff and a mirroring execute. The
interface provides a consistent API regardless of which tool provides it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence
import logging


@dataclass
class DiffReport:
    """Changes a mirror from source onto destination would make.

    Attributes:
        to_add: Files present in source but not in destination
        to_update: Files present in both that would be rewritten
        to_delete: Destination entries absent from source
        total_bytes: Bytes the transfer would move (None if not reported)
        added_paths: Source-relative paths of the files to add
    """
    to_add: int = 0
    to_update: int = 0
    to_delete: int = 0
    total_bytes: Optional[int] = None
    added_paths: List[str] = field(default_factory=list)

    @property
    def has_transfers(self) -> bool:
        """True if any file content would be written to the destination."""
        return self.to_add > 0 or self.to_update > 0

    def to_dict(self) -> dict:
        return {
            "to_add": self.to_add,
            "to_update": self.to_update,
            "to_delete": self.to_delete,
            "total_bytes": self.total_bytes,
        }


@dataclass
class TransferResult:
    """Result of a transfer execution.

    Attributes:
        success: Whether the mirror completed
        message: Human-readable status message
        returncode: Exit status of the transfer tool (if applicable)
        duration_ms: Wall-clock duration
        error: Exception if the tool could not be run
    """
    success: bool
    message: str
    returncode: Optional[int] = None
    duration_ms: float = 0.0
    error: Optional[Exception] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "returncode": self.returncode,
            "duration_ms": self.duration_ms,
            "error": str(self.error) if self.error else None,
        }


class TransferBackend(ABC):
    """Abstract base class for transfer backends.

    Example:
        class RsyncBackend(TransferBackend):
            def is_available(self) -> bool:
                return shutil.which("rsync") is not None
            # ... implement other methods
    """

    def __init__(self):
        """Initialize the backend with a logger."""
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the transfer tool can be used on this system."""

    @abstractmethod
    def get_availability_message(self) -> str:
        """Get a human-readable message about backend availability."""

    @abstractmethod
    def dry_run_diff(self, source: Path, dest: Path, excludes: Sequence[str]) -> DiffReport:
        """Compute the changes a mirror would make without touching dest.

        Raises:
            TransferError: If no usable report could be produced
        """

    @abstractmethod
    def execute(self, source: Path, dest: Path, excludes: Sequence[str]) -> TransferResult:
        """Mirror source onto dest, deleting destination entries absent from source.

        Progress is reported as a side effect; the returned result carries
        the terminal status.
        """
