"""Per-drive association records.

Each associated drive carries one small text file at its root (``.dsync``
by default) holding exactly three fields::

    SET_ID=5f0c9a52-8d1e-4c8b-9a0e-2f57c1b3e7aa
    ROLE=master
    TIMESTAMP=2024-05-01T12:00:00Z

The file is parsed as data, never executed. Anything other than these
three keys, a role outside master/backup, a blank value or an unparseable
timestamp makes the record INVALID. Invalid records are reported as such
and are never interpreted as "no record".

A drive without a record is unassigned; unassigning a drive removes the
file instead of leaving a stale one behind.
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Union

from drive_sync.config import DEFAULT_METADATA_FILENAME, PERSISTED_ROLES, Role
from drive_sync.errors import InvalidMetadataError, MetadataWriteError

logger = logging.getLogger(__name__)

KEY_SET_ID = "SET_ID"
KEY_ROLE = "ROLE"
KEY_TIMESTAMP = "TIMESTAMP"
RECORD_KEYS = (KEY_SET_ID, KEY_ROLE, KEY_TIMESTAMP)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

PathLike = Union[str, Path]


class ReadStatus(Enum):
    """Outcome of reading a drive's metadata record."""
    FOUND = "found"
    NOT_FOUND = "not_found"
    INVALID = "invalid"


@dataclass(frozen=True)
class Record:
    """A validated association record."""
    set_id: str
    role: Role
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "set_id": self.set_id,
            "role": self.role.value,
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass(frozen=True)
class ReadResult:
    """Result of MetadataStore.read().

    Attributes:
        status: FOUND, NOT_FOUND or INVALID
        record: The validated record (FOUND only)
        error: Why validation failed (INVALID only)
    """
    status: ReadStatus
    record: Optional[Record] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status is ReadStatus.FOUND

    @property
    def invalid(self) -> bool:
        return self.status is ReadStatus.INVALID


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as ISO-8601 UTC with a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing Z.

    Raises:
        ValueError: If the value is not a date-time
    """
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_record(text: str) -> Record:
    """Strictly parse the text of a metadata record.

    Args:
        text: File contents

    Returns:
        The validated Record

    Raises:
        InvalidMetadataError: On any deviation from the three-field format
    """
    fields: Dict[str, str] = {}

    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep:
            raise InvalidMetadataError(f"Line {lineno} is not KEY=VALUE")
        if key not in RECORD_KEYS:
            raise InvalidMetadataError(f"Unexpected key {key!r} on line {lineno}")
        if key in fields:
            raise InvalidMetadataError(f"Duplicate key {key!r} on line {lineno}")
        fields[key] = _unquote(value.strip()).strip()

    for key in RECORD_KEYS:
        if not fields.get(key):
            raise InvalidMetadataError(f"Missing {key}")

    role_value = fields[KEY_ROLE]
    if role_value not in [r.value for r in PERSISTED_ROLES]:
        raise InvalidMetadataError(f"Invalid ROLE value: {role_value}")

    try:
        timestamp = parse_timestamp(fields[KEY_TIMESTAMP])
    except ValueError:
        raise InvalidMetadataError(f"Invalid TIMESTAMP value: {fields[KEY_TIMESTAMP]}")

    return Record(
        set_id=fields[KEY_SET_ID],
        role=Role(role_value),
        timestamp=timestamp,
    )


def format_record(record: Record) -> str:
    """Serialize a record in the on-drive format."""
    return (
        f"{KEY_SET_ID}={record.set_id}\n"
        f"{KEY_ROLE}={record.role.value}\n"
        f"{KEY_TIMESTAMP}={format_timestamp(record.timestamp)}\n"
    )


class MetadataStore:
    """Reads, writes and removes association records on drive roots.

    Example:
        store = MetadataStore()
        store.write(Path("/media/usb1"), "5f0c9a52", Role.MASTER)
        result = store.read(Path("/media/usb1"))
        if result.found:
            print(result.record.role)
    """

    def __init__(self, filename: str = DEFAULT_METADATA_FILENAME):
        if not filename or "/" in filename:
            raise ValueError(f"Invalid metadata filename: {filename!r}")
        self.filename = filename

    def path_for(self, drive_path: PathLike) -> Path:
        return Path(drive_path) / self.filename

    def read(self, drive_path: PathLike) -> ReadResult:
        """Read and validate the record on a drive.

        Returns:
            ReadResult with NOT_FOUND if no file exists, INVALID if the file
            exists but fails validation (or cannot be read), FOUND otherwise
        """
        record_path = self.path_for(drive_path)

        if not record_path.exists():
            return ReadResult(ReadStatus.NOT_FOUND)

        try:
            with open(record_path, "r", encoding="utf-8") as f:
                text = f.read()
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Cannot read metadata file {record_path}: {e}")
            return ReadResult(ReadStatus.INVALID, error=f"unreadable: {e}")

        try:
            record = parse_record(text)
        except InvalidMetadataError as e:
            logger.error(f"Invalid metadata file {record_path}: {e}")
            return ReadResult(ReadStatus.INVALID, error=str(e))

        return ReadResult(ReadStatus.FOUND, record=record)

    def write(
        self,
        drive_path: PathLike,
        set_id: str,
        role: Role,
        now: Optional[datetime] = None,
    ) -> Record:
        """Write (or overwrite) the record on a drive.

        The new content is written to a temporary file next to the record
        and renamed into place.

        Args:
            drive_path: Drive mount root
            set_id: Sync group identifier
            role: MASTER or BACKUP
            now: Timestamp override (defaults to the current UTC time)

        Returns:
            The record that was written

        Raises:
            ValueError: If role is not persistable or set_id is blank
            MetadataWriteError: If the file cannot be written
        """
        if role not in PERSISTED_ROLES:
            raise ValueError(f"Role {role.value} cannot be persisted")
        if not set_id or not set_id.strip() or "\n" in set_id:
            raise ValueError("set_id must be a non-empty single-line token")

        record = Record(
            set_id=set_id,
            role=role,
            timestamp=(now or datetime.now(timezone.utc)).replace(microsecond=0),
        )
        record_path = self.path_for(drive_path)
        logger.info(f"Writing {self.filename} on {drive_path} with role: {role.value}")

        tmp_name = None
        try:
            # Name matches metadata_temp_pattern, so a leftover is never mirrored
            fd, tmp_name = tempfile.mkstemp(
                prefix=f"{self.filename}.", suffix=".tmp", dir=str(Path(drive_path))
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(format_record(record))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, record_path)
            tmp_name = None
        except OSError as e:
            raise MetadataWriteError(
                f"Failed to write {record_path}: {e}", path=Path(drive_path)
            ) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

        return record

    def remove(self, drive_path: PathLike) -> bool:
        """Remove the record from a drive.

        Returns:
            True if a record was removed, False if none existed

        Raises:
            MetadataWriteError: If the file exists but cannot be removed
        """
        record_path = self.path_for(drive_path)
        try:
            record_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise MetadataWriteError(
                f"Failed to remove {record_path}: {e}", path=Path(drive_path)
            ) from e
        logger.info(f"Removed {self.filename} from {drive_path}")
        return True
