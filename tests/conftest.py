"""Shared pytest fixtures for Drive Sync tests.

Provides temp drive directories, an always-mounted registry, and a
scripted transfer backend so sync components can be tested without
real mounts or rsync.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from drive_sync.config import DriveSyncConfig, Role
from drive_sync.errors import TransferError
from drive_sync.metadata import MetadataStore
from drive_sync.registry import DriveRegistry
from drive_sync.transfer.base import DiffReport, TransferBackend, TransferResult


def always_mounted(path: Path) -> bool:
    return True


class FakeTransfer(TransferBackend):
    """Transfer backend returning scripted reports and results per destination."""

    def __init__(
        self,
        reports: Optional[Dict[Path, DiffReport]] = None,
        results: Optional[Dict[Path, TransferResult]] = None,
    ):
        super().__init__()
        self.reports = reports or {}
        self.results = results or {}
        self.dry_runs: List[tuple] = []
        self.executions: List[tuple] = []

    def is_available(self) -> bool:
        return True

    def get_availability_message(self) -> str:
        return "fake transfer available"

    def dry_run_diff(self, source: Path, dest: Path, excludes: Sequence[str]) -> DiffReport:
        self.dry_runs.append((Path(source), Path(dest), list(excludes)))
        report = self.reports.get(Path(dest))
        if report is None:
            raise TransferError(f"no report scripted for {dest}", path=Path(dest))
        return report

    def execute(self, source: Path, dest: Path, excludes: Sequence[str]) -> TransferResult:
        self.executions.append((Path(source), Path(dest), list(excludes)))
        return self.results.get(
            Path(dest), TransferResult(success=True, message="Completed successfully", returncode=0)
        )


@pytest.fixture
def config():
    return DriveSyncConfig()


@pytest.fixture
def store():
    return MetadataStore()


@pytest.fixture
def drive_dirs(tmp_path):
    """Four empty 'drives' under a fake mount root."""
    root = tmp_path / "media"
    paths = {}
    for name in ("master", "backup1", "backup2", "spare"):
        path = root / name
        path.mkdir(parents=True)
        paths[name] = path
    paths["root"] = root
    return paths


@pytest.fixture
def make_registry(config, store):
    """Build a registry over explicit candidate paths, all mounted."""

    def _make(paths):
        ordered = [Path(p) for p in paths]
        return DriveRegistry(
            config=config,
            store=store,
            candidates=lambda: list(ordered),
            mount_check=always_mounted,
        )

    return _make


@pytest.fixture
def sync_group(drive_dirs, store):
    """A committed group: master + backup1 + backup2 sharing one set id."""
    store.write(drive_dirs["master"], "group-1", Role.MASTER)
    store.write(drive_dirs["backup1"], "group-1", Role.BACKUP)
    store.write(drive_dirs["backup2"], "group-1", Role.BACKUP)
    return drive_dirs
