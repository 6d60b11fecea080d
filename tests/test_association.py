"""Tests for drive_sync.association module.

Validates the toggle cycle, master mutual exclusion, the backup cascade,
change detection and per-drive commit reporting.
"""

import logging
import random
from pathlib import Path

import pytest

from drive_sync.association import AssociationSession, CommitAction, SessionState
from drive_sync.config import Role
from drive_sync.errors import AssociationError, InvalidMetadataError, MetadataWriteError
from drive_sync.metadata import MetadataStore, ReadStatus
from drive_sync.registry import Drive


class RecordingStore(MetadataStore):
    """MetadataStore that records calls and fails for chosen paths."""

    def __init__(self, fail_paths=()):
        super().__init__()
        self.fail_paths = {Path(p) for p in fail_paths}
        self.calls = []

    def write(self, drive_path, set_id, role, now=None):
        self.calls.append(("write", Path(drive_path), set_id, role))
        if Path(drive_path) in self.fail_paths:
            raise MetadataWriteError(f"Read-only file system: {drive_path}", path=Path(drive_path))
        return super().write(drive_path, set_id, role, now)

    def remove(self, drive_path):
        self.calls.append(("remove", Path(drive_path)))
        if Path(drive_path) in self.fail_paths:
            raise MetadataWriteError(f"Read-only file system: {drive_path}", path=Path(drive_path))
        return super().remove(drive_path)


def unassigned_drives(tmp_path, count):
    drives = []
    for i in range(count):
        path = tmp_path / f"drive{i}"
        path.mkdir()
        drives.append(Drive(path=path, mount_check=lambda p: True))
    return drives


class TestToggle:
    """Toggle cycle and session invariants."""

    def test_first_toggle_is_master_then_backup(self, tmp_path):
        """First toggle should make a master, later ones backups."""
        session = AssociationSession(unassigned_drives(tmp_path, 3))
        assert session.toggle(0) is Role.MASTER
        assert session.toggle(1) is Role.BACKUP
        assert session.toggle(2) is Role.BACKUP
        assert session.pending == [Role.MASTER, Role.BACKUP, Role.BACKUP]

    def test_backup_toggles_back_to_unassigned(self, tmp_path):
        """Toggling a backup should unassign it."""
        session = AssociationSession(unassigned_drives(tmp_path, 2))
        session.toggle(0)
        session.toggle(1)
        assert session.toggle(1) is Role.UNASSIGNED
        assert session.pending == [Role.MASTER, Role.UNASSIGNED]

    def test_master_cascade_clears_backups(self, tmp_path):
        """Unassigning the master should unassign every backup."""
        session = AssociationSession(unassigned_drives(tmp_path, 4))
        session.toggle(1)
        session.toggle(0)
        session.toggle(3)
        assert session.toggle(1) is Role.UNASSIGNED
        assert session.pending == [Role.UNASSIGNED] * 4
        assert session.has_master is False

    def test_after_cascade_next_toggle_is_master(self, tmp_path):
        """After a cascade the next toggle should pick a new master."""
        session = AssociationSession(unassigned_drives(tmp_path, 2))
        session.toggle(0)
        session.toggle(1)
        session.toggle(0)
        assert session.toggle(1) is Role.MASTER

    def test_existing_master_makes_new_drive_backup(self, tmp_path):
        """Committed master should make a new drive a backup."""
        drives = unassigned_drives(tmp_path, 2)
        drives[0].role, drives[0].set_id = Role.MASTER, "g1"
        session = AssociationSession(drives)
        assert session.has_master
        assert session.toggle(1) is Role.BACKUP

    def test_random_sequences_keep_invariants(self, tmp_path):
        """Any toggle sequence should keep at most one master."""
        rng = random.Random(1234)
        session = AssociationSession(unassigned_drives(tmp_path, 5))
        for _ in range(500):
            index = rng.randrange(5)
            before = session.pending[index]
            session.toggle(index)
            assert session.pending.count(Role.MASTER) <= 1
            if before is Role.MASTER:
                assert Role.BACKUP not in session.pending
            if Role.BACKUP in session.pending:
                assert Role.MASTER in session.pending

    def test_toggle_does_not_touch_disk(self, tmp_path):
        """Toggling should never write metadata."""
        drives = unassigned_drives(tmp_path, 2)
        session = AssociationSession(drives)
        session.toggle(0)
        session.toggle(1)
        assert not any((d.path / ".dsync").exists() for d in drives)

    def test_bad_index(self, tmp_path):
        """Out of range index should raise."""
        session = AssociationSession(unassigned_drives(tmp_path, 1))
        with pytest.raises(IndexError):
            session.toggle(3)


class TestInvalidMetadataGuard:
    """Drives with unrecognized records are never reassigned silently."""

    def test_toggle_refused_until_acknowledged(self, tmp_path):
        """Invalid record should block toggling until acknowledged."""
        drives = unassigned_drives(tmp_path, 1)
        drives[0].metadata_error = "Invalid ROLE value: owner"
        session = AssociationSession(drives)

        with pytest.raises(InvalidMetadataError):
            session.toggle(0)
        assert session.pending == [Role.UNASSIGNED]

        session.acknowledge_invalid(0)
        assert session.toggle(0) is Role.MASTER

    def test_invalid_record_untouched_by_commit(self, tmp_path, store):
        """Unchanged slot with an invalid record should be left alone."""
        drives = unassigned_drives(tmp_path, 3)
        record_file = drives[2].path / ".dsync"
        record_file.write_text("SET_ID=abc\nROLE=owner\nTIMESTAMP=2024-05-01T12:00:00Z\n")
        drives[2].metadata_error = "Invalid ROLE value: owner"

        session = AssociationSession(drives)
        session.toggle(0)
        session.toggle(1)
        session.commit(store)

        assert "ROLE=owner" in record_file.read_text()
        assert store.read(drives[2].path).status is ReadStatus.INVALID


class TestChanges:
    """has_changes / changes / describe."""

    def test_no_changes_initially(self, tmp_path):
        """Fresh session should report no changes."""
        session = AssociationSession(unassigned_drives(tmp_path, 2))
        assert session.has_changes() is False
        assert session.changes() == []

    def test_toggle_there_and_back(self, tmp_path):
        """Toggling back to the committed role should clear the change."""
        session = AssociationSession(unassigned_drives(tmp_path, 2))
        session.toggle(0)
        assert session.has_changes() is True
        assert session.changes() == [0]
        session.toggle(0)
        assert session.has_changes() is False

    def test_describe(self, tmp_path):
        """Description should show committed and pending roles."""
        drives = unassigned_drives(tmp_path, 2)
        session = AssociationSession(drives)
        session.toggle(0)
        assert session.describe(0) == f"{drives[0].path} (unassigned → master)"
        assert session.describe(1) == f"{drives[1].path} (unassigned)"


class TestCommit:
    """Persisting a session."""

    def test_scenario_master_and_backup_share_fresh_id(self, tmp_path, store):
        """Master and backup should share a freshly minted set id."""
        drives = unassigned_drives(tmp_path, 2)
        session = AssociationSession(drives)
        session.toggle(0)
        session.toggle(1)

        result = session.commit(store)

        assert result.success
        x = store.read(drives[0].path).record
        y = store.read(drives[1].path).record
        assert x.role is Role.MASTER
        assert y.role is Role.BACKUP
        assert x.set_id == y.set_id == result.set_id
        assert len(x.set_id) > 0
        assert session.state is SessionState.COMMITTED

    def test_each_commit_mints_new_id(self, tmp_path, store):
        """Every commit should re-stamp the group with a new id."""
        drives = unassigned_drives(tmp_path, 3)
        session = AssociationSession(drives)
        session.toggle(0)
        session.toggle(1)
        first = session.commit(store).set_id

        drives[0].role, drives[0].set_id = Role.MASTER, first
        drives[1].role, drives[1].set_id = Role.BACKUP, first
        session = AssociationSession(drives)
        session.toggle(2)
        second = session.commit(store, id_factory=lambda: "regenerated").set_id

        assert second == "regenerated"
        for drive in drives:
            assert store.read(drive.path).record.set_id == "regenerated"

    def test_backup_from_other_group_warns(self, tmp_path, store, caplog):
        """Backup taken from another group should log a warning."""
        drives = unassigned_drives(tmp_path, 3)
        drives[1].role, drives[1].set_id = Role.BACKUP, "old-group"
        drives[2].role, drives[2].set_id = Role.BACKUP, "old-group"
        session = AssociationSession(drives)
        session.toggle(0)
        session.toggle(2)

        with caplog.at_level(logging.WARNING, logger="drive_sync.association"):
            result = session.commit(store, id_factory=lambda: "new-group")

        assert result.success
        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert warnings == [f"{drives[1].path} leaves group old-group for group new-group"]
        assert store.read(drives[1].path).record.set_id == "new-group"

    def test_same_group_restamp_does_not_warn(self, tmp_path, store, caplog):
        """Re-stamping a group's own backups should not warn."""
        drives = unassigned_drives(tmp_path, 3)
        drives[0].role, drives[0].set_id = Role.MASTER, "g1"
        drives[1].role, drives[1].set_id = Role.BACKUP, "g1"
        session = AssociationSession(drives)
        session.toggle(2)

        with caplog.at_level(logging.WARNING, logger="drive_sync.association"):
            session.commit(store)

        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]

    def test_no_changes_means_no_writes(self, tmp_path):
        """Commit without changes should write nothing."""
        store = RecordingStore()
        drives = unassigned_drives(tmp_path, 2)
        drives[0].role, drives[0].set_id = Role.MASTER, "g1"
        session = AssociationSession(drives)
        session.toggle(1)
        session.toggle(1)

        result = session.commit(store)

        assert store.calls == []
        assert result.writes == 0
        assert result.success

    def test_unassign_removes_record(self, tmp_path, store):
        """Unassigned slots should have their record removed."""
        drives = unassigned_drives(tmp_path, 2)
        store.write(drives[0].path, "g1", Role.MASTER)
        store.write(drives[1].path, "g1", Role.BACKUP)
        drives[0].role, drives[0].set_id = Role.MASTER, "g1"
        drives[1].role, drives[1].set_id = Role.BACKUP, "g1"

        session = AssociationSession(drives)
        session.toggle(0)  # master off, backup cascades
        result = session.commit(store)

        assert result.success
        assert {r.action for r in result.results} == {CommitAction.REMOVE}
        assert result.set_id is None
        for drive in drives:
            assert store.read(drive.path).status is ReadStatus.NOT_FOUND

    def test_partial_failure_is_reported_not_rolled_back(self, tmp_path):
        """Failed write should be reported and others kept."""
        drives = unassigned_drives(tmp_path, 2)
        store = RecordingStore(fail_paths=[drives[1].path])
        session = AssociationSession(drives)
        session.toggle(0)
        session.toggle(1)

        result = session.commit(store)

        assert result.success is False
        by_path = {r.drive.path: r for r in result.results}
        assert by_path[drives[0].path].success is True
        assert by_path[drives[1].path].success is False
        assert "Read-only" in by_path[drives[1].path].error
        assert store.read(drives[0].path).record.role is Role.MASTER
        # One attempt per drive, no retry
        assert [c[1] for c in store.calls] == [drives[0].path, drives[1].path]

    def test_failure_does_not_stop_later_drives(self, tmp_path):
        """Failure on one drive should not skip later drives."""
        drives = unassigned_drives(tmp_path, 3)
        store = RecordingStore(fail_paths=[drives[0].path])
        session = AssociationSession(drives)
        session.toggle(0)
        session.toggle(1)
        session.toggle(2)

        result = session.commit(store)

        assert [r.success for r in result.results] == [False, True, True]
        assert store.read(drives[2].path).record.role is Role.BACKUP

    def test_multiple_masters_refused(self, tmp_path):
        """Commit should refuse more than one pending master."""
        store = RecordingStore()
        drives = unassigned_drives(tmp_path, 3)
        drives[0].role, drives[0].set_id = Role.MASTER, "g1"
        drives[1].role, drives[1].set_id = Role.MASTER, "g2"
        session = AssociationSession(drives)
        session.toggle(2)

        with pytest.raises(AssociationError):
            session.commit(store)
        assert store.calls == []

    def test_cancel_writes_nothing(self, tmp_path):
        """Cancelled session should write nothing."""
        store = RecordingStore()
        session = AssociationSession(unassigned_drives(tmp_path, 2))
        session.toggle(0)
        session.cancel()

        assert session.state is SessionState.CANCELLED
        assert store.calls == []
        with pytest.raises(AssociationError):
            session.toggle(1)

    def test_commit_twice_refused(self, tmp_path, store):
        """Committed session should not commit again."""
        session = AssociationSession(unassigned_drives(tmp_path, 1))
        session.toggle(0)
        session.commit(store)
        with pytest.raises(AssociationError):
            session.commit(store)

    def test_result_to_dict(self, tmp_path, store):
        """Commit result should serialize per drive."""
        session = AssociationSession(unassigned_drives(tmp_path, 1))
        session.toggle(0)
        d = session.commit(store, id_factory=lambda: "g-fixed").to_dict()
        assert d["set_id"] == "g-fixed"
        assert d["results"][0]["role"] == "master"
        assert d["results"][0]["action"] == "write"
