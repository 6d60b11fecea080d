"""rsync transfer backend.

Dry runs use itemized output (``-i -n``) plus ``--stats``::

    >f+++++++++ photos/new.jpg        file to add
    >f.st...... notes.txt             file to update
    .f...p..... script.sh             attribute-only update
    *deleting   old/report.pdf        destination entry to delete
    cd+++++++++ photos/               directory, not counted

    Total transferred file size: 1,048,576 bytes

Execution mirrors with ``--delete`` and leaves progress output on the
terminal.
"""

import os
import re
import shutil
import subprocess
import time
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .base import DiffReport, TransferBackend, TransferResult
from ..errors import TransferError


# rsync exit codes that still produce a complete itemized report
PARTIAL_EXIT_CODES = (23, 24)

DELETING_PREFIX = "*deleting"

TOTAL_TRANSFERRED_RE = re.compile(r"^Total transferred file size:\s*([\d,.]+)")

# YXcstpoguax: update type, file type, then attribute flags
ITEMIZE_RE = re.compile(r"^([<>ch.])([fdLDS])(\S{7,9})\s(.+)$")

INSTALL_HINTS = (
    "rsync is not installed. Please install it first.\n"
    "On Ubuntu/Debian: sudo apt-get install rsync\n"
    "On Fedora/CentOS/RHEL: sudo dnf install rsync"
)


def _dir_arg(path: Path) -> str:
    """Trailing slash so rsync copies directory contents, not the directory."""
    return str(path).rstrip("/") + "/"


def exclude_args(excludes: Sequence[str]) -> List[str]:
    return [f"--exclude={pattern}" for pattern in excludes]


def parse_itemized_output(output: str) -> DiffReport:
    """Build a DiffReport from ``rsync -i -n --stats`` output.

    Only regular files are counted. New files (all-``+`` flags) are adds,
    other file lines are updates, ``*deleting`` lines are deletes.
    """
    report = DiffReport()

    for raw_line in output.splitlines():
        line = raw_line.rstrip("\r\n")
        if not line:
            continue

        if line.startswith(DELETING_PREFIX):
            report.to_delete += 1
            continue

        stats_match = TOTAL_TRANSFERRED_RE.match(line)
        if stats_match:
            digits = re.sub(r"[^\d]", "", stats_match.group(1))
            report.total_bytes = int(digits) if digits else None
            continue

        item_match = ITEMIZE_RE.match(line)
        if not item_match:
            continue
        _, file_type, flags, name = item_match.groups()
        if file_type != "f":
            continue

        if flags.strip("+") == "":
            report.to_add += 1
            report.added_paths.append(name)
        else:
            report.to_update += 1

    return report


class RsyncBackend(TransferBackend):
    """Transfer backend driving the rsync command line tool.

    Example:
        backend = RsyncBackend()
        if backend.is_available():
            report = backend.dry_run_diff(master, backup, [".dsync"])
            print(report.to_add, report.total_bytes)
    """

    def __init__(self, rsync_path: str = "rsync"):
        super().__init__()
        self.rsync_path = rsync_path
        self._resolved: Optional[str] = None

    @property
    def executable(self) -> Optional[str]:
        if self._resolved is None:
            self._resolved = shutil.which(self.rsync_path)
        return self._resolved

    def is_available(self) -> bool:
        return self.executable is not None

    def get_availability_message(self) -> str:
        if self.is_available():
            return f"rsync found at {self.executable}"
        return INSTALL_HINTS

    def _run_command(
        self,
        cmd: List[str],
        capture_stdout: bool = True,
    ) -> Tuple[int, str, str]:
        """Run rsync and return (return_code, stdout, stderr).

        Numbers in rsync's stats are locale-formatted, so the C locale is
        forced.
        """
        self.logger.debug(f"Running command: {' '.join(cmd)}")
        env = dict(os.environ, LC_ALL="C")
        try:
            result = subprocess.run(
                cmd,
                check=False,
                stdout=subprocess.PIPE if capture_stdout else None,
                stderr=subprocess.PIPE,
                text=True,
                env=env,
            )
        except FileNotFoundError:
            return -1, "", f"Command not found: {cmd[0]}"
        return result.returncode, result.stdout or "", result.stderr or ""

    def _require(self) -> str:
        if not self.is_available():
            raise TransferError(INSTALL_HINTS)
        return self.executable

    def dry_run_diff(self, source: Path, dest: Path, excludes: Sequence[str]) -> DiffReport:
        cmd = [
            self._require(), "-a", "-i", "-n", "--delete", "--ignore-errors", "--stats",
            *exclude_args(excludes),
            _dir_arg(source), _dir_arg(dest),
        ]
        code, stdout, stderr = self._run_command(cmd)

        if code != 0 and code not in PARTIAL_EXIT_CODES:
            raise TransferError(
                f"rsync dry run {source} -> {dest} failed ({code}): "
                f"{stderr.strip() or 'Unknown error'}",
                path=Path(dest),
            )
        if code != 0:
            self.logger.warning(f"rsync dry run reported partial results ({code}): {stderr.strip()}")

        report = parse_itemized_output(stdout)
        self.logger.debug(
            f"Dry run {source} -> {dest}: {report.to_add} add, "
            f"{report.to_update} update, {report.to_delete} delete, "
            f"{report.total_bytes} bytes"
        )
        return report

    def execute(self, source: Path, dest: Path, excludes: Sequence[str]) -> TransferResult:
        started = time.perf_counter()
        try:
            executable = self._require()
        except TransferError as e:
            return TransferResult(success=False, message=str(e), error=e)

        cmd = [
            executable, "-a", "--delete", "--ignore-errors", "--info=progress2",
            *exclude_args(excludes),
            _dir_arg(source), _dir_arg(dest),
        ]
        code, _, stderr = self._run_command(cmd, capture_stdout=False)
        duration_ms = (time.perf_counter() - started) * 1000

        if code == 0:
            return TransferResult(
                success=True,
                message="Completed successfully",
                returncode=code,
                duration_ms=duration_ms,
            )

        return TransferResult(
            success=False,
            message=f"rsync exited with {code}: {stderr.strip() or 'Unknown error'}",
            returncode=code,
            duration_ms=duration_ms,
        )
