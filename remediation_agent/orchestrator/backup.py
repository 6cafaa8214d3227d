"""Scoped baseline backup for a file under repair."""

import os
import tempfile
from pathlib import Path
from typing import Optional

from ..utils import get_logger


class BaselineBackup:
    """
    Holds a file's baseline content for the duration of a fix sequence.

    Usage:
        with BaselineBackup(path) as backup:
            backup.write_candidate(text)
            ...
            backup.commit()

    Unless commit() was called, leaving the block restores the baseline
    byte-for-byte, whatever the exit path. A copy of the baseline is kept in
    a temporary file outside the project tree while the block is active.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.baseline: bytes = b""
        self.committed = False
        self._backup_path: Optional[Path] = None
        self._dirty = False
        self.logger = get_logger("orchestrator.backup")

    def __enter__(self) -> "BaselineBackup":
        self.baseline = self.path.read_bytes()
        fd, name = tempfile.mkstemp(prefix="remediation-", suffix=".bak")
        with os.fdopen(fd, "wb") as handle:
            handle.write(self.baseline)
        self._backup_path = Path(name)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if not self.committed:
                self.restore(force=True)
        finally:
            if self._backup_path is not None:
                self._backup_path.unlink(missing_ok=True)
                self._backup_path = None
        return False

    @property
    def baseline_text(self) -> str:
        return self.baseline.decode("utf-8", errors="surrogateescape")

    @property
    def backup_path(self) -> Optional[Path]:
        return self._backup_path

    def write_candidate(self, content: str) -> None:
        """Replace the file with candidate content (the only mutation point)."""
        self._dirty = True
        self.path.write_bytes(content.encode("utf-8", errors="surrogateescape"))

    def restore(self, force: bool = False) -> None:
        """Put the baseline back on disk."""
        if not self._dirty and not force:
            return
        if force and self.path.exists() and self.path.read_bytes() == self.baseline:
            self._dirty = False
            return
        self.path.write_bytes(self.baseline)
        self._dirty = False
        self.logger.debug(f"Restored baseline of {self.path}")

    def commit(self) -> None:
        """Keep the current on-disk content."""
        self.committed = True
        self._dirty = False
