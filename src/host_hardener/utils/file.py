"""Configuration artifact store with backup-before-overwrite."""

import json
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import structlog

from host_hardener.exceptions import StageFailure
from host_hardener.types import BackupRecord

logger = structlog.get_logger(__name__)


class ArtifactStore:
    """Mutate system configuration files under backup discipline.

    The first mutation of a path in a run copies the current file into the
    backup directory under a timestamped name. Later mutations of the same
    path reuse that backup, so it always holds the pre-run content.
    Nothing is rolled back automatically; ``revert`` exists for stages whose
    own validator rejects what they just wrote.
    """

    def __init__(self, backup_dir: Path, dry_run: bool = False) -> None:
        """Initialize artifact store.

        Args:
            backup_dir: Directory for storing backups
            dry_run: If True, log mutations without touching the filesystem
        """
        self.backup_dir = backup_dir
        self.dry_run = dry_run
        self.timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self._records: Dict[Path, BackupRecord] = {}

    @property
    def backups(self) -> List[BackupRecord]:
        return list(self._records.values())

    def backup_file(self, filepath: Path) -> Optional[Path]:
        """Create timestamped backup of file, once per run.

        Args:
            filepath: Path to file to backup

        Returns:
            Path to backup file or None if source doesn't exist
        """
        filepath = Path(filepath)
        if filepath in self._records:
            existing = self._records[filepath].backup_path
            return Path(existing) if existing else None

        backup_path: Optional[Path] = None
        if filepath.exists():
            backup_path = self._backup_name(filepath)
            if not self.dry_run:
                self.backup_dir.mkdir(parents=True, exist_ok=True)
                shutil.copy2(filepath, backup_path)
            logger.info("Backed up artifact", path=str(filepath), backup=str(backup_path))

        self._records[filepath] = BackupRecord(
            original_path=str(filepath),
            backup_path=str(backup_path) if backup_path else None,
            timestamp=self.timestamp,
        )
        return backup_path

    def _backup_name(self, filepath: Path) -> Path:
        flat = "_".join(part for part in filepath.resolve().parts if part not in ("/", ""))
        candidate = self.backup_dir / f"{flat}.{self.timestamp}"
        counter = 1
        while candidate.exists():
            candidate = self.backup_dir / f"{flat}.{self.timestamp}.{counter}"
            counter += 1
        return candidate

    def read_file(self, filepath: Path) -> str:
        """Read file content, empty if the file does not exist."""
        if not filepath.exists():
            return ""
        try:
            return filepath.read_text()
        except UnicodeDecodeError as e:
            raise StageFailure(f"{filepath} is not valid UTF-8 text") from e

    def write_file(self, filepath: Path, content: str, mode: Optional[int] = None) -> bool:
        """Back up and replace a file atomically.

        Args:
            filepath: Path to file
            content: Content to write
            mode: Permission bits to apply, defaults to the existing file's

        Returns:
            True if the content changed
        """
        if filepath.exists() and self.read_file(filepath) == content:
            if mode is not None and not self.dry_run:
                os.chmod(filepath, mode)
            return False

        self.backup_file(filepath)
        if self.dry_run:
            logger.info("Would write artifact", path=str(filepath))
            return True

        if mode is None and filepath.exists():
            mode = filepath.stat().st_mode & 0o7777

        filepath.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=filepath.parent, prefix=f".{filepath.name}.")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.chmod(tmp_name, mode if mode is not None else 0o644)
            os.replace(tmp_name, filepath)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.info("Wrote artifact", path=str(filepath))
        return True

    def append_file(self, filepath: Path, content: str) -> None:
        """Append content to file after backing it up."""
        existing = self.read_file(filepath)
        if existing and not existing.endswith("\n"):
            existing += "\n"
        self.write_file(filepath, existing + content)

    def revert(self, paths: Iterable[Path]) -> List[str]:
        """Restore the given paths to their pre-run content.

        Paths that did not exist before the run are removed again.

        Returns:
            List of reverted file paths
        """
        reverted: List[str] = []
        for path in paths:
            record = self._records.get(Path(path))
            if record is None or self.dry_run:
                continue
            if record.backup_path is None:
                Path(path).unlink(missing_ok=True)
            else:
                shutil.copy2(record.backup_path, record.original_path)
            reverted.append(str(path))
            logger.warning("Reverted artifact", path=str(path))
        return reverted

    def write_manifest(self, summary: Dict[str, object]) -> Path:
        """Record this run's backups next to them for manual rollback.

        Returns:
            Path of the manifest file
        """
        manifest = {
            "timestamp": self.timestamp,
            "backups": [record._asdict() for record in self._records.values()],
            **summary,
        }
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        path = self.backup_dir / f"run-{self.timestamp}.json"
        with open(path, "w") as f:
            json.dump(manifest, f, indent=2)
        return path
