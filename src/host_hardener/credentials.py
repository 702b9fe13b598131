"""Administrative credential installation."""

import os
import pwd
from pathlib import Path
from typing import Optional

import structlog

from host_hardener.exceptions import StageFailure
from host_hardener.types import CredentialOutcome
from host_hardener.utils.file import ArtifactStore

logger = structlog.get_logger(__name__)


class CredentialInstaller:
    """Append a public key to authorized_keys, never removing existing keys."""

    def __init__(self, store: ArtifactStore, authorized_keys: Path, owner: Optional[str] = None) -> None:
        """Initialize credential installer.

        Args:
            store: Artifact store used for backup-before-write
            authorized_keys: Target authorized_keys file
            owner: Account that should own the .ssh directory, if running as root
        """
        self.store = store
        self.authorized_keys = authorized_keys
        self.owner = owner

    def install(self, credential: str) -> CredentialOutcome:
        """Install ``credential`` idempotently.

        Returns:
            ``ADDED`` when the key was appended, ``ALREADY_PRESENT`` otherwise

        Raises:
            StageFailure: If authorized_keys is unreadable or its owner is unknown
        """
        ssh_dir = self.authorized_keys.parent
        logger.info("Installing SSH public key", path=str(self.authorized_keys))

        if self.store.dry_run:
            present = self._is_present(credential)
            return CredentialOutcome.ALREADY_PRESENT if present else CredentialOutcome.ADDED

        ssh_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(ssh_dir, 0o700)
        if not self.authorized_keys.exists():
            self.authorized_keys.touch(mode=0o600)
        os.chmod(self.authorized_keys, 0o600)

        if self._is_present(credential):
            outcome = CredentialOutcome.ALREADY_PRESENT
            logger.info("Key already exists", path=str(self.authorized_keys))
        else:
            self.store.append_file(self.authorized_keys, credential + "\n")
            outcome = CredentialOutcome.ADDED
            logger.info("Key added", path=str(self.authorized_keys))

        self._fix_ownership(ssh_dir)
        return outcome

    def _is_present(self, credential: str) -> bool:
        content = self.store.read_file(self.authorized_keys)
        return any(line.strip() == credential for line in content.splitlines())

    def _fix_ownership(self, ssh_dir: Path) -> None:
        if self.owner is None or os.geteuid() != 0:
            return
        try:
            user_info = pwd.getpwnam(self.owner)
        except KeyError as e:
            raise StageFailure(f"Cannot hand {self.authorized_keys} to unknown account {self.owner}") from e
        for path in (ssh_dir, self.authorized_keys):
            os.chown(path, user_info.pw_uid, user_info.pw_gid)
