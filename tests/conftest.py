"""Pytest configuration and fixtures."""

import base64
import os
import struct
from pathlib import Path
from typing import Dict, Iterable, Optional

import pytest

from host_hardener.config import HardenerConfig
from host_hardener.system_info import SystemInfo
from host_hardener.types import CommandResult
from host_hardener.utils.command import CommandExecutor
from host_hardener.utils.file import ArtifactStore

DEFAULT_TOOLS = ("apt-get", "systemctl", "sshd", "ufw", "nft", "fail2ban-client", "curl")

UBUNTU_SSHD_CONFIG = """\
Include /etc/ssh/sshd_config.d/*.conf

#Port 22
#ListenAddress 0.0.0.0
PermitRootLogin yes
PasswordAuthentication yes
KbdInteractiveAuthentication no
UsePAM yes
X11Forwarding yes
Subsystem sftp /usr/lib/openssh/sftp-server

Match User backup
    ForceCommand internal-sftp
"""


def make_key(algo: str = "ssh-ed25519", comment: Optional[str] = "test@host", embedded: Optional[str] = None) -> str:
    """Build a syntactically valid OpenSSH public key line."""
    name = (embedded or algo).encode()
    blob = struct.pack(">I", len(name)) + name + struct.pack(">I", 32) + bytes(range(32))
    key = f"{algo} {base64.b64encode(blob).decode()}"
    return f"{key} {comment}" if comment else key


class FakeExecutor(CommandExecutor):
    """Executor that answers from a script instead of spawning processes."""

    def __init__(self, available: Iterable[str] = DEFAULT_TOOLS) -> None:
        super().__init__(dry_run=False)
        self.available = set(available)
        self.responses: Dict[str, CommandResult] = {}

    def respond(self, prefix: str, success: bool = True, stdout: str = "", stderr: str = "") -> None:
        """Answer every command starting with ``prefix``; the longest prefix wins."""
        self.responses[prefix] = CommandResult(success, stdout, stderr, 0 if success else 1)

    def _spawn(self, cmd: str, timeout: int) -> CommandResult:
        if cmd.startswith("command -v "):
            found = cmd.split()[-1] in self.available
            return CommandResult(found, "", "", 0 if found else 1)
        matches = [prefix for prefix in self.responses if cmd.startswith(prefix)]
        if matches:
            return self.responses[max(matches, key=len)]
        return CommandResult(True, "", "", 0)

    def index(self, prefix: str) -> int:
        """Position of the first recorded command starting with ``prefix``."""
        for i, cmd in enumerate(self.history):
            if cmd.startswith(prefix):
                return i
        raise AssertionError(f"no command starting with {prefix!r} in {self.history}")

    def ran(self, prefix: str) -> bool:
        return any(cmd.startswith(prefix) for cmd in self.history)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep HARDENER_* variables and stray .env files out of tests."""
    for name in list(os.environ):
        if name.startswith("HARDENER_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def public_key() -> str:
    return make_key()


@pytest.fixture
def host_root(tmp_path: Path) -> Path:
    """Minimal host filesystem with an Ubuntu-like sshd configuration."""
    root = tmp_path / "host"
    (root / "etc" / "ssh" / "sshd_config.d").mkdir(parents=True)
    (root / "etc" / "ssh" / "sshd_config").write_text(UBUNTU_SSHD_CONFIG)
    (root / "root").mkdir()
    return root


@pytest.fixture
def test_config(host_root: Path) -> HardenerConfig:
    """Create test configuration rooted in the temporary host tree."""
    return HardenerConfig.from_mapping(
        {
            "ssh": {
                "config_path": host_root / "etc" / "ssh" / "sshd_config",
                "config_dir": host_root / "etc" / "ssh" / "sshd_config.d",
                "authorized_keys": host_root / "root" / ".ssh" / "authorized_keys",
            },
            "kernel": {"path": host_root / "etc" / "sysctl.d" / "99-hardening.conf"},
            "ratelimit": {"ruleset_path": host_root / "etc" / "nftables.conf"},
            "ban": {"jail_path": host_root / "etc" / "fail2ban" / "jail.local"},
            "backup": {"directory": host_root / "root" / "security_backups"},
        }
    )


@pytest.fixture
def executor() -> FakeExecutor:
    """Executor whose sshd reports the effective configuration of a port 2218 run."""
    executor = FakeExecutor()
    executor.respond("sshd -T", stdout="port 2218\nlistenaddress [::]:2218\nlistenaddress 0.0.0.0:2218\n")
    return executor


@pytest.fixture
def system(executor: FakeExecutor, tmp_path: Path) -> SystemInfo:
    os_release = tmp_path / "os-release"
    os_release.write_text('NAME="Ubuntu"\nID=ubuntu\nVERSION_ID="24.04"\n')
    info = SystemInfo(executor, os_release=os_release)
    info.is_root = True
    return info


@pytest.fixture
def temp_backup_dir(tmp_path: Path) -> Path:
    """Create temporary backup directory."""
    backup_dir = tmp_path / "backups"
    backup_dir.mkdir()
    return backup_dir


@pytest.fixture
def store(temp_backup_dir: Path) -> ArtifactStore:
    return ArtifactStore(temp_backup_dir)
