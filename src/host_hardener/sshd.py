"""SSH daemon policy: structured config model and validate-before-activate writer."""

import re
import shlex
from pathlib import Path
from typing import Dict, FrozenSet, List, NamedTuple, Optional

import structlog

from host_hardener.exceptions import ConfigValidationError
from host_hardener.plan import HardeningPlan
from host_hardener.utils.command import CommandExecutor
from host_hardener.utils.file import ArtifactStore

logger = structlog.get_logger(__name__)

BLOCK_BEGIN = "# --- host-hardener: managed block (do not edit) ---"
BLOCK_END = "# --- host-hardener: end of managed block ---"

# Directives the managed block owns; any other occurrence is removed.
MANAGED_KEYWORDS = frozenset(
    {
        "port",
        "pubkeyauthentication",
        "passwordauthentication",
        "kbdinteractiveauthentication",
        "challengeresponseauthentication",
        "permitrootlogin",
        "usepam",
    }
)

_COMMENTED_DIRECTIVES = MANAGED_KEYWORDS | {"listenaddress"}
_KEYWORD_RE = re.compile(r"^(?P<keyword>[A-Za-z][A-Za-z0-9]*)(?:\s*=\s*|\s+)(?P<value>.*)$")
_ADDRESS_WITH_PORT_RE = re.compile(r"^(?:\[[^\]]+\]|[^:\s]+):\d+$")


class ConfigLine(NamedTuple):
    """One line of an sshd configuration file."""

    raw: str
    keyword: Optional[str] = None
    value: str = ""
    commented: bool = False
    in_match: bool = False

    @property
    def is_blank(self) -> bool:
        return not self.raw.strip()

    @property
    def is_marker(self) -> bool:
        return self.raw.strip() in (BLOCK_BEGIN, BLOCK_END)


class SshdConfig:
    """Parsed sshd_config (or drop-in fragment).

    Keeps every line so unrelated content renders back untouched.
    Commented-out directives are recognized so stale ``#Port 22`` style
    lines can be removed along with active ones.
    """

    def __init__(self, lines: List[ConfigLine]) -> None:
        self.lines = lines

    @classmethod
    def parse(cls, text: str) -> "SshdConfig":
        lines: List[ConfigLine] = []
        in_match = False
        for raw in text.splitlines():
            stripped = raw.strip()
            commented = stripped.startswith("#")
            body = stripped.lstrip("#").strip() if commented else stripped
            match = _KEYWORD_RE.match(body)
            if not match or (commented and match.group("keyword").lower() not in _COMMENTED_DIRECTIVES):
                lines.append(ConfigLine(raw=raw, in_match=in_match))
                continue

            keyword = match.group("keyword").lower()
            if keyword == "match" and not commented:
                in_match = True
            lines.append(
                ConfigLine(
                    raw=raw,
                    keyword=keyword,
                    value=match.group("value").strip(),
                    commented=commented,
                    in_match=in_match,
                )
            )
        return cls(lines)

    @classmethod
    def load(cls, path: Path) -> "SshdConfig":
        if not path.exists():
            return cls([])
        try:
            return cls.parse(path.read_text())
        except UnicodeDecodeError as e:
            raise ConfigValidationError(f"{path} is not valid UTF-8 text") from e

    def render(self) -> str:
        if not self.lines:
            return ""
        return "\n".join(line.raw for line in self.lines) + "\n"

    def directives(self, keyword: str) -> List[ConfigLine]:
        """Active (uncommented) occurrences of ``keyword``."""
        keyword = keyword.lower()
        return [line for line in self.lines if line.keyword == keyword and not line.commented]

    def ports(self) -> List[int]:
        """Ports from ``Port`` and ``ListenAddress host:port`` directives."""
        ports: List[int] = []
        for line in self.directives("port"):
            token = line.value.split()[0] if line.value else ""
            if token.isdigit():
                ports.append(int(token))
        for line in self.directives("listenaddress"):
            address = line.value.split()[0] if line.value else ""
            if _ADDRESS_WITH_PORT_RE.match(address):
                ports.append(int(address.rsplit(":", 1)[1]))
        return ports

    def strip_managed(self) -> int:
        """Remove managed directives, port-bearing ListenAddress and old blocks.

        Returns:
            Number of lines removed
        """
        kept: List[ConfigLine] = []
        for line in self.lines:
            if line.is_marker or line.keyword in MANAGED_KEYWORDS:
                continue
            if line.keyword == "listenaddress":
                address = line.value.split()[0] if line.value else ""
                if _ADDRESS_WITH_PORT_RE.match(address):
                    continue
            kept.append(line)
        removed = len(self.lines) - len(kept)
        self.lines = kept
        return removed

    def insert_block(self, directives: Dict[str, str]) -> None:
        """Insert the managed block in global scope, before any Match block."""
        index = next(
            (i for i, line in enumerate(self.lines) if line.keyword == "match" and not line.commented),
            len(self.lines),
        )
        while index > 0 and self.lines[index - 1].is_blank:
            index -= 1
            del self.lines[index]

        block = [ConfigLine(raw=BLOCK_BEGIN)]
        block += [
            ConfigLine(raw=f"{keyword} {value}", keyword=keyword.lower(), value=value)
            for keyword, value in directives.items()
        ]
        block.append(ConfigLine(raw=BLOCK_END))

        if index > 0:
            block.insert(0, ConfigLine(raw=""))
        if index < len(self.lines):
            block.append(ConfigLine(raw=""))
        self.lines[index:index] = block


def policy_directives(plan: HardeningPlan) -> Dict[str, str]:
    """The authoritative directive set for a plan, in render order."""
    return {
        "Port": str(plan.admin_port),
        "PubkeyAuthentication": "yes",
        "PasswordAuthentication": "no",
        "KbdInteractiveAuthentication": "no",
        "ChallengeResponseAuthentication": "no",
        "PermitRootLogin": plan.root_login.sshd_value,
        "UsePAM": "yes",
    }


class SshdConfigurator:
    """Rewrite sshd configuration and validate it before anything restarts."""

    def __init__(
        self,
        store: ArtifactStore,
        executor: CommandExecutor,
        config_path: Path,
        config_dir: Path,
        sshd_binary: str = "sshd",
    ) -> None:
        self.store = store
        self.executor = executor
        self.config_path = config_path
        self.config_dir = config_dir
        self.sshd_binary = sshd_binary
        self.written: List[Path] = []

    def fragments(self) -> List[Path]:
        if not self.config_dir.is_dir():
            return []
        return sorted(self.config_dir.glob("*.conf"))

    def current_ports(self) -> FrozenSet[int]:
        """Ports sshd is configured for before this run.

        Combines the main file and fragments with the daemon's effective
        configuration, which also follows ``Include`` directives elsewhere.
        """
        ports: List[int] = []
        for path in [self.config_path] + self.fragments():
            ports.extend(SshdConfig.load(path).ports())
        sshd_cmd = self._find_sshd()
        if sshd_cmd:
            ports.extend(self.effective_ports(sshd_cmd))
        return frozenset(ports)

    def configure(self, plan: HardeningPlan) -> None:
        """Apply the plan's SSH policy.

        Raises:
            ConfigValidationError: If the rewritten configuration is rejected
                or sshd would listen on anything but the administrative port.
                Files written by this call are restored first.
        """
        logger.info("Configuring SSH daemon", port=plan.admin_port, root_login=plan.root_login.value)

        candidates: Dict[Path, SshdConfig] = {}
        for path in self.fragments():
            fragment = SshdConfig.load(path)
            removed = fragment.strip_managed()
            if removed:
                logger.info("Stripped directives from fragment", path=str(path), removed=removed)
                candidates[path] = fragment

        main = SshdConfig.load(self.config_path)
        main.strip_managed()
        main.insert_block(policy_directives(plan))
        candidates[self.config_path] = main

        self.written = []
        for path, candidate in candidates.items():
            if self.store.write_file(path, candidate.render()):
                self.written.append(path)

        try:
            sshd_cmd = self.validate()
            if not self.executor.dry_run:
                self._check_effective_ports(plan, sshd_cmd)
        except ConfigValidationError:
            reverted = self.store.revert(self.written)
            logger.error("SSH configuration rejected, previous files restored", reverted=reverted)
            raise

    def _check_effective_ports(self, plan: HardeningPlan, sshd_cmd: str) -> None:
        ports = sorted(set(self.effective_ports(sshd_cmd)))
        if ports != [plan.admin_port]:
            raise ConfigValidationError(
                f"sshd would listen on {ports or 'no port'}, expected only {plan.admin_port}; "
                "check Include'd files for Port or ListenAddress directives"
            )

    def _find_sshd(self) -> Optional[str]:
        for sshd_cmd in (self.sshd_binary, "/usr/sbin/sshd", "/usr/local/sbin/sshd"):
            if self.executor.check_command_available(sshd_cmd):
                return sshd_cmd
        return None

    def effective_ports(self, sshd_cmd: str) -> List[int]:
        """Ports from ``sshd -T``, after every Include has been followed.

        Args:
            sshd_cmd: sshd binary to ask

        Returns:
            Ports from the ``port`` and ``listenaddress`` lines, empty if
            sshd cannot dump its configuration
        """
        result = self.executor.execute(f"{sshd_cmd} -T -f {shlex.quote(str(self.config_path))}", check=False)
        if not result.success:
            logger.warning("Could not read effective SSH configuration", error=result.stderr.strip())
            return []

        ports: List[int] = []
        for line in result.stdout.splitlines():
            fields = line.split()
            if len(fields) < 2:
                continue
            if fields[0] == "port" and fields[1].isdigit():
                ports.append(int(fields[1]))
            elif fields[0] == "listenaddress" and _ADDRESS_WITH_PORT_RE.match(fields[1]):
                ports.append(int(fields[1].rsplit(":", 1)[1]))
        return ports

    def validate(self) -> str:
        """Run the daemon's own validator against the main configuration.

        Returns:
            The sshd binary that validated the configuration

        Raises:
            ConfigValidationError: If validation fails or sshd is missing
        """
        sshd_cmd = self._find_sshd()
        if sshd_cmd is None:
            raise ConfigValidationError("Cannot validate SSH config - sshd not found")

        result = self.executor.execute(f"{sshd_cmd} -t -f {shlex.quote(str(self.config_path))}", check=False)
        if not result.success:
            raise ConfigValidationError(f"Invalid SSH config: {result.stderr.strip()}")
        logger.info("SSH configuration validated")
        return sshd_cmd
