"""nftables new-connection rate limit for the administrative port."""

import shlex
from pathlib import Path

import structlog

from host_hardener.exceptions import StageFailure
from host_hardener.plan import HardeningPlan
from host_hardener.system_info import SystemInfo
from host_hardener.utils.command import CommandExecutor
from host_hardener.utils.file import ArtifactStore

logger = structlog.get_logger(__name__)


def render_ruleset(plan: HardeningPlan, table: str) -> str:
    """Render a ruleset that owns only its own table.

    The table is declared, deleted and recreated so loading is idempotent
    and tables belonging to ufw are left alone.
    """
    limit = plan.rate_limit
    port = plan.admin_port
    return f"""#!/usr/sbin/nft -f
# SSH new-connection rate limit (managed by host-hardener).
# ufw keeps enforcing the port-allow policy in its own tables.

table inet {table}
delete table inet {table}

table inet {table} {{
  chain input {{
    type filter hook input priority 0; policy accept;

    iif lo accept
    ct state established,related accept

    tcp dport {port} ct state new limit rate {limit.rate}/{limit.per} burst {limit.burst} packets accept
    tcp dport {port} ct state new drop
  }}
}}
"""


class RateLimiter:
    """Install the persistent packet-filter ruleset."""

    def __init__(
        self,
        store: ArtifactStore,
        executor: CommandExecutor,
        system: SystemInfo,
        ruleset_path: Path,
        table: str = "host_hardener",
    ) -> None:
        self.store = store
        self.executor = executor
        self.system = system
        self.ruleset_path = ruleset_path
        self.table = table

    @property
    def load_command(self) -> str:
        return f"nft -f {shlex.quote(str(self.ruleset_path))}"

    def install(self, plan: HardeningPlan) -> None:
        """Write and syntax-check the ruleset; loading happens at activation.

        Raises:
            StageFailure: If nftables is missing or the ruleset is rejected
        """
        logger.info("Configuring nftables SSH rate limit", port=plan.admin_port, limit=str(plan.rate_limit))

        if not self.system.ensure_command("nft", "nftables"):
            raise StageFailure("nftables is not installed and could not be installed")

        try:
            changed = self.store.write_file(self.ruleset_path, render_ruleset(plan, self.table), mode=0o755)
        except OSError as e:
            raise StageFailure(f"Cannot write {self.ruleset_path}: {e}") from e

        result = self.executor.execute(f"nft -c -f {shlex.quote(str(self.ruleset_path))}", check=False)
        if not result.success:
            if changed:
                self.store.revert([self.ruleset_path])
            raise StageFailure(f"nftables ruleset rejected: {result.stderr.strip()}")
