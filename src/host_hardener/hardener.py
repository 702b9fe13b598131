"""Main host hardening orchestrator."""

from typing import List, Optional

import structlog

from host_hardener.config import HardenerConfig
from host_hardener.credentials import CredentialInstaller
from host_hardener.exceptions import HardenerError, StageFailure, VerificationMismatch
from host_hardener.firewall import FirewallManager
from host_hardener.intrusion import BanServiceConfigurator, ReputationInstaller
from host_hardener.kernel import KernelHardener
from host_hardener.pipeline import Pipeline, PipelineResult, Stage
from host_hardener.plan import HardeningPlan, authorized_keys_path
from host_hardener.preconditions import PreconditionValidator
from host_hardener.ratelimit import RateLimiter
from host_hardener.report import HardeningReport
from host_hardener.services import ManagedService, ServiceActivator, Verifier
from host_hardener.sshd import SshdConfigurator
from host_hardener.system_info import SystemInfo
from host_hardener.types import CredentialOutcome, ServiceKey, ServiceState
from host_hardener.utils.command import CommandExecutor
from host_hardener.utils.file import ArtifactStore

logger = structlog.get_logger(__name__)


class HostHardener:
    """Run the hardening pipeline for one host."""

    def __init__(
        self,
        config: HardenerConfig,
        credential: Optional[str],
        port: Optional[int] = None,
        dry_run: bool = False,
        executor: Optional[CommandExecutor] = None,
        system: Optional[SystemInfo] = None,
    ) -> None:
        """Initialize host hardener.

        Args:
            config: Configuration object
            credential: Administrative public key
            port: Administrative port, overrides configuration
            dry_run: If True, only simulate changes
            executor: Command executor, mostly for tests
            system: Detected system information, mostly for tests
        """
        self.config = config
        self.credential = credential
        self.port = port
        self.dry_run = dry_run

        self.executor = executor or CommandExecutor(dry_run=dry_run)
        self.system = system or SystemInfo(self.executor)
        self.store = ArtifactStore(config.backup.directory, dry_run=dry_run)
        self.preconditions = PreconditionValidator(config, self.system, dry_run=dry_run)

        self.sshd = SshdConfigurator(
            self.store,
            self.executor,
            config.ssh.config_path,
            config.ssh.config_dir,
            config.ssh.sshd_binary,
        )
        self.firewall = FirewallManager(self.executor, self.system, config.firewall.legacy_app_profiles)
        self.kernel = KernelHardener(self.store, self.executor, config.kernel.path, config.kernel.parameters)
        self.rate_limiter = RateLimiter(
            self.store, self.executor, self.system, config.ratelimit.ruleset_path, config.ratelimit.table
        )
        self.ban_service = BanServiceConfigurator(self.store, self.executor, self.system, config.ban.jail_path)
        self.reputation = ReputationInstaller(
            self.executor, self.system, config.reputation.install_script_url, config.reputation.packages
        )
        self.activator = ServiceActivator(self.executor)
        self.verifier = Verifier(self.executor, self.activator)

        self.plan: Optional[HardeningPlan] = None
        self.credential_outcome: Optional[CredentialOutcome] = None

    def stages(self) -> List[Stage]:
        return [
            Stage("preconditions", self._check_preconditions),
            Stage("credential", self._install_credential),
            Stage("ssh-policy", self._configure_ssh),
            Stage("firewall", self._configure_firewall, check=self._admin_rule_committed),
            Stage("kernel", self._harden_kernel, recoverable=True, enabled=self.config.kernel.enabled),
            Stage(
                "rate-limiter",
                self._install_rate_limiter,
                recoverable=True,
                enabled=self.config.ratelimit.enabled,
            ),
            Stage("ban-service", self._configure_ban_service, recoverable=True, enabled=self.config.ban.enabled),
            Stage(
                "reputation-bouncer",
                self._install_reputation,
                recoverable=True,
                enabled=self.config.reputation.enabled,
            ),
            Stage("service-activation", self._activate_services, recoverable=True),
            Stage("verification", self._verify, recoverable=True, enabled=not self.dry_run),
        ]

    def run(self) -> HardeningReport:
        """Execute the hardening pipeline.

        Returns:
            Report of every stage, service and verification result
        """
        logger.info("Starting host hardening", dry_run=self.dry_run, system=self.system.to_dict())
        result = Pipeline(self.stages()).run()

        if self.plan is not None and not self.dry_run:
            self._save_manifest(result)

        return HardeningReport(
            plan=self.plan,
            result=result,
            services=dict(self.activator.states),
            checks=list(self.verifier.checks),
            status_notes=dict(self.verifier.status_notes),
            backups=self.store.backups,
            credential_outcome=self.credential_outcome,
            dry_run=self.dry_run,
        )

    def _require_plan(self) -> HardeningPlan:
        if self.plan is None:
            raise HardenerError("No hardening plan; preconditions did not run")
        return self.plan

    def _check_preconditions(self) -> str:
        plan = self.preconditions.validate(
            self.credential,
            port=self.port,
            previous_ports=self.sshd.current_ports(),
        )
        self.plan = plan
        return f"admin port {plan.admin_port}, retiring {sorted(plan.retired_ports) or 'nothing'}"

    def _install_credential(self) -> str:
        plan = self._require_plan()
        installer = CredentialInstaller(self.store, authorized_keys_path(self.config), owner=plan.admin_user)
        self.credential_outcome = installer.install(plan.credential)
        return self.credential_outcome.value

    def _configure_ssh(self) -> str:
        plan = self._require_plan()
        self.sshd.configure(plan)
        self.activator.register(
            ManagedService(ServiceKey.SSH, self.system.ssh_unit(), self.system.ssh_restart_commands())
        )
        return f"Port {plan.admin_port}, PermitRootLogin {plan.root_login.sshd_value}"

    def _configure_firewall(self) -> str:
        plan = self._require_plan()
        self.firewall.configure(plan)
        self.activator.register(
            ManagedService(
                ServiceKey.FIREWALL,
                "ufw",
                ("ufw --force enable", "systemctl enable ufw"),
                probe="ufw status | grep -q 'Status: active'",
            )
        )
        return ", ".join(sorted(str(p) for p in plan.exposed_ports))

    def _admin_rule_committed(self) -> Optional[str]:
        if self.dry_run:
            return None
        plan = self._require_plan()
        added = self.executor.execute("ufw show added", check=False).stdout
        if f"allow {plan.admin_port}/tcp" not in added:
            return f"firewall ruleset lacks an allow rule for {plan.admin_port}/tcp"
        return None

    def _harden_kernel(self) -> str:
        self.kernel.apply()
        return str(self.kernel.path)

    def _install_rate_limiter(self) -> str:
        plan = self._require_plan()
        self.rate_limiter.install(plan)
        self.activator.register(
            ManagedService(
                ServiceKey.RATE_LIMITER,
                "nftables",
                ("systemctl enable nftables", self.rate_limiter.load_command),
                probe=f"nft list table inet {self.rate_limiter.table}",
            )
        )
        return str(plan.rate_limit)

    def _configure_ban_service(self) -> str:
        plan = self._require_plan()
        try:
            self.ban_service.configure(plan)
        except StageFailure as e:
            logger.error("SSH jail not configured, brute-force banning is OFF", error=str(e))
            raise
        self.activator.register(
            ManagedService(
                ServiceKey.BAN_SERVICE,
                "fail2ban",
                ("systemctl enable fail2ban", "systemctl restart fail2ban"),
            )
        )
        policy = plan.ban_policy
        return f"bantime {policy.bantime}, findtime {policy.findtime}, maxretry {policy.maxretry}"

    def _install_reputation(self) -> str:
        self.reputation.install()
        settings = self.config.reputation
        for key, unit in ((ServiceKey.REPUTATION, settings.engine_unit), (ServiceKey.BOUNCER, settings.bouncer_unit)):
            self.activator.register(
                ManagedService(key, unit, (f"systemctl enable {unit}", f"systemctl restart {unit}"))
            )
        return ", ".join(settings.packages)

    def _activate_services(self) -> str:
        failures = self.activator.activate()
        if self.activator.states[ServiceKey.FIREWALL] == ServiceState.RUNNING:
            self.firewall.mark_enforced()
        if failures:
            raise StageFailure("; ".join(failures))
        return ", ".join(key.value for key in self.activator.registered)

    def _verify(self) -> str:
        plan = self._require_plan()
        checks = self.verifier.verify(plan, self.firewall.allowed_ports())
        mismatches = self.verifier.mismatches
        if mismatches:
            raise VerificationMismatch("; ".join(f"{c.name} ({c.detail})" for c in mismatches))
        return f"{len(checks)} checks passed"

    def _save_manifest(self, result: PipelineResult) -> None:
        plan = self._require_plan()
        try:
            path = self.store.write_manifest(
                {
                    "admin_port": plan.admin_port,
                    "root_login": plan.root_login.value,
                    "retired_ports": sorted(plan.retired_ports),
                    "stages": {o.name: o.status.value for o in result.outcomes},
                }
            )
        except OSError as e:
            logger.warning("Could not write run manifest", error=str(e))
            return
        logger.info("Run manifest saved", path=str(path))
