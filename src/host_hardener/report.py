"""Final run report and manual verification checklist."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from host_hardener.pipeline import PipelineResult, StageOutcome
from host_hardener.plan import HardeningPlan
from host_hardener.types import (
    BackupRecord,
    CredentialOutcome,
    ServiceKey,
    ServiceState,
    StageStatus,
    VerificationCheck,
)

_STATUS_ICONS = {
    StageStatus.SUCCEEDED: "✅",
    StageStatus.FAILED_FATAL: "❌",
    StageStatus.FAILED_RECOVERABLE: "⚠️ ",
    StageStatus.SKIPPED: "⏭️ ",
}


@dataclass
class HardeningReport:
    """Everything the operator needs to know after a run."""

    plan: Optional[HardeningPlan]
    result: PipelineResult
    services: Dict[ServiceKey, ServiceState] = field(default_factory=dict)
    checks: List[VerificationCheck] = field(default_factory=list)
    status_notes: Dict[str, str] = field(default_factory=dict)
    backups: List[BackupRecord] = field(default_factory=list)
    credential_outcome: Optional[CredentialOutcome] = None
    dry_run: bool = False

    @property
    def fatal(self) -> Optional[StageOutcome]:
        return self.result.fatal

    @property
    def complete(self) -> bool:
        """True when no stage failed, recoverable or not."""
        return self.fatal is None and not self.result.recoverable_failures

    def checklist(self) -> List[str]:
        """Manual steps the operator must perform from a second session."""
        if self.plan is None:
            return []
        port = self.plan.admin_port
        user = self.plan.admin_user
        return [
            f"Open a NEW terminal and run: ssh -p {port} {user}@<server_ip>",
            "Keep this session open until the new login works",
            "ufw status verbose",
            "fail2ban-client status sshd",
            "cscli metrics && cscli decisions list",
            "nft list ruleset",
            "ss -tlnp | grep sshd",
        ]

    def render(self) -> str:
        """Render the report as plain text for the terminal."""
        lines: List[str] = []

        if self.plan is not None:
            lines.append("📋 Resulting policy:")
            lines.append(f"  SSH port: {self.plan.admin_port}")
            lines.append("  Authentication: public key only (passwords disabled)")
            lines.append(f"  Root login: {self.plan.root_login.sshd_value}")
            if self.credential_outcome is not None:
                lines.append(f"  Public key: {self.credential_outcome.value}")
            if self.plan.retired_ports:
                lines.append(f"  Retired ports: {', '.join(str(p) for p in sorted(self.plan.retired_ports))}")
            lines.append("")

        lines.append("🧱 Stages:")
        for outcome in self.result.outcomes:
            detail = f" ({outcome.detail})" if outcome.detail else ""
            lines.append(f"  {_STATUS_ICONS[outcome.status]} {outcome.name}: {outcome.status.value}{detail}")
        lines.append("")

        active = {key: state for key, state in self.services.items() if state != ServiceState.NOT_INSTALLED}
        if active:
            lines.append("⚙️  Services:")
            for key, state in active.items():
                lines.append(f"  • {key.value}: {state.value}")
            lines.append("")

        if self.checks:
            lines.append("🔎 Verification:")
            for check in self.checks:
                mark = "✅" if check.passed else "❌"
                detail = f" ({check.detail})" if check.detail and not check.passed else ""
                lines.append(f"  {mark} {check.name}{detail}")
            lines.append("")

        failures = self.result.recoverable_failures
        if failures:
            lines.append("⚠️  Incomplete hardening:")
            for outcome in failures:
                lines.append(f"  • {outcome.name}: {outcome.detail}")
                if outcome.name == "ban-service":
                    lines.append("    !!! Brute-force banning is NOT active on the SSH port !!!")
            lines.append("")

        saved = [b for b in self.backups if b.backup_path]
        if saved and self.dry_run:
            # Nothing was copied; only the originals are known.
            lines.append("💾 Would back up:")
            lines += [f"  {backup.original_path}" for backup in saved]
            lines.append("")
        elif saved:
            lines.append("💾 Backups:")
            for backup in saved:
                lines.append(f"  {backup.original_path} -> {backup.backup_path}")
            lines.append("")

        steps = self.checklist()
        if steps and self.fatal is None:
            lines.append("📌 Verify manually before closing this session:")
            lines += [f"  {i}. {step}" for i, step in enumerate(steps, start=1)]

        return "\n".join(lines).rstrip() + "\n"
