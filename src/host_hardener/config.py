"""Configuration management for Host Hardener."""

from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from host_hardener.exceptions import ConfigurationError
from host_hardener.types import RootLoginPolicy

CommaList = Annotated[List[str], NoDecode]


def _split_commas(v: object) -> List[str]:
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    if isinstance(v, (list, tuple)):
        return [str(item).strip() for item in v if str(item).strip()]
    return []


DEFAULT_KERNEL_PARAMETERS: Dict[str, str] = {
    "net.ipv4.tcp_syncookies": "1",
    "net.ipv4.tcp_max_syn_backlog": "4096",
    "net.ipv4.tcp_synack_retries": "2",
    "net.ipv4.tcp_syn_retries": "5",
    "net.ipv4.icmp_ignore_bogus_error_responses": "1",
    "net.ipv4.icmp_echo_ignore_broadcasts": "1",
    "net.ipv4.conf.all.rp_filter": "1",
    "net.ipv4.conf.default.rp_filter": "1",
    "net.ipv6.conf.all.accept_ra": "0",
    "net.ipv6.conf.default.accept_ra": "0",
}


class SSHSettings(BaseSettings):
    """SSH daemon and credential settings."""

    port: Optional[int] = Field(default=None, ge=1, le=65535, description="Administrative port")
    root_login: RootLoginPolicy = Field(default=RootLoginPolicy.KEY_ONLY)
    admin_user: str = Field(default="root", description="Account receiving the public key")
    authorized_keys: Optional[Path] = Field(
        default=None, description="Override for ~admin_user/.ssh/authorized_keys"
    )
    config_path: Path = Field(default=Path("/etc/ssh/sshd_config"))
    config_dir: Path = Field(default=Path("/etc/ssh/sshd_config.d"))
    sshd_binary: str = Field(default="sshd")
    legacy_ports: Annotated[List[int], NoDecode] = Field(default_factory=lambda: [22])

    model_config = SettingsConfigDict(
        env_prefix="HARDENER_SSH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("legacy_ports", mode="before")
    @classmethod
    def parse_legacy_ports(cls, v: object) -> List[str]:
        """Parse legacy ports from comma-separated string or list."""
        return _split_commas(v)


class FirewallSettings(BaseSettings):
    """Firewall policy settings."""

    allow_http: bool = Field(default=True)
    allow_https: bool = Field(default=True)
    service_ports: CommaList = Field(default_factory=list, description="Extra PORT/PROTO entries")
    trusted_sources: CommaList = Field(default_factory=list, description="Addresses allowed on all ports")
    legacy_app_profiles: CommaList = Field(default_factory=lambda: ["OpenSSH"])

    model_config = SettingsConfigDict(
        env_prefix="HARDENER_FIREWALL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("service_ports", "trusted_sources", "legacy_app_profiles", mode="before")
    @classmethod
    def parse_lists(cls, v: object) -> List[str]:
        return _split_commas(v)


class KernelSettings(BaseSettings):
    """Kernel network-hardening parameters."""

    enabled: bool = Field(default=True)
    path: Path = Field(default=Path("/etc/sysctl.d/99-hardening.conf"))
    parameters: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_KERNEL_PARAMETERS))

    model_config = SettingsConfigDict(
        env_prefix="HARDENER_KERNEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class RateLimitSettings(BaseSettings):
    """New-connection rate limit for the administrative port."""

    enabled: bool = Field(default=True)
    rate: int = Field(default=30, ge=1)
    per: Literal["second", "minute", "hour"] = Field(default="minute")
    burst: int = Field(default=30, ge=1)
    ruleset_path: Path = Field(default=Path("/etc/nftables.conf"))
    table: str = Field(default="host_hardener", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")

    model_config = SettingsConfigDict(
        env_prefix="HARDENER_RATELIMIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class BanSettings(BaseSettings):
    """Ban service (fail2ban) policy."""

    enabled: bool = Field(default=True)
    bantime: str = Field(default="1h")
    findtime: str = Field(default="10m")
    maxretry: int = Field(default=5, ge=1)
    backend: str = Field(default="systemd")
    jail_path: Path = Field(default=Path("/etc/fail2ban/jail.local"))

    model_config = SettingsConfigDict(
        env_prefix="HARDENER_BAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("bantime", "findtime")
    @classmethod
    def check_duration(cls, v: str) -> str:
        """Accept fail2ban durations such as ``3600``, ``10m`` or ``1h``."""
        v = v.strip()
        if not v or not v.rstrip("smhdw").isdigit():
            raise ValueError(f"invalid fail2ban duration: {v!r}")
        return v


class ReputationSettings(BaseSettings):
    """Reputation feed (CrowdSec) and firewall bouncer."""

    enabled: bool = Field(default=True)
    install_script_url: str = Field(default="https://install.crowdsec.net")
    packages: CommaList = Field(
        default_factory=lambda: ["crowdsec", "crowdsec-firewall-bouncer-iptables"]
    )
    engine_unit: str = Field(default="crowdsec")
    bouncer_unit: str = Field(default="crowdsec-firewall-bouncer")

    model_config = SettingsConfigDict(
        env_prefix="HARDENER_REPUTATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("packages", mode="before")
    @classmethod
    def parse_packages(cls, v: object) -> List[str]:
        return _split_commas(v)


class BackupSettings(BaseSettings):
    """Backup configuration."""

    directory: Path = Field(default=Path("/root/security_backups"))

    model_config = SettingsConfigDict(
        env_prefix="HARDENER_BACKUP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO")
    file: Optional[Path] = Field(default=None)

    model_config = SettingsConfigDict(
        env_prefix="HARDENER_LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class HardenerConfig(BaseSettings):
    """Main configuration container."""

    ssh: SSHSettings = Field(default_factory=SSHSettings)
    firewall: FirewallSettings = Field(default_factory=FirewallSettings)
    kernel: KernelSettings = Field(default_factory=KernelSettings)
    ratelimit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    ban: BanSettings = Field(default_factory=BanSettings)
    reputation: ReputationSettings = Field(default_factory=ReputationSettings)
    backup: BackupSettings = Field(default_factory=BackupSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def from_env(cls) -> "HardenerConfig":
        """Create configuration from environment variables."""
        return cls.from_mapping({})

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "HardenerConfig":
        """Create configuration from a mapping of sections.

        Values in ``data`` take precedence over the environment.
        """
        sections = {
            "ssh": SSHSettings,
            "firewall": FirewallSettings,
            "kernel": KernelSettings,
            "ratelimit": RateLimitSettings,
            "ban": BanSettings,
            "reputation": ReputationSettings,
            "backup": BackupSettings,
            "logging": LoggingSettings,
        }
        unknown = set(data) - set(sections)
        if unknown:
            raise ConfigurationError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")

        kwargs = {}
        for name, settings_cls in sections.items():
            section = data.get(name) or {}
            if not isinstance(section, dict):
                raise ConfigurationError(f"Configuration section '{name}' must be a mapping")
            try:
                kwargs[name] = settings_cls(**section)
            except ValidationError as e:
                raise ConfigurationError(f"Invalid '{name}' configuration: {e}") from e
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Path) -> "HardenerConfig":
        """Create configuration from a YAML file layered over the environment."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        return cls.from_mapping(data)

