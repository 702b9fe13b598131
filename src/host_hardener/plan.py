"""Declarative target state for one hardening run."""

import ipaddress
import pwd
from pathlib import Path
from typing import FrozenSet, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from host_hardener.config import HardenerConfig
from host_hardener.exceptions import PreconditionError
from host_hardener.types import RootLoginPolicy
from host_hardener.utils.validation import Validator


class ServicePort(BaseModel):
    """A port/protocol pair exposed through the firewall."""

    model_config = ConfigDict(frozen=True)

    port: int = Field(ge=1, le=65535)
    protocol: Literal["tcp", "udp"] = "tcp"

    @classmethod
    def parse(cls, entry: str) -> "ServicePort":
        """Parse ``PORT`` or ``PORT/PROTO``."""
        port, _, protocol = entry.strip().partition("/")
        if not port.isdigit():
            raise ValueError(f"invalid port entry: {entry!r}")
        return cls(port=int(port), protocol=(protocol or "tcp").lower())

    def __str__(self) -> str:
        return f"{self.port}/{self.protocol}"


class RateLimit(BaseModel):
    """New-connection admission limit."""

    model_config = ConfigDict(frozen=True)

    rate: int = Field(ge=1)
    per: Literal["second", "minute", "hour"] = "minute"
    burst: int = Field(ge=1)

    def __str__(self) -> str:
        return f"{self.rate}/{self.per} burst {self.burst}"


class BanPolicy(BaseModel):
    """Ban service thresholds."""

    model_config = ConfigDict(frozen=True)

    bantime: str
    findtime: str
    maxretry: int = Field(ge=1)
    backend: str = "systemd"


class HardeningPlan(BaseModel):
    """Immutable target state, built once per run."""

    model_config = ConfigDict(frozen=True)

    admin_port: int = Field(ge=1, le=65535)
    credential: str
    root_login: RootLoginPolicy = RootLoginPolicy.KEY_ONLY
    admin_user: str = "root"
    service_ports: FrozenSet[ServicePort] = frozenset()
    trusted_sources: Tuple[str, ...] = ()
    legacy_ports: FrozenSet[int] = frozenset({22})
    rate_limit: RateLimit = RateLimit(rate=30, per="minute", burst=30)
    ban_policy: BanPolicy = BanPolicy(bantime="1h", findtime="10m", maxretry=5)

    @field_validator("credential")
    @classmethod
    def check_credential(cls, v: str) -> str:
        try:
            return Validator.validate_public_key(v)
        except PreconditionError as e:
            raise ValueError(str(e)) from e

    @field_validator("trusted_sources")
    @classmethod
    def check_sources(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        for source in v:
            ipaddress.ip_network(source, strict=False)
        return v

    @property
    def retired_ports(self) -> FrozenSet[int]:
        """Legacy ports whose allow rules and listeners must disappear."""
        return frozenset(p for p in self.legacy_ports if p != self.admin_port)

    @property
    def exposed_ports(self) -> FrozenSet[ServicePort]:
        """Everything the firewall should allow from anywhere."""
        return self.service_ports | {ServicePort(port=self.admin_port)}

    @classmethod
    def from_config(
        cls,
        config: HardenerConfig,
        credential: Optional[str],
        port: Optional[int] = None,
        previous_ports: FrozenSet[int] = frozenset(),
    ) -> "HardeningPlan":
        """Build the plan from configuration and invocation arguments.

        Args:
            config: Loaded configuration
            credential: Public key given on the command line
            port: Port given on the command line, overriding configuration
            previous_ports: Ports sshd listens on before this run

        Raises:
            PreconditionError: If the resulting plan is invalid
        """
        Validator.validate_public_key(credential or "")

        admin_port = port if port is not None else config.ssh.port
        if admin_port is None:
            raise PreconditionError(
                "No administrative port given. Pass it as the second argument "
                "or set HARDENER_SSH_PORT / ssh.port in the config file."
            )
        Validator.validate_port(admin_port)

        try:
            service_ports = {ServicePort.parse(entry) for entry in config.firewall.service_ports}
        except (ValueError, ValidationError) as e:
            raise PreconditionError(f"Invalid service port: {e}") from e
        if config.firewall.allow_http:
            service_ports.add(ServicePort(port=80))
        if config.firewall.allow_https:
            service_ports.add(ServicePort(port=443))

        try:
            return cls(
                admin_port=admin_port,
                credential=credential,
                root_login=config.ssh.root_login,
                admin_user=config.ssh.admin_user,
                service_ports=frozenset(service_ports),
                trusted_sources=tuple(config.firewall.trusted_sources),
                legacy_ports=frozenset(config.ssh.legacy_ports) | previous_ports,
                rate_limit=RateLimit(
                    rate=config.ratelimit.rate,
                    per=config.ratelimit.per,
                    burst=config.ratelimit.burst,
                ),
                ban_policy=BanPolicy(
                    bantime=config.ban.bantime,
                    findtime=config.ban.findtime,
                    maxretry=config.ban.maxretry,
                    backend=config.ban.backend,
                ),
            )
        except ValidationError as e:
            raise PreconditionError(f"Invalid hardening plan: {e}") from e


def authorized_keys_path(config: HardenerConfig) -> Path:
    """Resolve the authorized_keys file of the administrative account."""
    if config.ssh.authorized_keys is not None:
        return config.ssh.authorized_keys
    try:
        home = Path(pwd.getpwnam(config.ssh.admin_user).pw_dir)
    except KeyError as e:
        raise PreconditionError(f"Administrative account does not exist: {config.ssh.admin_user}") from e
    return home / ".ssh" / "authorized_keys"
