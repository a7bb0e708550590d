"""Configuration models for the monitor and forwarding sides."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import validate_non_empty_string, validate_port

DEFAULT_STATE_DIR = Path.home() / ".portsync"
DEFAULT_TOKEN_SERVICE_PORT = 9000

DEFAULT_TUNNEL_COMMAND = [
    "ssh",
    "-N",
    "-o",
    "ExitOnForwardFailure=yes",
    "-L",
    "{port}:localhost:{port}",
    "{target}",
]


class MonitorConfig(BaseModel):
    """Timing for the remote sampling loop."""

    model_config = ConfigDict(extra="forbid")

    sample_interval: float = Field(
        default=2.0, ge=0.1, le=60.0, description="Continuous pass interval (s)"
    )
    reconcile_interval: float = Field(
        default=5.0, ge=0.1, le=300.0, description="Full reconciliation interval (s)"
    )
    command_timeout: float = Field(
        default=10.0, ge=0.5, le=120.0, description="Socket-listing command timeout"
    )


class ForwarderConfig(BaseModel):
    """Configuration for the local forwarding session."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    target: str = Field(min_length=1, description="Secure-shell destination")
    record_store: Path = Field(
        default=DEFAULT_STATE_DIR / "forwarded-ports",
        description="On-disk record of active tunnels",
    )
    channel: Path | None = Field(
        default=None, description="Pre-established event channel (e.g. a FIFO)"
    )
    monitor_command: list[str] | None = Field(
        default=None, description="Command whose stdout carries the event stream"
    )
    tunnel_command: list[str] = Field(
        default_factory=lambda: list(DEFAULT_TUNNEL_COMMAND),
        description="Tunnel command template with {port} and {target} fields",
    )
    helper_commands: list[list[str]] = Field(
        default_factory=list, description="Helper processes owned by the session"
    )
    reserved_ports: set[int] = Field(
        default_factory=lambda: {DEFAULT_TOKEN_SERVICE_PORT},
        description="Ports that are never forwarded",
    )
    startup_grace_period: float = Field(default=0.5, ge=0.0, le=30.0)
    stop_timeout: float = Field(default=5.0, ge=0.1, le=60.0)
    reconcile_interval: float = Field(default=5.0, ge=0.1, le=300.0)

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: str) -> str:
        """Validate the destination is a single shell word."""
        v = validate_non_empty_string(v, "Target")
        if any(ch.isspace() for ch in v):
            raise ValueError("Target must not contain whitespace")
        return v

    @field_validator("tunnel_command")
    @classmethod
    def validate_tunnel_command(cls, v: list[str]) -> list[str]:
        """Validate the template forwards a concrete port."""
        if not v:
            raise ValueError("Tunnel command cannot be empty")
        if not any("{port}" in part for part in v):
            raise ValueError("Tunnel command must contain a {port} placeholder")
        return v

    @field_validator("reserved_ports")
    @classmethod
    def validate_reserved_ports(cls, v: set[int]) -> set[int]:
        """Validate reserved ports are in range."""
        for port in v:
            validate_port(port, f"Reserved port {port}")
        return v

    def resolved_monitor_command(self) -> list[str]:
        """Monitor command to spawn when no channel path is configured."""
        if self.monitor_command:
            return list(self.monitor_command)
        return ["ssh", self.target, "portsync", "monitor"]
