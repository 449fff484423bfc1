"""Backend-agnostic value objects shared by providers, the manager and the monitor."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

VMState = Literal["running", "stopped", "paused", "suspended", "unknown"]
ActionType = Literal["start", "stop", "restart", "pause", "resume", "reset", "suspend"]
Timeframe = Literal["hour", "day", "week", "month", "year"]

TIMEFRAMES: tuple[str, ...] = ("hour", "day", "week", "month", "year")


class NetworkTraffic(BaseModel):
    rx_bytes: int = 0
    tx_bytes: int = 0


class VMStatus(BaseModel):
    id: str
    node: str
    name: str
    status: VMState = "unknown"
    uptime: int | None = None
    cpu_usage: float | None = None
    memory_usage: int | None = None
    network_traffic: NetworkTraffic | None = None
    type: Literal["kvm", "lxc", "other"] | None = None
    panel_id: int | None = None


class VMAction(BaseModel):
    type: ActionType
    vm_id: str
    options: dict[str, Any] | None = None


class VMActionResult(BaseModel):
    success: bool
    message: str
    task_id: str | None = None
    error: str | None = None
    error_code: str | None = None
    metadata: dict[str, Any] | None = None


class NetworkInterface(BaseModel):
    name: str
    ip: str | None = None
    mac: str | None = None


class VMSpecs(BaseModel):
    cpu: int
    memory: int
    storage: int
    network: list[NetworkInterface] = Field(default_factory=list)


class RRDDataPoint(BaseModel):
    time: int
    cpu: float | None = None
    mem: float | None = None
    maxmem: float | None = None
    disk: float | None = None
    maxdisk: float | None = None
    diskwrite: float | None = None
    netin: float | None = None
    netout: float | None = None


class NoVNCDescriptor(BaseModel):
    url: str
    token: str
    websocket: str
    node: str
    port: int


class NodeInfo(BaseModel):
    name: str
    status: str
    resources: dict[str, Any] = Field(default_factory=dict)


class SystemInfo(BaseModel):
    version: str
    nodes: list[NodeInfo] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)


class TokenData(BaseModel):
    token: str


class UserPassData(BaseModel):
    username: str
    password: str
    additional_params: dict[str, Any] | None = None


class CertificateData(BaseModel):
    certificate: str


class TokenCredentials(BaseModel):
    type: Literal["token"] = "token"
    data: TokenData


class UserPassCredentials(BaseModel):
    type: Literal["userpass"] = "userpass"
    data: UserPassData


class CertificateCredentials(BaseModel):
    type: Literal["certificate"] = "certificate"
    data: CertificateData


PanelCredentials = Annotated[
    Union[TokenCredentials, UserPassCredentials, CertificateCredentials],
    Field(discriminator="type"),
]

_CREDENTIALS_ADAPTER: TypeAdapter[Any] = TypeAdapter(PanelCredentials)


def parse_credentials(raw: Any) -> TokenCredentials | UserPassCredentials | CertificateCredentials:
    """Validate a raw ``{"type": ..., "data": {...}}`` mapping into its tagged model."""
    return _CREDENTIALS_ADAPTER.validate_python(raw)


def dump_credentials(credentials: Any) -> dict[str, Any]:
    return _CREDENTIALS_ADAPTER.dump_python(credentials, exclude_none=True)


class RateLimit(BaseModel):
    requests: int = 10
    window: int = 1000  # ms


class FeatureFlags(BaseModel):
    supports_console: bool = True
    supports_snapshots: bool = True
    supports_clone: bool = True
    supports_template: bool = True


class CacheSettings(BaseModel):
    enabled: bool = True
    ttl: int = 60  # seconds


class PanelSettings(BaseModel):
    timeout: int = 30000  # ms
    retries: int = 3
    rate_limit: RateLimit = Field(default_factory=RateLimit)
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    verify_ssl: bool = True


def merge_settings(base: PanelSettings, override: PanelSettings | dict[str, Any] | None) -> PanelSettings:
    """Overlay explicitly set panel settings on top of ``base``."""
    if override is None:
        return base.model_copy(deep=True)
    if isinstance(override, PanelSettings):
        override = override.model_dump(exclude_unset=True)
    merged = base.model_dump()
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return PanelSettings.model_validate(merged)


class PanelConfig(BaseModel):
    id: int
    guild_id: str
    name: str
    type: str
    api_url: str
    credentials: PanelCredentials
    config: PanelSettings | None = None
    active: bool = True
    is_default: bool = False

    def public_view(self) -> dict[str, Any]:
        """Return the panel without its credentials."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "apiUrl": self.api_url,
            "active": self.active,
            "isDefault": self.is_default,
        }


__all__ = [
    "ActionType",
    "CertificateCredentials",
    "NetworkInterface",
    "NetworkTraffic",
    "NoVNCDescriptor",
    "NodeInfo",
    "PanelConfig",
    "PanelCredentials",
    "PanelSettings",
    "RRDDataPoint",
    "SystemInfo",
    "TIMEFRAMES",
    "Timeframe",
    "TokenCredentials",
    "UserPassCredentials",
    "VMAction",
    "VMActionResult",
    "VMSpecs",
    "VMState",
    "VMStatus",
    "dump_credentials",
    "merge_settings",
    "parse_credentials",
]
