"""Desired-state models and per-instance state.

Desired state is parsed with pydantic from camelCase documents (the shape
callers declare in manifests) and can also be built by field name. Optional
values are ``None`` when absent, never sentinel zero values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Generic, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator

from .converters import Duration

# =============================================================================
# Kinds and per-instance state
# =============================================================================


class ResourceKind(str, Enum):
    """Resource kinds the operator converges."""

    NETWORK = "Network"
    SERVER = "Server"
    FIREWALL = "Firewall"
    LOAD_BALANCER = "LoadBalancer"
    VOLUME = "Volume"
    PLACEMENT_GROUP = "PlacementGroup"

    @property
    def label(self) -> str:
        """Lower-case name used in operation names ("failed to create load balancer")."""
        return {
            ResourceKind.LOAD_BALANCER: "load balancer",
            ResourceKind.PLACEMENT_GROUP: "placement group",
        }.get(self, self.value.lower())


class _Spec(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}


SpecT = TypeVar("SpecT", bound=_Spec)


@dataclass(frozen=True)
class ObservedState(Generic[SpecT]):
    """What the operator knows about the provider resource.

    ``provider_id`` is set once a create call has been accepted and cleared
    by a successful delete. ``last_applied`` holds only parameters whose
    provider mutation was confirmed.
    """

    provider_id: int | None = None
    last_applied: SpecT | None = None

    @property
    def created(self) -> bool:
        return self.provider_id is not None


@dataclass(frozen=True)
class ResourceInstance(Generic[SpecT]):
    """The unit handed to a controller for one convergence pass."""

    kind: ResourceKind
    name: str
    spec: SpecT
    observed: ObservedState[SpecT] = field(default_factory=ObservedState)
    deletion_requested: bool = False


@dataclass(frozen=True)
class ConnectionDetails:
    """How to reach a freshly created server."""

    endpoint: str | None
    username: str
    port: int
    password: str | None = None


# =============================================================================
# Network
# =============================================================================


class NetworkSubnet(_Spec):
    """A subnet carved from the network's IP range."""

    type: str = "cloud"
    ip_range: str = Field(alias="ipRange")
    network_zone: str = Field(alias="networkZone")
    vswitch_id: int | None = Field(None, alias="vSwitchID")

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        valid_types = {"cloud", "server", "vswitch"}
        if v not in valid_types:
            raise ValueError(f"subnet type must be one of {valid_types}")
        return v

    @model_validator(mode="after")
    def validate_vswitch(self) -> NetworkSubnet:
        if self.type == "vswitch" and self.vswitch_id is None:
            raise ValueError("vSwitchID is required for vswitch subnets")
        return self


class NetworkRoute(_Spec):
    destination: str
    gateway: str


class NetworkSpec(_Spec):
    """Private network.

    Subnets and routes are only applied at creation; later edits to them
    are accepted without effect.
    """

    ip_range: str = Field(alias="ipRange")
    subnets: list[NetworkSubnet] = Field(default_factory=list)
    routes: list[NetworkRoute] = Field(default_factory=list)
    expose_routes_to_vswitch: bool = Field(False, alias="exposeRoutesToVSwitch")
    labels: dict[str, str] = Field(default_factory=dict)


# =============================================================================
# Server
# =============================================================================


class ServerSpec(_Spec):
    """Server. Only labels and power state are converged after creation."""

    image: Annotated[str, Field(min_length=1)]
    server_type: Annotated[str, Field(min_length=1, alias="serverType")]
    datacenter: str | None = None
    location: str | None = None
    architecture: str = "x86"
    automount: bool = Field(False, alias="autoMount")
    enable_ipv4: bool = Field(True, alias="enableIPv4")
    enable_ipv6: bool = Field(True, alias="enableIPv6")
    firewall_ids: list[int] = Field(default_factory=list, alias="firewallIDs")
    network_ids: list[int] = Field(default_factory=list, alias="networkIDs")
    placement_group_id: int | None = Field(None, alias="placementGroupID")
    power_on: bool = Field(True, alias="powerOn")
    ssh_keys: list[str] = Field(default_factory=list, alias="sshKeys")
    start_after_create: bool = Field(True, alias="startAfterCreate")
    user_data: str = Field("", alias="userData")
    volume_ids: list[int] = Field(default_factory=list, alias="volumeIDs")
    labels: dict[str, str] = Field(default_factory=dict)

    @field_validator("architecture")
    @classmethod
    def validate_architecture(cls, v: str) -> str:
        if v not in ("x86", "arm"):
            raise ValueError("architecture must be 'x86' or 'arm'")
        return v


# =============================================================================
# Firewall
# =============================================================================


class FirewallDirection(str, Enum):
    IN = "in"
    OUT = "out"


class FirewallProtocol(str, Enum):
    TCP = "tcp"
    UDP = "udp"
    ICMP = "icmp"
    ESP = "esp"
    GRE = "gre"


class FirewallPort(_Spec):
    """Port restriction. ``all`` or a missing start means any port."""

    all: bool = False
    start: Annotated[int, Field(ge=1, le=65535)] | None = None
    end: Annotated[int, Field(ge=1, le=65535)] | None = None

    @model_validator(mode="after")
    def validate_range(self) -> FirewallPort:
        if self.start is not None and self.end is not None and self.end < self.start:
            raise ValueError("port end must not be lower than start")
        return self


class FirewallRule(_Spec):
    direction: FirewallDirection
    protocol: FirewallProtocol
    target_ips: Annotated[list[str], Field(min_length=1, alias="targetIPs")]
    description: str | None = None
    port: FirewallPort | None = None


class FirewallApplyTo(_Spec):
    """Binding of the firewall to a server or to a label selector."""

    type: str
    server_id: int | None = Field(None, alias="serverID")
    labels: dict[str, str] | None = None

    @model_validator(mode="after")
    def validate_target(self) -> FirewallApplyTo:
        if self.type == "server" and self.server_id is None:
            raise ValueError("serverID is required for server bindings")
        if self.type == "label_selector" and self.labels is None:
            raise ValueError("labels are required for label_selector bindings")
        if self.type not in ("server", "label_selector"):
            raise ValueError("applyTo type must be 'server' or 'label_selector'")
        return self


class FirewallSpec(_Spec):
    apply_to: list[FirewallApplyTo] = Field(default_factory=list, alias="applyTo")
    rules: list[FirewallRule] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)


# =============================================================================
# Load balancer
# =============================================================================


class LoadBalancerAlgorithm(str, Enum):
    ROUND_ROBIN = "round_robin"
    LEAST_CONNECTIONS = "least_connections"


class HealthCheckHTTP(_Spec):
    path: str | None = None
    domain: str | None = None
    response: str | None = None
    status_codes: list[str] = Field(default_factory=lambda: ["2??", "3??"], alias="statusCodes")
    tls: bool | None = None


class HealthCheck(_Spec):
    protocol: str = "http"
    port: int | None = 80
    interval: Duration | None = "15s"
    timeout: Duration | None = "10s"
    retries: int | None = 3
    http: HealthCheckHTTP | None = None

    model_config = {**_Spec.model_config, "validate_default": True}


class ServiceHTTP(_Spec):
    certificate_ids: list[int] = Field(default_factory=list, alias="certificateIDs")
    cookie_name: str | None = Field(None, alias="cookieName")
    cookie_lifetime: Duration | None = Field("300s", alias="cookieLifetime")
    redirect_http: bool | None = Field(None, alias="redirectHTTP")
    sticky_sessions: bool | None = Field(None, alias="stickySessions")

    model_config = {**_Spec.model_config, "validate_default": True}


class LoadBalancerService(_Spec):
    protocol: str
    listen_port: Annotated[int, Field(ge=1, le=65535, alias="listenPort")]
    destination_port: Annotated[int, Field(ge=1, le=65535, alias="destinationPort")]
    proxy_protocol: bool = Field(True, alias="proxyProtocol")
    health_check: HealthCheck = Field(default_factory=HealthCheck, alias="healthCheck")
    http: ServiceHTTP | None = None

    @field_validator("protocol")
    @classmethod
    def validate_protocol(cls, v: str) -> str:
        if v not in ("tcp", "http", "https"):
            raise ValueError("service protocol must be one of tcp, http, https")
        return v


class LoadBalancerTarget(_Spec):
    type: str
    server_id: int | None = Field(None, alias="serverID")
    labels: dict[str, str] | None = None
    ip: str | None = None
    use_private_ip: bool = Field(False, alias="usePrivateIP")

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        if v not in ("server", "label_selector", "ip"):
            raise ValueError("target type must be one of server, label_selector, ip")
        return v


class LoadBalancerSpec(_Spec):
    type: Annotated[str, Field(min_length=1)]
    algorithm: LoadBalancerAlgorithm = LoadBalancerAlgorithm.ROUND_ROBIN
    location: str | None = None
    network_zone: str | None = Field(None, alias="networkZone")
    network_id: int | None = Field(None, alias="networkID")
    public_interface: bool = Field(True, alias="publicInterface")
    services: list[LoadBalancerService] = Field(default_factory=list)
    targets: list[LoadBalancerTarget] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)


# =============================================================================
# Volume
# =============================================================================


class VolumeSpec(_Spec):
    """Block volume. Size only ever grows; a smaller size is ignored."""

    size: Annotated[int, Field(ge=10)]
    automount: bool = False
    format: str = "ext4"
    location: str | None = None
    server_id: int | None = Field(None, alias="serverID")
    labels: dict[str, str] = Field(default_factory=dict)

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("xfs", "ext4"):
            raise ValueError("format must be 'xfs' or 'ext4'")
        return v


# =============================================================================
# Placement group
# =============================================================================


class PlacementGroupSpec(_Spec):
    type: str = "spread"
    labels: dict[str, str] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        if v != "spread":
            raise ValueError("placement group type must be 'spread'")
        return v


SPEC_TYPES: dict[ResourceKind, type[_Spec]] = {
    ResourceKind.NETWORK: NetworkSpec,
    ResourceKind.SERVER: ServerSpec,
    ResourceKind.FIREWALL: FirewallSpec,
    ResourceKind.LOAD_BALANCER: LoadBalancerSpec,
    ResourceKind.VOLUME: VolumeSpec,
    ResourceKind.PLACEMENT_GROUP: PlacementGroupSpec,
}
