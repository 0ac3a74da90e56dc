"""Translators from desired-state fields to provider wire formats.

Every converter is deterministic and fails fast with ConversionError: a
malformed literal in the desired state will not fix itself on retry.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import ipaddress
import re
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Annotated, Any

from pydantic import BeforeValidator, PlainSerializer

from .errors import ConversionError
from .labels import to_selector

if TYPE_CHECKING:
    from .models import (
        FirewallApplyTo,
        FirewallPort,
        FirewallRule,
        HealthCheck,
        LoadBalancerService,
        LoadBalancerTarget,
    )

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network

PORT_ANY = "any"
PORTED_PROTOCOLS = ("tcp", "udp")

# =============================================================================
# CIDR
# =============================================================================


def parse_cidr(value: str) -> IPNetwork:
    """Parse ``address/prefix`` into a network, masking any host bits.

    ``10.0.0.7/24`` yields ``10.0.0.0/24``. A bare address without a prefix
    length is rejected.
    """
    if "/" not in value:
        raise ConversionError(f"invalid CIDR address: {value!r}")
    try:
        return ipaddress.ip_network(value.strip(), strict=False)
    except ValueError as e:
        raise ConversionError(f"invalid CIDR address: {value!r}") from e


def parse_ip(value: str) -> str:
    """Validate a single IP address and return its canonical text form."""
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError as e:
        raise ConversionError(f"invalid IP address: {value!r}") from e


# =============================================================================
# Ports
# =============================================================================


def format_port(port: FirewallPort | None) -> str:
    """Render a port spec in the provider's wire format.

    ``"any"`` when unrestricted, ``"N"`` for a single port and ``"N-M"`` for
    an inclusive range. A range is only emitted when start and end differ.
    """
    if port is None or port.all or port.start is None:
        return PORT_ANY
    if port.end is None or port.end == port.start:
        return str(port.start)
    return f"{port.start}-{port.end}"


# =============================================================================
# Durations
# =============================================================================

_MICROS_PER_UNIT = {
    "ns": Decimal("0.001"),
    "us": Decimal(1),
    "µs": Decimal(1),  # U+00B5 micro sign
    "μs": Decimal(1),  # U+03BC Greek mu
    "ms": Decimal(1_000),
    "s": Decimal(1_000_000),
    "m": Decimal(60_000_000),
    "h": Decimal(3_600_000_000),
}

_COMPONENT = r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)"
_DURATION_RE = re.compile(rf"(?:{_COMPONENT})+")
_COMPONENT_RE = re.compile(_COMPONENT)


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as ``"15s"``, ``"1m30s"`` or ``"1.5h"``.

    Accepts a leading sign and the units ns, us, ms, s, m and h. A bare
    ``"0"`` is zero; any other unitless number is rejected.
    """
    text = value.strip()
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    if text == "0":
        return timedelta(0)
    if not text or not _DURATION_RE.fullmatch(text):
        raise ConversionError(f"invalid duration: {value!r}")

    micros = sum(
        Decimal(number) * _MICROS_PER_UNIT[unit] for number, unit in _COMPONENT_RE.findall(text)
    )
    return timedelta(microseconds=sign * int(micros.to_integral_value()))


def _fraction(value: int, scale: int) -> str:
    whole, rest = divmod(value, scale)
    if not rest:
        return str(whole)
    digits = len(str(scale)) - 1
    return f"{whole}.{rest:0{digits}d}".rstrip("0")


def format_duration(value: timedelta) -> str:
    """Render a duration the way it is written in manifests.

    Durations of a second or more use h/m/s with every smaller unit spelled
    out (``"1m0s"``, ``"1h0m0s"``); shorter ones use ms or µs.
    """
    micros = (value.days * 86_400 + value.seconds) * 1_000_000 + value.microseconds
    if micros == 0:
        return "0s"

    sign = "-" if micros < 0 else ""
    micros = abs(micros)

    if micros < 1_000:
        return f"{sign}{micros}µs"
    if micros < 1_000_000:
        return f"{sign}{_fraction(micros, 1_000)}ms"

    seconds, rest = divmod(micros, 1_000_000)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    text = _fraction(seconds * 1_000_000 + rest, 1_000_000) + "s"
    if hours:
        return f"{sign}{hours}h{minutes}m{text}"
    if minutes:
        return f"{sign}{minutes}m{text}"
    return sign + text


def _coerce_duration(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("duration must be a string or a number of seconds")
    if isinstance(value, int | float):
        return timedelta(seconds=value)
    if isinstance(value, str):
        try:
            return parse_duration(value)
        except ConversionError as e:
            raise ValueError(e.detail) from e
    return value


Duration = Annotated[
    timedelta,
    BeforeValidator(_coerce_duration),
    PlainSerializer(format_duration, return_type=str, when_used="json"),
]


def duration_seconds(value: timedelta) -> int:
    """Whole seconds, as the provider expects interval and timeout fields."""
    return int(value.total_seconds())


# =============================================================================
# Firewalls
# =============================================================================


def to_firewall_rule(rule: FirewallRule) -> dict[str, Any]:
    """Convert a rule to the provider shape.

    Inbound rules populate ``source_ips``; outbound rules populate
    ``destination_ips``. The other side is sent empty.
    """
    cidrs = [str(parse_cidr(ip)) for ip in rule.target_ips]

    payload: dict[str, Any] = {
        "direction": rule.direction.value,
        "protocol": rule.protocol.value,
        "source_ips": [],
        "destination_ips": [],
    }
    match rule.direction.value:
        case "in":
            payload["source_ips"] = cidrs
        case "out":
            payload["destination_ips"] = cidrs

    if rule.protocol.value in PORTED_PROTOCOLS:
        payload["port"] = format_port(rule.port)
    if rule.description is not None:
        payload["description"] = rule.description
    return payload


def to_firewall_rules(rules: list[FirewallRule]) -> list[dict[str, Any]]:
    return [to_firewall_rule(rule) for rule in rules]


def to_firewall_resource(apply_to: FirewallApplyTo) -> dict[str, Any]:
    """Convert an apply-to binding (server or label selector)."""
    resource: dict[str, Any] = {"type": apply_to.type}
    if apply_to.server_id is not None:
        resource["server"] = {"id": apply_to.server_id}
    if apply_to.labels is not None:
        resource["label_selector"] = {"selector": to_selector(apply_to.labels)}
    return resource


def strip_firewall_resource(resource: dict[str, Any]) -> dict[str, Any]:
    """Reduce an observed ``applied_to`` entry to what remove_from_resources accepts."""
    stripped: dict[str, Any] = {"type": resource["type"]}
    if resource.get("server"):
        stripped["server"] = {"id": resource["server"]["id"]}
    if resource.get("label_selector"):
        stripped["label_selector"] = {"selector": resource["label_selector"]["selector"]}
    return stripped


# =============================================================================
# Load balancers
# =============================================================================


def _to_health_check(health_check: HealthCheck) -> dict[str, Any]:
    payload: dict[str, Any] = {"protocol": health_check.protocol}
    if health_check.port is not None:
        payload["port"] = health_check.port
    if health_check.interval is not None:
        payload["interval"] = duration_seconds(health_check.interval)
    if health_check.timeout is not None:
        payload["timeout"] = duration_seconds(health_check.timeout)
    if health_check.retries is not None:
        payload["retries"] = health_check.retries

    http = health_check.http
    if http is not None:
        http_payload: dict[str, Any] = {"status_codes": list(http.status_codes)}
        if http.domain is not None:
            http_payload["domain"] = http.domain
        if http.path is not None:
            http_payload["path"] = http.path
        if http.response is not None:
            http_payload["response"] = http.response
        if http.tls is not None:
            http_payload["tls"] = http.tls
        payload["http"] = http_payload
    return payload


def to_load_balancer_service(service: LoadBalancerService) -> dict[str, Any]:
    """Convert a service with its health check and optional HTTP settings."""
    payload: dict[str, Any] = {
        "protocol": service.protocol,
        "listen_port": service.listen_port,
        "destination_port": service.destination_port,
        "proxyprotocol": service.proxy_protocol,
        "health_check": _to_health_check(service.health_check),
    }

    http = service.http
    if http is not None:
        http_payload: dict[str, Any] = {"certificates": list(http.certificate_ids)}
        if http.cookie_name is not None:
            http_payload["cookie_name"] = http.cookie_name
        if http.cookie_lifetime is not None:
            http_payload["cookie_lifetime"] = duration_seconds(http.cookie_lifetime)
        if http.redirect_http is not None:
            http_payload["redirect_http"] = http.redirect_http
        if http.sticky_sessions is not None:
            http_payload["sticky_sessions"] = http.sticky_sessions
        payload["http"] = http_payload
    return payload


def to_load_balancer_target(target: LoadBalancerTarget, network_attached: bool) -> dict[str, Any]:
    """Convert a target.

    The private IP flag is only sent when the load balancer has a network
    attached; the provider rejects it otherwise.
    """
    payload: dict[str, Any] = {"type": target.type}
    if target.server_id is not None:
        payload["server"] = {"id": target.server_id}
    if target.labels is not None:
        payload["label_selector"] = {"selector": to_selector(target.labels)}
    if target.ip is not None:
        payload["ip"] = {"ip": parse_ip(target.ip)}
    if network_attached and target.use_private_ip:
        payload["use_private_ip"] = True
    return payload


def strip_load_balancer_target(target: dict[str, Any]) -> dict[str, Any]:
    """Reduce an observed target to what remove_target accepts."""
    stripped: dict[str, Any] = {"type": target["type"]}
    for key in ("server", "label_selector", "ip"):
        if target.get(key):
            stripped[key] = target[key]
    return stripped


# =============================================================================
# SSH keys
# =============================================================================


def ssh_key_fingerprint(public_key: str) -> str:
    """MD5 fingerprint of an OpenSSH public key, as colon-separated hex.

    The key must have the form ``<type> <base64 body> [comment]``.
    """
    fields = public_key.split()
    if len(fields) < 2:
        raise ConversionError("bad ssh key: expected '<type> <base64> [comment]'")
    try:
        body = base64.b64decode(fields[1], validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConversionError(f"bad ssh key: {e}") from e

    digest = hashlib.md5(body, usedforsecurity=False).hexdigest()
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))
