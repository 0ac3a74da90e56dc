"""Drift predicates: is the last applied state still what is desired?

One predicate per kind, comparing only the fields that kind converges after
creation. Structured fields use full deep equality. A missing last applied
state is never up to date.
"""

from __future__ import annotations

from .models import (
    FirewallSpec,
    LoadBalancerSpec,
    NetworkSpec,
    PlacementGroupSpec,
    ServerSpec,
    VolumeSpec,
)


def network_is_up_to_date(desired: NetworkSpec, applied: NetworkSpec | None) -> bool:
    # routes and subnets are unmanaged after creation
    if applied is None:
        return False
    return (
        desired.labels == applied.labels
        and desired.ip_range == applied.ip_range
        and desired.expose_routes_to_vswitch == applied.expose_routes_to_vswitch
    )


def server_is_up_to_date(desired: ServerSpec, applied: ServerSpec | None) -> bool:
    if applied is None:
        return False
    return desired.labels == applied.labels and desired.power_on == applied.power_on


def firewall_is_up_to_date(desired: FirewallSpec, applied: FirewallSpec | None) -> bool:
    if applied is None:
        return False
    return (
        desired.labels == applied.labels
        and desired.apply_to == applied.apply_to
        and desired.rules == applied.rules
    )


def load_balancer_is_up_to_date(
    desired: LoadBalancerSpec, applied: LoadBalancerSpec | None
) -> bool:
    if applied is None:
        return False
    return (
        desired.labels == applied.labels
        and desired.type == applied.type
        and desired.public_interface == applied.public_interface
        and desired.algorithm == applied.algorithm
        and desired.network_id == applied.network_id
        and desired.services == applied.services
        and desired.targets == applied.targets
    )


def volume_is_up_to_date(desired: VolumeSpec, applied: VolumeSpec | None) -> bool:
    """Any size difference is drift, although only growth is ever applied."""
    if applied is None:
        return False
    return (
        desired.labels == applied.labels
        and desired.server_id == applied.server_id
        and desired.size == applied.size
    )


def placement_group_is_up_to_date(
    desired: PlacementGroupSpec, applied: PlacementGroupSpec | None
) -> bool:
    if applied is None:
        return False
    return desired.labels == applied.labels
