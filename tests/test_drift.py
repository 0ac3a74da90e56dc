"""Tests for drift predicates."""

from __future__ import annotations

from hetzner_operator.drift import (
    firewall_is_up_to_date,
    load_balancer_is_up_to_date,
    network_is_up_to_date,
    placement_group_is_up_to_date,
    server_is_up_to_date,
    volume_is_up_to_date,
)
from hetzner_operator.models import (
    FirewallSpec,
    LoadBalancerSpec,
    NetworkSpec,
    PlacementGroupSpec,
    ServerSpec,
    VolumeSpec,
)

RULE = {"direction": "in", "protocol": "tcp", "targetIPs": ["10.0.0.0/24"], "port": {"start": 80}}


class TestNeverApplied:
    """Without a previous apply nothing is up to date."""

    def test_every_kind(self) -> None:
        assert not network_is_up_to_date(NetworkSpec(ip_range="10.0.0.0/16"), None)
        assert not server_is_up_to_date(ServerSpec(image="i", server_type="t"), None)
        assert not firewall_is_up_to_date(FirewallSpec(), None)
        assert not load_balancer_is_up_to_date(LoadBalancerSpec(type="lb11"), None)
        assert not volume_is_up_to_date(VolumeSpec(size=10), None)
        assert not placement_group_is_up_to_date(PlacementGroupSpec(), None)


class TestNetworkDrift:
    """Tests for network drift."""

    def test_identical(self) -> None:
        spec = NetworkSpec(ip_range="10.0.0.0/16", labels={"a": "b"})

        assert network_is_up_to_date(spec, spec)

    def test_label_change(self) -> None:
        applied = NetworkSpec(ip_range="10.0.0.0/16", labels={"a": "b"})
        desired = applied.model_copy(update={"labels": {"a": "c"}})

        assert not network_is_up_to_date(desired, applied)

    def test_route_and_subnet_edits_are_ignored(self) -> None:
        applied = NetworkSpec(ip_range="10.0.0.0/16")
        desired = NetworkSpec.model_validate(
            {
                "ipRange": "10.0.0.0/16",
                "subnets": [{"type": "cloud", "ipRange": "10.0.1.0/24", "networkZone": "eu-central"}],
                "routes": [{"destination": "10.100.1.0/24", "gateway": "10.0.1.1"}],
            }
        )

        assert network_is_up_to_date(desired, applied)


class TestServerDrift:
    """Tests for server drift."""

    def test_power_state(self) -> None:
        applied = ServerSpec(image="ubuntu-24.04", server_type="cx22")
        desired = applied.model_copy(update={"power_on": False})

        assert not server_is_up_to_date(desired, applied)

    def test_immutable_fields_are_ignored(self) -> None:
        applied = ServerSpec(image="ubuntu-24.04", server_type="cx22", location="fsn1")
        desired = ServerSpec(image="debian-12", server_type="cx32", location="nbg1")

        assert server_is_up_to_date(desired, applied)


class TestFirewallDrift:
    """Tests for firewall drift."""

    def test_nested_rule_difference(self) -> None:
        applied = FirewallSpec.model_validate({"rules": [RULE]})
        desired = FirewallSpec.model_validate({"rules": [{**RULE, "port": {"start": 80, "end": 81}}]})

        assert not firewall_is_up_to_date(desired, applied)

    def test_apply_to_difference(self) -> None:
        applied = FirewallSpec.model_validate({"applyTo": [{"type": "server", "serverID": 1}]})
        desired = FirewallSpec.model_validate({"applyTo": [{"type": "server", "serverID": 2}]})

        assert not firewall_is_up_to_date(desired, applied)

    def test_identical(self) -> None:
        document = {"rules": [RULE], "applyTo": [{"type": "server", "serverID": 1}]}

        assert firewall_is_up_to_date(
            FirewallSpec.model_validate(document), FirewallSpec.model_validate(document)
        )


class TestLoadBalancerDrift:
    """Each compared field on its own is drift."""

    def test_each_field(self) -> None:
        applied = LoadBalancerSpec(type="lb11")
        changes = [
            {"type": "lb21"},
            {"public_interface": False},
            {"algorithm": "least_connections"},
            {"network_id": 7},
            {"labels": {"env": "prod"}},
        ]
        for change in changes:
            desired = LoadBalancerSpec.model_validate({**applied.model_dump(), **change})
            assert not load_balancer_is_up_to_date(desired, applied), change

    def test_service_difference(self) -> None:
        service = {"protocol": "tcp", "listenPort": 80, "destinationPort": 80}
        applied = LoadBalancerSpec.model_validate({"type": "lb11", "services": [service]})
        desired = LoadBalancerSpec.model_validate(
            {"type": "lb11", "services": [{**service, "healthCheck": {"retries": 5}}]}
        )

        assert not load_balancer_is_up_to_date(desired, applied)

    def test_target_difference(self) -> None:
        applied = LoadBalancerSpec.model_validate(
            {"type": "lb11", "targets": [{"type": "server", "serverID": 1}]}
        )
        desired = LoadBalancerSpec.model_validate(
            {"type": "lb11", "targets": [{"type": "server", "serverID": 1, "usePrivateIP": True}]}
        )

        assert not load_balancer_is_up_to_date(desired, applied)

    def test_location_is_ignored(self) -> None:
        applied = LoadBalancerSpec(type="lb11", location="fsn1")
        desired = LoadBalancerSpec(type="lb11", location="nbg1")

        assert load_balancer_is_up_to_date(desired, applied)


class TestVolumeDrift:
    """Tests for volume drift."""

    def test_grow_and_shrink_are_both_drift(self) -> None:
        applied = VolumeSpec(size=20)

        assert not volume_is_up_to_date(VolumeSpec(size=30), applied)
        assert not volume_is_up_to_date(VolumeSpec(size=10), applied)

    def test_server_change(self) -> None:
        assert not volume_is_up_to_date(VolumeSpec(size=20, server_id=1), VolumeSpec(size=20))

    def test_format_is_ignored(self) -> None:
        assert volume_is_up_to_date(VolumeSpec(size=20, format="xfs"), VolumeSpec(size=20))


class TestPlacementGroupDrift:
    def test_labels_only(self) -> None:
        applied = PlacementGroupSpec(labels={"a": "b"})

        assert placement_group_is_up_to_date(PlacementGroupSpec(labels={"a": "b"}), applied)
        assert not placement_group_is_up_to_date(PlacementGroupSpec(), applied)
