"""Tests for desired-state models."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from hetzner_operator.models import (
    SPEC_TYPES,
    FirewallApplyTo,
    FirewallDirection,
    FirewallRule,
    LoadBalancerAlgorithm,
    LoadBalancerSpec,
    NetworkSpec,
    NetworkSubnet,
    ObservedState,
    PlacementGroupSpec,
    ResourceInstance,
    ResourceKind,
    ServerSpec,
    VolumeSpec,
)

EXAMPLES_DIR = Path(__file__).parent.parent / "examples"


class TestExampleManifests:
    """Every shipped example parses into its kind's spec."""

    @pytest.mark.parametrize("path", sorted(EXAMPLES_DIR.glob("*.yaml")), ids=lambda p: p.stem)
    def test_example_parses(self, path: Path) -> None:
        manifest = yaml.safe_load(path.read_text())
        kind = ResourceKind(manifest["kind"])

        spec = SPEC_TYPES[kind].model_validate(manifest["spec"])

        assert spec.labels["environment"] == "prod"

    def test_firewall_example(self) -> None:
        manifest = yaml.safe_load((EXAMPLES_DIR / "firewall.yaml").read_text())

        spec = SPEC_TYPES[ResourceKind.FIREWALL].model_validate(manifest["spec"])

        assert spec.apply_to[0].labels == {"environment": "prod"}
        assert spec.rules[0].direction is FirewallDirection.IN
        assert spec.rules[0].port is not None and spec.rules[0].port.start == 80
        assert len(spec.rules[0].target_ips) == 3

    def test_load_balancer_example(self) -> None:
        manifest = yaml.safe_load((EXAMPLES_DIR / "load-balancer.yaml").read_text())

        spec = LoadBalancerSpec.model_validate(manifest["spec"])

        assert spec.algorithm is LoadBalancerAlgorithm.LEAST_CONNECTIONS
        service = spec.services[0]
        assert service.health_check.interval == timedelta(seconds=15)
        assert service.http is not None
        assert service.http.cookie_lifetime == timedelta(minutes=5)


class TestServerSpec:
    """Tests for ServerSpec."""

    def test_camel_case_document(self) -> None:
        spec = ServerSpec.model_validate(
            {
                "image": "ubuntu-24.04",
                "serverType": "cx22",
                "location": "fsn1",
                "firewallIDs": [1, 2],
                "placementGroupID": 9,
                "powerOn": False,
            }
        )

        assert spec.server_type == "cx22"
        assert spec.firewall_ids == [1, 2]
        assert spec.placement_group_id == 9
        assert spec.power_on is False

    def test_defaults(self) -> None:
        spec = ServerSpec(image="ubuntu-24.04", server_type="cx22")

        assert spec.datacenter is None
        assert spec.location is None
        assert spec.placement_group_id is None
        assert spec.architecture == "x86"
        assert spec.power_on is True
        assert spec.start_after_create is True

    def test_invalid_architecture(self) -> None:
        with pytest.raises(ValidationError):
            ServerSpec(image="ubuntu-24.04", server_type="cx22", architecture="riscv")

    def test_empty_image(self) -> None:
        with pytest.raises(ValidationError):
            ServerSpec(image="", server_type="cx22")

    def test_specs_are_frozen(self) -> None:
        spec = ServerSpec(image="ubuntu-24.04", server_type="cx22")

        with pytest.raises(ValidationError):
            spec.power_on = False  # type: ignore[misc]


class TestFirewallModels:
    """Tests for firewall models."""

    def test_rule_needs_target_ips(self) -> None:
        with pytest.raises(ValidationError):
            FirewallRule(direction="in", protocol="tcp", target_ips=[])

    def test_unknown_protocol(self) -> None:
        with pytest.raises(ValidationError):
            FirewallRule(direction="in", protocol="sctp", target_ips=["0.0.0.0/0"])

    def test_server_binding_needs_server_id(self) -> None:
        with pytest.raises(ValidationError):
            FirewallApplyTo(type="server")

    def test_selector_binding_needs_labels(self) -> None:
        with pytest.raises(ValidationError):
            FirewallApplyTo(type="label_selector")

    def test_unknown_binding_type(self) -> None:
        with pytest.raises(ValidationError):
            FirewallApplyTo(type="network", server_id=1)

    def test_rules_compare_deeply(self) -> None:
        first = FirewallRule.model_validate(
            {"direction": "in", "protocol": "tcp", "targetIPs": ["10.0.0.0/8"], "port": {"start": 22}}
        )
        second = FirewallRule.model_validate(
            {"direction": "in", "protocol": "tcp", "targetIPs": ["10.0.0.0/8"], "port": {"start": 23}}
        )

        assert first != second
        assert first == first.model_copy()


class TestNetworkModels:
    """Tests for network models."""

    def test_vswitch_subnet_needs_id(self) -> None:
        with pytest.raises(ValidationError):
            NetworkSubnet(type="vswitch", ip_range="10.0.1.0/24", network_zone="eu-central")

    def test_unknown_fields_ignored(self) -> None:
        spec = NetworkSpec.model_validate({"ipRange": "10.0.0.0/16", "exposeRoutesToSwitch": True})

        assert spec.expose_routes_to_vswitch is False


class TestVolumeAndPlacementGroup:
    """Tests for volume and placement group models."""

    def test_volume_minimum_size(self) -> None:
        with pytest.raises(ValidationError):
            VolumeSpec(size=5)

    def test_volume_format(self) -> None:
        assert VolumeSpec(size=10).format == "ext4"
        with pytest.raises(ValidationError):
            VolumeSpec(size=10, format="btrfs")

    def test_volume_server_is_optional(self) -> None:
        assert VolumeSpec(size=10).server_id is None
        assert VolumeSpec.model_validate({"size": 10, "serverID": 3}).server_id == 3

    def test_placement_group_type(self) -> None:
        assert PlacementGroupSpec().type == "spread"
        with pytest.raises(ValidationError):
            PlacementGroupSpec(type="cluster")


class TestInstanceState:
    """Tests for ObservedState and ResourceInstance."""

    def test_new_instance_is_not_created(self) -> None:
        instance = ResourceInstance(ResourceKind.VOLUME, "data", VolumeSpec(size=10))

        assert instance.observed == ObservedState()
        assert instance.observed.created is False
        assert instance.deletion_requested is False

    def test_kind_labels(self) -> None:
        assert ResourceKind.LOAD_BALANCER.label == "load balancer"
        assert ResourceKind.PLACEMENT_GROUP.label == "placement group"
        assert ResourceKind.VOLUME.label == "volume"

    def test_every_kind_has_a_spec_type(self) -> None:
        assert set(SPEC_TYPES) == set(ResourceKind)
