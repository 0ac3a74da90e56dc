"""Tests for volume convergence."""

from __future__ import annotations

import pytest
from hcloud_mock import MockHCloudClient

from hetzner_operator.awaiter import ActionAwaiter
from hetzner_operator.controllers.volume import VolumeController
from hetzner_operator.errors import ActionFailedError, UnresolvedReferenceError
from hetzner_operator.models import ObservedState, ResourceInstance, ResourceKind, VolumeSpec
from hetzner_operator.provider import ProviderConnection


@pytest.fixture
def controller(provider: ProviderConnection, awaiter: ActionAwaiter) -> VolumeController:
    return VolumeController(provider, awaiter)


def instance(spec: VolumeSpec, observed: ObservedState[VolumeSpec] | None = None) -> ResourceInstance[VolumeSpec]:
    return ResourceInstance(ResourceKind.VOLUME, "data", spec, observed or ObservedState())


def mutation_names(client: MockHCloudClient) -> list[str]:
    return [call.name for call in client.mutations()]


class TestVolumeCreate:
    """Tests for VolumeController.create."""

    @pytest.mark.asyncio
    async def test_create_in_location(
        self, client: MockHCloudClient, controller: VolumeController
    ) -> None:
        spec = VolumeSpec(size=20, location="fsn1", labels={"env": "prod"})

        creation = await controller.create(instance(spec))

        [call] = client.mutations()
        assert call.name == "volumes.create"
        assert call.args[0]["location"] == "fsn1"
        assert call.args[0]["size"] == 20
        assert call.args[0]["format"] == "ext4"
        assert "server" not in call.args[0]
        assert creation.observed.last_applied == spec

    @pytest.mark.asyncio
    async def test_create_attached_to_server(
        self, client: MockHCloudClient, controller: VolumeController
    ) -> None:
        server = client.servers.add(name="web")
        spec = VolumeSpec(size=20, location="fsn1", server_id=server["id"])

        await controller.create(instance(spec))

        payload = client.mutations()[0].args[0]
        assert payload["server"] == server["id"]
        assert "location" not in payload

    @pytest.mark.asyncio
    async def test_unknown_server_creates_nothing(
        self, client: MockHCloudClient, controller: VolumeController
    ) -> None:
        with pytest.raises(UnresolvedReferenceError) as exc_info:
            await controller.create(instance(VolumeSpec(size=20, server_id=999)))

        assert str(exc_info.value) == "failed to get server: unknown server: 999"
        assert exc_info.value.retryable is False
        assert client.mutations() == []

    @pytest.mark.asyncio
    async def test_unknown_location_creates_nothing(
        self, client: MockHCloudClient, controller: VolumeController
    ) -> None:
        with pytest.raises(UnresolvedReferenceError):
            await controller.create(instance(VolumeSpec(size=20, location="mars1")))

        assert client.mutations() == []


class TestVolumeUpdate:
    """Tests for VolumeController.update."""

    @pytest.mark.asyncio
    async def test_grow_resizes(self, client: MockHCloudClient, controller: VolumeController) -> None:
        created = (await controller.create(instance(VolumeSpec(size=20, location="fsn1")))).observed
        client.calls.clear()
        desired = VolumeSpec(size=50, location="fsn1")

        observed = await controller.update(instance(desired, created))

        assert mutation_names(client) == ["volumes.update", "volumes.resize"]
        assert client.volumes.items[created.provider_id]["size"] == 50
        assert observed.last_applied is not None and observed.last_applied.size == 50

    @pytest.mark.asyncio
    async def test_shrink_is_silently_skipped(
        self, client: MockHCloudClient, controller: VolumeController
    ) -> None:
        """A smaller size is drift, but update issues no resize and succeeds."""
        created = (await controller.create(instance(VolumeSpec(size=50, location="fsn1")))).observed
        client.calls.clear()
        desired = VolumeSpec(size=20, location="fsn1")
        assert not controller.is_up_to_date(desired, created.last_applied)

        await controller.update(instance(desired, created))

        assert mutation_names(client) == ["volumes.update"]
        assert client.volumes.items[created.provider_id]["size"] == 50

    @pytest.mark.asyncio
    async def test_move_to_another_server(
        self, client: MockHCloudClient, controller: VolumeController
    ) -> None:
        old = client.servers.add(name="old")
        new = client.servers.add(name="new")
        spec = VolumeSpec(size=20, server_id=old["id"])
        created = (await controller.create(instance(spec))).observed
        client.calls.clear()

        observed = await controller.update(instance(spec.model_copy(update={"server_id": new["id"]}), created))

        assert mutation_names(client) == ["volumes.update", "volumes.detach", "volumes.attach"]
        assert client.volumes.items[created.provider_id]["server"] == new["id"]
        assert observed.last_applied is not None and observed.last_applied.server_id == new["id"]

    @pytest.mark.asyncio
    async def test_detach_only(self, client: MockHCloudClient, controller: VolumeController) -> None:
        server = client.servers.add(name="web")
        spec = VolumeSpec(size=20, server_id=server["id"])
        created = (await controller.create(instance(spec))).observed
        client.calls.clear()

        await controller.update(instance(spec.model_copy(update={"server_id": None}), created))

        assert mutation_names(client) == ["volumes.update", "volumes.detach"]

    @pytest.mark.asyncio
    async def test_failed_attach_keeps_last_applied(
        self, client: MockHCloudClient, controller: VolumeController
    ) -> None:
        """A failed action surfaces with its operation and no new state is returned."""
        server = client.servers.add(name="web")
        created = (await controller.create(instance(VolumeSpec(size=20, location="fsn1")))).observed
        client.fail_next_action("server_locked", "server is locked")

        with pytest.raises(ActionFailedError) as exc_info:
            await controller.update(instance(VolumeSpec(size=20, server_id=server["id"]), created))

        assert str(exc_info.value).startswith("failed to update volume: failed to attach volume")
        assert exc_info.value.code == "server_locked"

    @pytest.mark.asyncio
    async def test_partial_pass_converges_on_rerun(
        self, client: MockHCloudClient, controller: VolumeController
    ) -> None:
        """Re-running update after a failure recomputes every step from desired state."""
        server = client.servers.add(name="web")
        created = (await controller.create(instance(VolumeSpec(size=20, location="fsn1")))).observed
        desired = VolumeSpec(size=40, server_id=server["id"])
        client.fail_next_action("server_locked", "server is locked")
        with pytest.raises(ActionFailedError):
            await controller.update(instance(desired, created))

        observed = await controller.update(instance(desired, created))

        volume = client.volumes.items[created.provider_id]
        assert volume["server"] == server["id"]
        assert volume["size"] == 40
        assert controller.is_up_to_date(desired, observed.last_applied)


class TestVolumeDelete:
    """Tests for VolumeController.delete."""

    @pytest.mark.asyncio
    async def test_detaches_before_delete(
        self, client: MockHCloudClient, controller: VolumeController
    ) -> None:
        server = client.servers.add(name="web")
        created = (await controller.create(instance(VolumeSpec(size=20, server_id=server["id"])))).observed
        client.calls.clear()

        await controller.delete(instance(VolumeSpec(size=20), created))

        assert mutation_names(client) == ["volumes.detach", "volumes.delete"]
        detach = client.action_log[max(client.action_log)]
        delete_index = client.call_names().index("volumes.delete")
        assert detach.completed_index is not None and detach.completed_index < delete_index
        assert client.volumes.items == {}

    @pytest.mark.asyncio
    async def test_unattached_volume(
        self, client: MockHCloudClient, controller: VolumeController
    ) -> None:
        created = (await controller.create(instance(VolumeSpec(size=20, location="fsn1")))).observed
        client.calls.clear()

        await controller.delete(instance(VolumeSpec(size=20), created))

        assert mutation_names(client) == ["volumes.delete"]
