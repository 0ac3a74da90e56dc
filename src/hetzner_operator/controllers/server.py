"""Server convergence.

Everything except labels and power state is fixed at creation; changing the
image, type or location of a declared server has no effect.
"""

from __future__ import annotations

import logging
from typing import Any

from ..drift import server_is_up_to_date
from ..errors import UnresolvedReferenceError, wrap_errors
from ..labels import merge_labels
from ..models import (
    ConnectionDetails,
    ObservedState,
    ResourceInstance,
    ResourceKind,
    ServerSpec,
)
from .base import BaseController, Creation

logger = logging.getLogger(__name__)

SSH_USERNAME = "root"
SSH_PORT = 22


class ServerController(BaseController[ServerSpec]):
    kind = ResourceKind.SERVER

    @property
    def api(self) -> Any:
        return self._provider.client.servers

    def is_up_to_date(self, desired: ServerSpec, applied: ServerSpec | None) -> bool:
        return server_is_up_to_date(desired, applied)

    async def create(self, instance: ResourceInstance[ServerSpec]) -> Creation[ServerSpec]:
        """Resolve every reference, register SSH keys, then create the server.

        No server is created unless all references resolve.
        """
        spec = instance.spec
        client = self._provider.client

        with wrap_errors("failed to get datacenter or location"):
            datacenter, location = await self._provider.get_datacenter_or_location(
                spec.datacenter, spec.location
            )

        firewalls = [
            await self._resolve("firewall", client.firewalls.get_by_id, firewall_id)
            for firewall_id in spec.firewall_ids
        ]

        image = await self._provider.call(
            "failed to get image",
            client.images.get_by_name_and_architecture,
            spec.image,
            spec.architecture,
        )
        if image is None:
            error = UnresolvedReferenceError("image", f"{spec.image} ({spec.architecture})")
            error.add_operation("failed to get image")
            raise error

        networks = [
            await self._resolve("network", client.networks.get_by_id, network_id)
            for network_id in spec.network_ids
        ]

        placement_group = None
        if spec.placement_group_id is not None:
            placement_group = await self._resolve(
                "placement group", client.placement_groups.get_by_id, spec.placement_group_id
            )

        server_type = await self._resolve("server type", client.server_types.get_by_name, spec.server_type)

        volumes = [
            await self._resolve("volume", client.volumes.get_by_id, volume_id)
            for volume_id in spec.volume_ids
        ]

        with wrap_errors("failed to upsert ssh key"):
            ssh_keys = await self._provider.upsert_ssh_keys(spec.ssh_keys)

        payload: dict[str, Any] = {
            "name": instance.name,
            "server_type": server_type["name"],
            "image": image["id"],
            "automount": spec.automount,
            "firewalls": [{"firewall": firewall["id"]} for firewall in firewalls],
            "networks": [network["id"] for network in networks],
            "volumes": [volume["id"] for volume in volumes],
            "ssh_keys": [key["id"] for key in ssh_keys],
            "labels": merge_labels(spec.labels),
            "public_net": {"enable_ipv4": spec.enable_ipv4, "enable_ipv6": spec.enable_ipv6},
            "start_after_create": spec.start_after_create,
        }
        if datacenter is not None:
            payload["datacenter"] = datacenter["name"]
        if location is not None:
            payload["location"] = location["name"]
        if placement_group is not None:
            payload["placement_group"] = placement_group["id"]
        if spec.user_data:
            payload["user_data"] = spec.user_data

        response = await self._call("failed to create server", self.api.create, payload)
        server = response["server"]

        logger.info(
            "Created server",
            extra={"kind": self.kind.value, "resource_name": instance.name, "provider_id": server["id"]},
        )
        return Creation(
            ObservedState(provider_id=server["id"], last_applied=spec),
            connection_details=_connection_details(server, response.get("root_password")),
        )

    async def update(self, instance: ResourceInstance[ServerSpec]) -> ObservedState[ServerSpec]:
        target = instance.spec
        current = instance.observed.last_applied

        with wrap_errors("failed to update server"):
            server = await self._fetch(instance)

            await self._call(
                "failed to update server labels",
                self.api.update,
                server["id"],
                {"labels": merge_labels(target.labels)},
            )

            if current is None or current.power_on != target.power_on:
                change = self.api.power_on if target.power_on else self.api.power_off
                action = await self._call("failed to change power state", change, server["id"])
                await self._wait("failed to change power state", action)

        applied = target
        if current is not None:
            applied = current.model_copy(
                update={"labels": target.labels, "power_on": target.power_on}
            )
        return ObservedState(provider_id=server["id"], last_applied=applied)

    async def delete(self, instance: ResourceInstance[ServerSpec]) -> None:
        with wrap_errors("failed to delete server"):
            action = await self._call(
                "failed to trigger server delete", self.api.delete, instance.observed.provider_id
            )
            await self._wait("failed to wait for server delete", action)


def _connection_details(server: dict[str, Any], root_password: str | None) -> ConnectionDetails:
    ipv4 = (server.get("public_net") or {}).get("ipv4") or {}
    return ConnectionDetails(
        endpoint=ipv4.get("ip"),
        username=SSH_USERNAME,
        port=SSH_PORT,
        password=root_password,
    )
