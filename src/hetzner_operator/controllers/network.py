"""Network convergence."""

from __future__ import annotations

import logging
from typing import Any

from ..converters import parse_cidr, parse_ip
from ..drift import network_is_up_to_date
from ..errors import wrap_errors
from ..labels import merge_labels
from ..models import NetworkSpec, NetworkSubnet, ObservedState, ResourceInstance, ResourceKind
from .base import BaseController, Creation

logger = logging.getLogger(__name__)


class NetworkController(BaseController[NetworkSpec]):
    """Subnets and routes are applied at creation and left alone afterwards."""

    kind = ResourceKind.NETWORK

    @property
    def api(self) -> Any:
        return self._provider.client.networks

    def is_up_to_date(self, desired: NetworkSpec, applied: NetworkSpec | None) -> bool:
        return network_is_up_to_date(desired, applied)

    async def create(self, instance: ResourceInstance[NetworkSpec]) -> Creation[NetworkSpec]:
        spec = instance.spec
        with wrap_errors("failed to convert network parameters"):
            ip_range = str(parse_cidr(spec.ip_range))
            subnets = [_to_subnet(subnet) for subnet in spec.subnets]
            routes = [
                {"destination": str(parse_cidr(route.destination)), "gateway": parse_ip(route.gateway)}
                for route in spec.routes
            ]

        response = await self._call(
            "failed to create network",
            self.api.create,
            {
                "name": instance.name,
                "ip_range": ip_range,
                "subnets": subnets,
                "routes": routes,
                "expose_routes_to_vswitch": spec.expose_routes_to_vswitch,
                "labels": merge_labels(spec.labels),
            },
        )

        network_id = response["network"]["id"]
        logger.info(
            "Created network",
            extra={"kind": self.kind.value, "resource_name": instance.name, "provider_id": network_id},
        )
        return Creation(ObservedState(provider_id=network_id, last_applied=spec))

    async def update(self, instance: ResourceInstance[NetworkSpec]) -> ObservedState[NetworkSpec]:
        target = instance.spec
        current = instance.observed.last_applied

        with wrap_errors("failed to update network"):
            ip_range = str(parse_cidr(target.ip_range))
            network = await self._fetch(instance)

            await self._call(
                "failed to update network labels",
                self.api.update,
                network["id"],
                {
                    "labels": merge_labels(target.labels),
                    "expose_routes_to_vswitch": target.expose_routes_to_vswitch,
                },
            )

            if current is None or target.ip_range != current.ip_range:
                action = await self._call(
                    "failed to change ip range", self.api.change_ip_range, network["id"], ip_range
                )
                await self._wait("failed to change ip range", action)

        applied = target
        if current is not None:
            applied = target.model_copy(update={"routes": current.routes, "subnets": current.subnets})
        return ObservedState(provider_id=network["id"], last_applied=applied)

    async def delete(self, instance: ResourceInstance[NetworkSpec]) -> None:
        await self._call("failed to delete network", self.api.delete, instance.observed.provider_id)


def _to_subnet(subnet: NetworkSubnet) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": subnet.type,
        "ip_range": str(parse_cidr(subnet.ip_range)),
        "network_zone": subnet.network_zone,
    }
    if subnet.vswitch_id is not None:
        payload["vswitch_id"] = subnet.vswitch_id
    return payload
