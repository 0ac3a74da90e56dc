"""Load balancer convergence.

Update walks a fixed sequence of sub-operations, each gated by its own
field comparison and each awaited before the next starts:

    labels -> type -> public interface -> algorithm -> network -> services -> targets

Services and targets are replaced wholesale: every existing entry is
removed before every desired entry is added.
"""

from __future__ import annotations

import logging
from typing import Any

from ..converters import (
    strip_load_balancer_target,
    to_load_balancer_service,
    to_load_balancer_target,
)
from ..drift import load_balancer_is_up_to_date
from ..errors import wrap_errors
from ..labels import merge_labels
from ..models import LoadBalancerSpec, ObservedState, ResourceInstance, ResourceKind
from .base import BaseController, Creation

logger = logging.getLogger(__name__)


class LoadBalancerController(BaseController[LoadBalancerSpec]):
    kind = ResourceKind.LOAD_BALANCER

    @property
    def api(self) -> Any:
        return self._provider.client.load_balancers

    def is_up_to_date(self, desired: LoadBalancerSpec, applied: LoadBalancerSpec | None) -> bool:
        return load_balancer_is_up_to_date(desired, applied)

    async def create(
        self, instance: ResourceInstance[LoadBalancerSpec]
    ) -> Creation[LoadBalancerSpec]:
        spec = instance.spec
        network_attached = spec.network_id is not None

        with wrap_errors("failed to convert load balancer parameters"):
            services = [to_load_balancer_service(service) for service in spec.services]
            targets = [to_load_balancer_target(t, network_attached) for t in spec.targets]

        payload: dict[str, Any] = {
            "name": instance.name,
            "load_balancer_type": spec.type,
            "algorithm": {"type": spec.algorithm.value},
            "labels": merge_labels(spec.labels),
            "public_interface": spec.public_interface,
            "services": services,
            "targets": targets,
        }
        if spec.location is not None:
            payload["location"] = spec.location
        if spec.network_zone:
            payload["network_zone"] = spec.network_zone
        if network_attached:
            payload["network"] = spec.network_id

        response = await self._call("failed to create load balancer", self.api.create, payload)

        load_balancer_id = response["load_balancer"]["id"]
        logger.info(
            "Created load balancer",
            extra={"kind": self.kind.value, "resource_name": instance.name, "provider_id": load_balancer_id},
        )
        return Creation(ObservedState(provider_id=load_balancer_id, last_applied=spec))

    async def update(
        self, instance: ResourceInstance[LoadBalancerSpec]
    ) -> ObservedState[LoadBalancerSpec]:
        target = instance.spec
        current = instance.observed.last_applied

        with wrap_errors("failed to convert load balancer parameters"):
            services = [to_load_balancer_service(service) for service in target.services]
            targets = [to_load_balancer_target(t, target.network_id is not None) for t in target.targets]

        with wrap_errors("failed to update load balancer"):
            load_balancer = await self._fetch(instance)
            lb_id = load_balancer["id"]

            await self._call(
                "failed to update load balancer labels",
                self.api.update,
                lb_id,
                {"labels": merge_labels(target.labels)},
            )

            if current is None or target.type != current.type:
                action = await self._call(
                    "failed to change load balancer type", self.api.change_type, lb_id, target.type
                )
                await self._wait("failed to change load balancer type", action)

            if current is None or target.public_interface != current.public_interface:
                toggle = (
                    self.api.enable_public_interface
                    if target.public_interface
                    else self.api.disable_public_interface
                )
                action = await self._call("failed to update public interface", toggle, lb_id)
                await self._wait("failed to update public interface", action)

            if current is None or target.algorithm != current.algorithm:
                action = await self._call(
                    "failed to change algorithm",
                    self.api.change_algorithm,
                    lb_id,
                    target.algorithm.value,
                )
                await self._wait("failed to change algorithm", action)

            if current is None or target.network_id != current.network_id:
                await self._change_network(load_balancer, target.network_id)

            if current is None or target.services != current.services:
                await self._replace_services(load_balancer, services)

            if current is None or target.targets != current.targets:
                await self._replace_targets(load_balancer, targets)

        return ObservedState(provider_id=lb_id, last_applied=target)

    async def delete(self, instance: ResourceInstance[LoadBalancerSpec]) -> None:
        await self._call(
            "failed to delete load balancer", self.api.delete, instance.observed.provider_id
        )

    async def _change_network(self, load_balancer: dict[str, Any], network_id: int | None) -> None:
        """Detach from every private network, then attach the desired one."""
        for private_net in load_balancer.get("private_net") or []:
            action = await self._call(
                "failed to detach from network",
                self.api.detach_from_network,
                load_balancer["id"],
                private_net["network"],
            )
            await self._wait("failed to detach from network", action)

        if network_id is None:
            return

        action = await self._call(
            "failed to attach to network", self.api.attach_to_network, load_balancer["id"], network_id
        )
        await self._wait("failed to attach to network", action)

    async def _replace_services(
        self, load_balancer: dict[str, Any], services: list[dict[str, Any]]
    ) -> None:
        for service in load_balancer.get("services") or []:
            action = await self._call(
                "failed to delete service",
                self.api.delete_service,
                load_balancer["id"],
                service["listen_port"],
            )
            await self._wait("failed to delete service", action)

        for service in services:
            action = await self._call(
                "failed to add service", self.api.add_service, load_balancer["id"], service
            )
            await self._wait("failed to add service", action)

    async def _replace_targets(
        self, load_balancer: dict[str, Any], targets: list[dict[str, Any]]
    ) -> None:
        for existing in load_balancer.get("targets") or []:
            action = await self._call(
                "failed to remove target",
                self.api.remove_target,
                load_balancer["id"],
                strip_load_balancer_target(existing),
            )
            await self._wait("failed to remove target", action)

        for target in targets:
            action = await self._call(
                "failed to add target", self.api.add_target, load_balancer["id"], target
            )
            await self._wait("failed to add target", action)
