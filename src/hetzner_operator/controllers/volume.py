"""Volume convergence."""

from __future__ import annotations

import logging
from typing import Any

from ..drift import volume_is_up_to_date
from ..errors import wrap_errors
from ..labels import merge_labels
from ..models import ObservedState, ResourceInstance, ResourceKind, VolumeSpec
from .base import BaseController, Creation

logger = logging.getLogger(__name__)


class VolumeController(BaseController[VolumeSpec]):
    """Volumes only grow: a smaller desired size is reported as drift but never applied."""

    kind = ResourceKind.VOLUME

    @property
    def api(self) -> Any:
        return self._provider.client.volumes

    def is_up_to_date(self, desired: VolumeSpec, applied: VolumeSpec | None) -> bool:
        return volume_is_up_to_date(desired, applied)

    async def create(self, instance: ResourceInstance[VolumeSpec]) -> Creation[VolumeSpec]:
        spec = instance.spec
        client = self._provider.client

        location = None
        if spec.location is not None:
            with wrap_errors("failed to get location"):
                location = await self._provider.get_location(spec.location)

        server = None
        if spec.server_id is not None:
            server = await self._resolve("server", client.servers.get_by_id, spec.server_id)

        payload: dict[str, Any] = {
            "name": instance.name,
            "size": spec.size,
            "automount": spec.automount,
            "format": spec.format,
            "labels": merge_labels(spec.labels),
        }
        # the provider derives the location from the server when one is given
        if server is not None:
            payload["server"] = server["id"]
        elif location is not None:
            payload["location"] = location["name"]

        response = await self._call("failed to create volume", self.api.create, payload)

        volume_id = response["volume"]["id"]
        logger.info(
            "Created volume",
            extra={"kind": self.kind.value, "resource_name": instance.name, "provider_id": volume_id},
        )
        return Creation(ObservedState(provider_id=volume_id, last_applied=spec))

    async def update(self, instance: ResourceInstance[VolumeSpec]) -> ObservedState[VolumeSpec]:
        target = instance.spec
        current = instance.observed.last_applied

        with wrap_errors("failed to update volume"):
            volume = await self._fetch(instance)

            await self._call(
                "failed to update volume labels",
                self.api.update,
                volume["id"],
                {"labels": merge_labels(target.labels)},
            )

            if current is None or current.server_id != target.server_id:
                await self._detach(volume)
                if target.server_id is not None:
                    action = await self._call(
                        "failed to attach volume",
                        self.api.attach,
                        volume["id"],
                        target.server_id,
                        target.automount,
                    )
                    await self._wait("failed to attach volume", action)

            applied_size = volume["size"] if current is None else current.size
            if applied_size < target.size:
                action = await self._call(
                    "failed to resize volume", self.api.resize, volume["id"], target.size
                )
                await self._wait("failed to resize volume", action)
            elif applied_size > target.size:
                logger.warning(
                    "Ignoring requested volume shrink",
                    extra={
                        "kind": self.kind.value,
                        "resource_name": instance.name,
                        "provider_id": volume["id"],
                        "current_size": applied_size,
                        "desired_size": target.size,
                    },
                )

        applied = target
        if current is not None:
            applied = current.model_copy(
                update={"labels": target.labels, "server_id": target.server_id, "size": target.size}
            )
        return ObservedState(provider_id=volume["id"], last_applied=applied)

    async def delete(self, instance: ResourceInstance[VolumeSpec]) -> None:
        """Detach from the server the volume is attached to, then delete it."""
        with wrap_errors("failed to delete volume"):
            volume = await self._fetch(instance)
            with wrap_errors("failed to detach volume before delete"):
                await self._detach(volume)
            await self._call("failed to delete volume", self.api.delete, volume["id"])

    async def _detach(self, volume: dict[str, Any]) -> None:
        if volume.get("server") is None:
            return
        action = await self._call("failed to detach volume", self.api.detach, volume["id"])
        await self._wait("failed to detach volume", action)
