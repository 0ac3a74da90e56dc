"""Placement group convergence. The type is fixed at creation."""

from __future__ import annotations

from typing import Any

from ..drift import placement_group_is_up_to_date
from ..labels import merge_labels
from ..models import ObservedState, PlacementGroupSpec, ResourceInstance, ResourceKind
from .base import BaseController, Creation


class PlacementGroupController(BaseController[PlacementGroupSpec]):
    kind = ResourceKind.PLACEMENT_GROUP

    @property
    def api(self) -> Any:
        return self._provider.client.placement_groups

    def is_up_to_date(
        self, desired: PlacementGroupSpec, applied: PlacementGroupSpec | None
    ) -> bool:
        return placement_group_is_up_to_date(desired, applied)

    async def create(
        self, instance: ResourceInstance[PlacementGroupSpec]
    ) -> Creation[PlacementGroupSpec]:
        spec = instance.spec
        response = await self._call(
            "failed to create placement group",
            self.api.create,
            {"name": instance.name, "type": spec.type, "labels": merge_labels(spec.labels)},
        )
        return Creation(
            ObservedState(provider_id=response["placement_group"]["id"], last_applied=spec)
        )

    async def update(
        self, instance: ResourceInstance[PlacementGroupSpec]
    ) -> ObservedState[PlacementGroupSpec]:
        target = instance.spec
        group = await self._fetch(instance)
        await self._call(
            "failed to update placement group",
            self.api.update,
            group["id"],
            {"labels": merge_labels(target.labels)},
        )

        applied = target
        if instance.observed.last_applied is not None:
            applied = instance.observed.last_applied.model_copy(update={"labels": target.labels})
        return ObservedState(provider_id=group["id"], last_applied=applied)

    async def delete(self, instance: ResourceInstance[PlacementGroupSpec]) -> None:
        await self._call(
            "failed to delete placement group", self.api.delete, instance.observed.provider_id
        )
