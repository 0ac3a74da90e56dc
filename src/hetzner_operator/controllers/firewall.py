"""Firewall convergence.

Bindings are never diffed. Every update removes all bindings currently
applied at the provider, reapplies the complete desired set and then
replaces the rules, waiting for each step before the next one starts.
"""

from __future__ import annotations

import logging
from typing import Any

from ..converters import strip_firewall_resource, to_firewall_resource, to_firewall_rules
from ..drift import firewall_is_up_to_date
from ..errors import wrap_errors
from ..labels import merge_labels
from ..models import FirewallSpec, ObservedState, ResourceInstance, ResourceKind
from .base import BaseController, Creation

logger = logging.getLogger(__name__)


class FirewallController(BaseController[FirewallSpec]):
    kind = ResourceKind.FIREWALL

    @property
    def api(self) -> Any:
        return self._provider.client.firewalls

    def is_up_to_date(self, desired: FirewallSpec, applied: FirewallSpec | None) -> bool:
        return firewall_is_up_to_date(desired, applied)

    async def create(self, instance: ResourceInstance[FirewallSpec]) -> Creation[FirewallSpec]:
        spec = instance.spec
        with wrap_errors("failed to convert firewall rules"):
            rules = to_firewall_rules(spec.rules)
        apply_to = [to_firewall_resource(binding) for binding in spec.apply_to]

        response = await self._call(
            "failed to create firewall",
            self.api.create,
            {
                "name": instance.name,
                "labels": merge_labels(spec.labels),
                "rules": rules,
                "apply_to": apply_to,
            },
        )

        firewall_id = response["firewall"]["id"]
        logger.info(
            "Created firewall",
            extra={
                "kind": self.kind.value,
                "resource_name": instance.name,
                "provider_id": firewall_id,
                "rule_count": len(rules),
            },
        )
        return Creation(ObservedState(provider_id=firewall_id, last_applied=spec))

    async def update(self, instance: ResourceInstance[FirewallSpec]) -> ObservedState[FirewallSpec]:
        target = instance.spec

        with wrap_errors("failed to convert firewall rules"):
            rules = to_firewall_rules(target.rules)

        with wrap_errors("failed to update firewall"):
            firewall = await self._fetch(instance)

            await self._call(
                "failed to update firewall labels",
                self.api.update,
                firewall["id"],
                {"labels": merge_labels(target.labels)},
            )

            await self._remove_resources(firewall)

            desired = [to_firewall_resource(binding) for binding in target.apply_to]
            if desired:
                actions = await self._call(
                    "failed to apply resources", self.api.apply_to_resources, firewall["id"], desired
                )
                await self._wait_all("failed to apply resources", actions)

            actions = await self._call("failed to set rules", self.api.set_rules, firewall["id"], rules)
            await self._wait_all("failed to set rules", actions)

        return ObservedState(provider_id=firewall["id"], last_applied=target)

    async def delete(self, instance: ResourceInstance[FirewallSpec]) -> None:
        """Remove every binding, then delete the firewall."""
        with wrap_errors("failed to delete firewall"):
            firewall = await self._fetch(instance)
            await self._remove_resources(firewall)
            await self._call("failed to delete firewall", self.api.delete, firewall["id"])

    async def _remove_resources(self, firewall: dict[str, Any]) -> None:
        applied = [strip_firewall_resource(resource) for resource in firewall.get("applied_to") or []]
        if not applied:
            return
        actions = await self._call(
            "failed to remove resources", self.api.remove_from_resources, firewall["id"], applied
        )
        await self._wait_all("failed to remove resources", actions)
