"""Desired and observed state storage.

The operator does not own its state store; callers plug in whatever holds
their declarations (a Kubernetes API, a database, files) by implementing
``StateStore``. ``InMemoryStateStore`` backs tests and simple embeddings.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import replace
from typing import Any, Protocol

from .models import SPEC_TYPES, ConnectionDetails, ObservedState, ResourceInstance, ResourceKind

logger = logging.getLogger(__name__)

InstanceKey = tuple[ResourceKind, str]


class StateStore(Protocol):
    """What the scheduler needs from a state store."""

    def list_instances(self) -> list[ResourceInstance[Any]]: ...

    def get_instance(self, kind: ResourceKind, name: str) -> ResourceInstance[Any] | None: ...

    def write_observed(self, kind: ResourceKind, name: str, observed: ObservedState[Any]) -> None: ...

    def forget(self, kind: ResourceKind, name: str) -> None:
        """Drop an instance whose provider resource has been deleted."""
        ...

    def publish_connection_details(
        self, kind: ResourceKind, name: str, details: ConnectionDetails
    ) -> None: ...

    async def wait_for_change(self, kind: ResourceKind, name: str, timeout: float) -> bool:
        """Wait until the instance's desired state changes or ``timeout`` elapses.

        Returns True if a change was signalled.
        """
        ...

    async def wait_for_declaration(self, timeout: float) -> bool:
        """Wait until an instance is declared or ``timeout`` elapses.

        Returns True if a declaration was signalled.
        """
        ...


class InMemoryStateStore:
    """Dict-backed store with per-instance change signals."""

    def __init__(self) -> None:
        self._instances: dict[InstanceKey, ResourceInstance[Any]] = {}
        self._changed: dict[InstanceKey, asyncio.Event] = {}
        self._declared = asyncio.Event()
        self.connection_details: dict[InstanceKey, ConnectionDetails] = {}

    def declare(
        self, kind: ResourceKind, name: str, spec: Any | Mapping[str, Any]
    ) -> ResourceInstance[Any]:
        """Create or replace the desired state of an instance.

        ``spec`` may be a spec model or a camelCase document for the kind.
        """
        if isinstance(spec, Mapping):
            spec = SPEC_TYPES[kind].model_validate(spec)

        key = (kind, name)
        existing = self._instances.get(key)
        if existing is None:
            instance = ResourceInstance(kind=kind, name=name, spec=spec)
        else:
            instance = replace(existing, spec=spec, deletion_requested=False)
        self._instances[key] = instance
        self._signal(key)
        self._declared.set()
        return instance

    def retract(self, kind: ResourceKind, name: str) -> None:
        """Mark an instance for deletion."""
        key = (kind, name)
        instance = self._instances.get(key)
        if instance is None:
            return
        self._instances[key] = replace(instance, deletion_requested=True)
        self._signal(key)

    def list_instances(self) -> list[ResourceInstance[Any]]:
        return list(self._instances.values())

    def get_instance(self, kind: ResourceKind, name: str) -> ResourceInstance[Any] | None:
        return self._instances.get((kind, name))

    def write_observed(self, kind: ResourceKind, name: str, observed: ObservedState[Any]) -> None:
        key = (kind, name)
        instance = self._instances.get(key)
        if instance is None:
            logger.warning(
                "Dropping observed state for unknown instance",
                extra={"kind": kind.value, "resource_name": name},
            )
            return
        self._instances[key] = replace(instance, observed=observed)

    def forget(self, kind: ResourceKind, name: str) -> None:
        key = (kind, name)
        self._instances.pop(key, None)
        self.connection_details.pop(key, None)
        self._signal(key)
        self._changed.pop(key, None)

    def publish_connection_details(
        self, kind: ResourceKind, name: str, details: ConnectionDetails
    ) -> None:
        self.connection_details[(kind, name)] = details

    async def wait_for_change(self, kind: ResourceKind, name: str, timeout: float) -> bool:
        event = self._changed.setdefault((kind, name), asyncio.Event())
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        event.clear()
        return True

    async def wait_for_declaration(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._declared.wait(), timeout=timeout)
        except TimeoutError:
            return False
        self._declared.clear()
        return True

    def _signal(self, key: InstanceKey) -> None:
        self._changed.setdefault(key, asyncio.Event()).set()
