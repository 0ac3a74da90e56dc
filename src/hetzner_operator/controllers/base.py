"""Convergence controller capability shared by every resource kind."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, Protocol

from ..awaiter import ActionAwaiter
from ..errors import NOT_FOUND_CODE, ProviderAPIError, UnresolvedReferenceError, wrap_errors
from ..models import ConnectionDetails, ObservedState, ResourceInstance, ResourceKind, SpecT
from ..provider import ProviderConnection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Observation:
    """Result of observing one instance."""

    exists: bool
    up_to_date: bool = False


@dataclass(frozen=True)
class Creation(Generic[SpecT]):
    """Result of a successful create."""

    observed: ObservedState[SpecT]
    connection_details: ConnectionDetails | None = None


class ConvergenceController(Protocol[SpecT]):
    """Observe, create, update and delete one resource kind."""

    kind: ClassVar[ResourceKind]

    async def observe(self, instance: ResourceInstance[SpecT]) -> Observation: ...

    async def create(self, instance: ResourceInstance[SpecT]) -> Creation[SpecT]: ...

    async def update(self, instance: ResourceInstance[SpecT]) -> ObservedState[SpecT]: ...

    async def delete(self, instance: ResourceInstance[SpecT]) -> None: ...


class BaseController(ABC, Generic[SpecT]):
    """Shared plumbing: provider calls, action waits, lookup by provider ID.

    Subclasses name their API collection and drift predicate and implement
    create, update and delete. Observe is identical for every kind.
    """

    kind: ClassVar[ResourceKind]

    def __init__(self, provider: ProviderConnection, awaiter: ActionAwaiter) -> None:
        self._provider = provider
        self._awaiter = awaiter

    @property
    @abstractmethod
    def api(self) -> Any:
        """The client resource group for this kind."""

    @abstractmethod
    def is_up_to_date(self, desired: SpecT, applied: SpecT | None) -> bool: ...

    @abstractmethod
    async def create(self, instance: ResourceInstance[SpecT]) -> Creation[SpecT]: ...

    @abstractmethod
    async def update(self, instance: ResourceInstance[SpecT]) -> ObservedState[SpecT]: ...

    @abstractmethod
    async def delete(self, instance: ResourceInstance[SpecT]) -> None: ...

    async def observe(self, instance: ResourceInstance[SpecT]) -> Observation:
        """Look the resource up by provider ID and run the drift predicate.

        A missing provider ID or a "not found" answer means absent; any other
        provider error propagates.
        """
        provider_id = instance.observed.provider_id
        if provider_id is None:
            return Observation(exists=False)

        found = await self._provider.get_or_none(
            f"failed to get {self.kind.label}", self.api.get_by_id, provider_id
        )
        if found is None:
            logger.info(
                "Resource no longer exists at provider",
                extra={"kind": self.kind.value, "resource_name": instance.name, "provider_id": provider_id},
            )
            return Observation(exists=False)

        return Observation(
            exists=True,
            up_to_date=self.is_up_to_date(instance.spec, instance.observed.last_applied),
        )

    async def _call(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        return await self._provider.call(operation, fn, *args)

    async def _wait(self, operation: str, action: dict[str, Any] | None) -> None:
        with wrap_errors(operation):
            await self._awaiter.wait(action)

    async def _wait_all(self, operation: str, actions: list[dict[str, Any]]) -> None:
        with wrap_errors(operation):
            await self._awaiter.wait_all(actions)

    async def _fetch(self, instance: ResourceInstance[SpecT]) -> dict[str, Any]:
        """Current provider resource; a vanished resource is a not-found error."""
        provider_id = instance.observed.provider_id
        found = None
        if provider_id is not None:
            found = await self._provider.get_or_none(
                f"failed to get {self.kind.label}", self.api.get_by_id, provider_id
            )
        if found is None:
            raise ProviderAPIError(NOT_FOUND_CODE, f"{self.kind.label} {provider_id} not found")
        return found

    async def _resolve(self, reference_kind: str, fn: Callable[..., Any], reference: Any) -> Any:
        """Look up a referenced resource; absence is an unresolved reference."""
        operation = f"failed to get {reference_kind}"
        found = await self._provider.get_or_none(operation, fn, reference)
        if found is None:
            error = UnresolvedReferenceError(reference_kind, reference)
            error.add_operation(operation)
            raise error
        return found
