"""Scheduling of convergence passes.

Each declared instance gets its own worker task. A worker runs one pass at
a time for its instance:

1. Observe the provider resource
2. Delete it if the instance is marked for removal
3. Otherwise create it when absent, or update it when drifted
4. Write the new observed state back to the store
5. Sleep until the interval elapses or the desired state changes

Passes for different instances run concurrently, bounded by a semaphore.
A pass never runs concurrently with another pass for the same instance.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .awaiter import ActionAwaiter
from .config import (
    CIRCUIT_BREAKER_RESET_SECONDS,
    MAX_CONSECUTIVE_FAILURES,
    Config,
    ConfigurationError,
)
from .controllers.base import ConvergenceController
from .controllers.firewall import FirewallController
from .controllers.load_balancer import LoadBalancerController
from .controllers.network import NetworkController
from .controllers.placement_group import PlacementGroupController
from .controllers.server import ServerController
from .controllers.volume import VolumeController
from .errors import ReconcileError
from .models import ResourceInstance, ResourceKind
from .provenance import ProvenanceLogger
from .provider import ProviderConnection
from .store import InstanceKey, StateStore

logger = logging.getLogger(__name__)


class PassAction(str, Enum):
    """What a pass did to the provider resource."""

    NONE = "none"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    FORGET = "forget"  # removal requested, resource already gone


@dataclass
class PassResult:
    """Result of a single convergence pass."""

    kind: ResourceKind
    name: str
    provider_id: int | None = None
    action: PassAction = PassAction.NONE
    drift_detected: bool = False
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if the pass succeeded."""
        return self.error is None

    @property
    def retryable(self) -> bool:
        """Whether a later pass can succeed without a desired-state change.

        Errors outside the taxonomy are unexpected and retried like transient
        provider failures; a missing controller is fatal.
        """
        if isinstance(self.error, ReconcileError):
            return self.error.retryable
        return not isinstance(self.error, ConfigurationError)


class Reconciler:
    """Runs convergence passes for every instance in a state store.

    Controllers are bound to their kind once, at construction; a pass looks
    up the controller by the instance's kind and never inspects types.

    A per-instance circuit breaker pauses an instance for
    CIRCUIT_BREAKER_RESET_SECONDS after MAX_CONSECUTIVE_FAILURES failed
    passes. A desired-state change wakes it early.
    """

    def __init__(
        self,
        controllers: dict[ResourceKind, ConvergenceController[Any]],
        store: StateStore,
        config: Config,
        provenance: ProvenanceLogger | None = None,
    ) -> None:
        self._controllers = dict(controllers)
        self._store = store
        self._config = config
        self._provenance = provenance or ProvenanceLogger(config.enable_audit_logging)
        self._semaphore = asyncio.Semaphore(config.max_concurrent_passes)
        self._shutdown_event = asyncio.Event()

    @property
    def kinds(self) -> frozenset[ResourceKind]:
        return frozenset(self._controllers)

    async def run(self) -> None:
        """Run workers for every instance until shutdown.

        New instances get a worker as soon as they are declared. Workers that
        exited are respawned once per reconcile interval. On shutdown every
        worker is cancelled, which also stops any action wait in progress.
        """
        logger.info(
            "Starting reconciler",
            extra={
                "kinds": sorted(kind.value for kind in self._controllers),
                "interval_seconds": self._config.reconcile_interval_seconds,
                "max_concurrent_passes": self._config.max_concurrent_passes,
            },
        )

        workers: dict[InstanceKey, asyncio.Task[None]] = {}
        try:
            while not self._shutdown_event.is_set():
                self._spawn_workers(workers)
                await self._wait_for_instances()
        finally:
            for task in workers.values():
                task.cancel()
            await asyncio.gather(*workers.values(), return_exceptions=True)

        logger.info("Reconciler shutdown complete")

    def shutdown(self) -> None:
        """Signal the reconciler to stop."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def reconcile_instance(self, instance: ResourceInstance[Any]) -> PassResult:
        """Run one convergence pass and write its outcome to the store.

        Errors are recorded on the result, never raised.
        """
        result = PassResult(
            kind=instance.kind, name=instance.name, provider_id=instance.observed.provider_id
        )

        try:
            controller = self._controllers.get(instance.kind)
            if controller is None:
                raise ConfigurationError(f"No controller registered for kind {instance.kind.value}")

            observation = await controller.observe(instance)

            if instance.deletion_requested:
                if observation.exists:
                    await controller.delete(instance)
                    result.action = PassAction.DELETE
                else:
                    result.action = PassAction.FORGET
                self._store.forget(instance.kind, instance.name)

            elif not observation.exists:
                creation = await controller.create(instance)
                result.action = PassAction.CREATE
                result.provider_id = creation.observed.provider_id
                self._store.write_observed(instance.kind, instance.name, creation.observed)
                if creation.connection_details is not None:
                    self._store.publish_connection_details(
                        instance.kind, instance.name, creation.connection_details
                    )

            elif not observation.up_to_date:
                result.drift_detected = True
                observed = await controller.update(instance)
                result.action = PassAction.UPDATE
                self._store.write_observed(instance.kind, instance.name, observed)

        except ReconcileError as e:
            result.error = e
        except ConfigurationError as e:
            result.error = e
        except Exception as e:
            logger.exception(
                "Unexpected error during convergence pass",
                extra={"kind": instance.kind.value, "resource_name": instance.name},
            )
            result.error = e

        result.end_time = datetime.now(UTC)
        self._record_provenance(result)
        return result

    async def _wait_for_instances(self) -> None:
        """Sleep until an instance is declared or the interval elapses; shutdown wakes it too."""
        waiters = [
            asyncio.create_task(self._shutdown_event.wait()),
            asyncio.create_task(
                self._store.wait_for_declaration(self._config.reconcile_interval_seconds)
            ),
        ]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

    def _spawn_workers(self, workers: dict[InstanceKey, asyncio.Task[None]]) -> None:
        for instance in self._store.list_instances():
            key = (instance.kind, instance.name)
            task = workers.get(key)
            if task is None or task.done():
                workers[key] = asyncio.create_task(
                    self._run_instance(*key), name=f"reconcile-{instance.kind.value}-{instance.name}"
                )
                workers[key].add_done_callback(_log_worker_exit)

    async def _run_instance(self, kind: ResourceKind, name: str) -> None:
        """Worker loop for one instance; exits once the instance is forgotten."""
        consecutive_failures = 0

        while not self._shutdown_event.is_set():
            instance = self._store.get_instance(kind, name)
            if instance is None:
                return

            async with self._semaphore:
                result = await self.reconcile_instance(instance)
            self._log_result(result)

            if result.success and result.action in (PassAction.DELETE, PassAction.FORGET):
                return

            delay: float = self._config.reconcile_interval_seconds
            if result.error is None:
                consecutive_failures = 0
            else:
                consecutive_failures += 1
                if consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
                    logger.error(
                        "Circuit breaker opened after consecutive failures",
                        extra={
                            "kind": kind.value,
                            "resource_name": name,
                            "consecutive_failures": consecutive_failures,
                            "reset_seconds": CIRCUIT_BREAKER_RESET_SECONDS,
                        },
                    )
                    delay = CIRCUIT_BREAKER_RESET_SECONDS
                    consecutive_failures = 0

            await self._store.wait_for_change(kind, name, delay)

    def _record_provenance(self, result: PassResult) -> None:
        provenance = self._provenance.create_provenance(
            result.kind.value, result.name, result.provider_id
        )
        provenance.action = result.action.value
        provenance.drift_detected = result.drift_detected
        provenance.duration_seconds = result.duration_seconds
        if result.error is not None:
            provenance.error = str(result.error)
            provenance.error_type = type(result.error).__name__
            provenance.retryable = result.retryable
        self._provenance.log_provenance(provenance)

    def _log_result(self, result: PassResult) -> None:
        """Log pass result with structured data."""
        extra: dict[str, Any] = {
            "kind": result.kind.value,
            "resource_name": result.name,
            "provider_id": result.provider_id,
            "action": result.action.value,
            "drift_detected": result.drift_detected,
            "duration_seconds": result.duration_seconds,
        }

        if result.error is not None:
            extra["error"] = str(result.error)
            extra["error_type"] = type(result.error).__name__
            extra["retryable"] = result.retryable
            if isinstance(result.error, ReconcileError) and result.error.operation:
                extra["operation"] = result.error.operation
            logger.error("Convergence pass failed", extra=extra)
        elif result.action is PassAction.NONE:
            logger.debug("Convergence pass: up to date", extra=extra)
        else:
            logger.info("Convergence pass result", extra=extra)


def _log_worker_exit(task: asyncio.Task[None]) -> None:
    """Retrieve and log the exception of a worker that died outside a pass."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(
            "Worker exited with an unhandled error",
            exc_info=error,
            extra={"task": task.get_name()},
        )


def default_controllers(
    provider: ProviderConnection, config: Config
) -> list[ConvergenceController[Any]]:
    """One controller per supported kind, sharing a single action awaiter."""
    awaiter = ActionAwaiter(
        provider,
        poll_interval=config.action_poll_interval_seconds,
        timeout=config.action_timeout_seconds,
    )
    return [
        NetworkController(provider, awaiter),
        ServerController(provider, awaiter),
        FirewallController(provider, awaiter),
        LoadBalancerController(provider, awaiter),
        VolumeController(provider, awaiter),
        PlacementGroupController(provider, awaiter),
    ]


def build_reconciler(
    controllers: Iterable[ConvergenceController[Any]],
    store: StateStore,
    config: Config,
    provenance: ProvenanceLogger | None = None,
) -> Reconciler:
    """Bind each controller to its kind and return a ready-to-run reconciler.

    Raises:
        ConfigurationError: If two controllers claim the same kind.
    """
    registry: dict[ResourceKind, ConvergenceController[Any]] = {}
    for controller in controllers:
        if controller.kind in registry:
            raise ConfigurationError(
                f"Duplicate controller for kind {controller.kind.value}: "
                f"{type(registry[controller.kind]).__name__} and {type(controller).__name__}"
            )
        registry[controller.kind] = controller
    return Reconciler(registry, store, config, provenance)
