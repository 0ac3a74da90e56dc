"""Connection to the provider shared by every controller.

Bridges the blocking HTTP client into asyncio and hosts the lookups more
than one controller needs (locations, datacenters, SSH keys).
"""

from __future__ import annotations

import asyncio
import functools
import logging
import uuid
from collections.abc import Callable
from typing import Any, TypeVar

from .config import Config, ConfigurationError
from .converters import ssh_key_fingerprint
from .errors import ProviderAPIError, UnresolvedReferenceError, wrap_errors
from .hcloud_client import DEFAULT_ENDPOINT, HCloudClient
from .labels import merge_labels

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderConnection:
    """An authenticated client plus the executor bridge.

    The underlying client is shared by all concurrent passes; each call is
    a single independent HTTP request.
    """

    def __init__(self, client: Any) -> None:
        self.client = client

    async def call(self, operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking client call in the default executor.

        Errors are wrapped with ``operation``.
        """
        loop = asyncio.get_running_loop()
        with wrap_errors(operation):
            return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    async def get_or_none(
        self, operation: str, fn: Callable[..., T], *args: Any
    ) -> T | None:
        """Like ``call`` but maps a provider "not found" to ``None``."""
        try:
            return await self.call(operation, fn, *args)
        except ProviderAPIError as e:
            if e.is_not_found:
                return None
            raise

    async def get_datacenter_or_location(
        self, datacenter: str | None, location: str | None
    ) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
        """Resolve the datacenter when given, otherwise the location.

        Exactly one of the returned pair is set.
        """
        if datacenter is not None:
            found = await self.call(
                "failed to get datacenter", self.client.datacenters.get_by_name, datacenter
            )
            if found is None:
                raise UnresolvedReferenceError("datacenter", datacenter)
            return found, None

        if location is not None:
            return None, await self.get_location(location)

        raise UnresolvedReferenceError("datacenter or location", "neither is set")

    async def get_location(self, name: str) -> dict[str, Any]:
        found = await self.call("failed to get location", self.client.locations.get_by_name, name)
        if found is None:
            raise UnresolvedReferenceError("location", name)
        return found

    async def upsert_ssh_keys(self, public_keys: list[str]) -> list[dict[str, Any]]:
        """Find each key by fingerprint, creating it when the provider lacks it.

        All keys are fingerprinted before any is created, so a malformed key
        never leaves earlier keys half-registered.
        """
        fingerprints = [ssh_key_fingerprint(key) for key in public_keys]

        keys: list[dict[str, Any]] = []
        for public_key, fingerprint in zip(public_keys, fingerprints, strict=True):
            existing = await self.call(
                "failed to get ssh key", self.client.ssh_keys.get_by_fingerprint, fingerprint
            )
            if existing is not None:
                keys.append(existing)
                continue

            response = await self.call(
                "failed to create ssh key",
                self.client.ssh_keys.create,
                {"name": str(uuid.uuid4()), "public_key": public_key, "labels": merge_labels()},
            )
            logger.info(
                "Registered SSH key",
                extra={"fingerprint": fingerprint, "ssh_key_id": response["ssh_key"]["id"]},
            )
            keys.append(response["ssh_key"])
        return keys


def new_client(token: str, config: Config | None = None) -> ProviderConnection:
    """Build a provider connection from an opaque API token.

    Raises:
        ConfigurationError: If the token is empty.
    """
    if not token or not token.strip():
        raise ConfigurationError("Hetzner Cloud API token is empty")

    endpoint = config.api_endpoint if config else DEFAULT_ENDPOINT
    timeout = config.request_timeout_seconds if config else 30.0
    return ProviderConnection(HCloudClient(token.strip(), endpoint=endpoint, timeout=timeout))
