"""Waiting for asynchronous provider actions.

Many provider calls return an action instead of completing synchronously.
The awaiter polls that action until it succeeds, fails or runs out of time.
It knows nothing about resource kinds.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from .config import DEFAULT_ACTION_POLL_INTERVAL_SECONDS, DEFAULT_ACTION_TIMEOUT_SECONDS
from .errors import ActionFailedError, ActionTimeoutError
from .provider import ProviderConnection

logger = logging.getLogger(__name__)

ACTION_SUCCESS = "success"
ACTION_ERROR = "error"


class ActionAwaiter:
    """Polls actions once per interval, bounded by a wall-clock timeout.

    The deadline is fixed when ``wait`` is called; slow polls do not extend
    it. Cancelling the awaiting task stops polling immediately and never
    touches the provider-side operation.
    """

    def __init__(
        self,
        provider: ProviderConnection,
        poll_interval: float = DEFAULT_ACTION_POLL_INTERVAL_SECONDS,
        timeout: float = DEFAULT_ACTION_TIMEOUT_SECONDS,
    ) -> None:
        self._provider = provider
        self._poll_interval = poll_interval
        self._timeout = timeout

    async def wait(self, action: dict[str, Any] | None, timeout: float | None = None) -> None:
        """Wait for ``action`` to finish.

        Args:
            action: Action returned by a provider call. ``None`` means the call
                completed synchronously and there is nothing to wait for.
            timeout: Override for the default timeout, in seconds.

        Raises:
            ActionFailedError: The action finished with status ``error``.
            ActionTimeoutError: The action was still running at the deadline.
            ProviderAPIError: A status poll itself failed.
        """
        if action is None:
            return

        action_id = action["id"]
        limit = self._timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + limit

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ActionTimeoutError(action_id, limit)

            await asyncio.sleep(min(self._poll_interval, remaining))
            if loop.time() >= deadline:
                raise ActionTimeoutError(action_id, limit)

            current = await self._provider.call(
                "failed to get action status", self._provider.client.actions.get_by_id, action_id
            )
            status = current.get("status")
            logger.debug(
                "Polled action",
                extra={"action_id": action_id, "command": current.get("command"), "status": status},
            )

            if status == ACTION_SUCCESS:
                return
            if status == ACTION_ERROR:
                error = current.get("error") or {}
                raise ActionFailedError(
                    action_id, error.get("code", "unknown"), error.get("message", "")
                )

    async def wait_all(self, actions: Iterable[dict[str, Any] | None]) -> None:
        """Wait for each action in turn."""
        for action in actions:
            await self.wait(action)
