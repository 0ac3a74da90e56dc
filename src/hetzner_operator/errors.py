"""Error taxonomy for convergence passes.

Every error raised out of a controller carries the chain of operations that
produced it, outermost first, so callers can tell "failed to attach volume"
from "failed to resize volume" without inspecting tracebacks:

    failed to update volume: failed to resize volume: action timed out after 60s

Errors are classified by whether a later pass can plausibly succeed without a
change to the desired state (``retryable``).
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from .hcloud_client import APIError

NOT_FOUND_CODE = "not_found"


class ReconcileError(Exception):
    """Base class for all errors surfaced by a convergence pass."""

    retryable: bool = True

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail
        self.operations: tuple[str, ...] = ()

    @property
    def operation(self) -> str | None:
        """Outermost operation name, if the error was wrapped."""
        return self.operations[0] if self.operations else None

    def add_operation(self, operation: str) -> None:
        """Prefix an operation name to the chain."""
        self.operations = (operation, *self.operations)

    def __str__(self) -> str:
        return ": ".join((*self.operations, self.detail))


class UnresolvedReferenceError(ReconcileError):
    """A named dependency (image, network, firewall, ...) does not exist.

    Fatal for the pass. Only a corrected desired state can fix it.
    """

    retryable = False

    def __init__(self, reference_kind: str, reference: object) -> None:
        super().__init__(f"unknown {reference_kind}: {reference}")
        self.reference_kind = reference_kind
        self.reference = reference


class ConversionError(ReconcileError):
    """Malformed literal input such as a bad CIDR or SSH key."""

    retryable = False


class ProviderAPIError(ReconcileError):
    """The provider was unreachable or answered with an error status."""

    def __init__(self, code: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{message} ({code})")
        self.code = code
        self.message = message
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.code == NOT_FOUND_CODE


class ActionFailedError(ReconcileError):
    """The provider accepted a request but its asynchronous action failed."""

    def __init__(self, action_id: int, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.action_id = action_id
        self.code = code
        self.message = message


class ActionTimeoutError(ReconcileError):
    """Waiting for an asynchronous action exceeded its bound."""

    def __init__(self, action_id: int, timeout_seconds: float) -> None:
        super().__init__(f"action {action_id} timed out after {timeout_seconds:g}s")
        self.action_id = action_id
        self.timeout_seconds = timeout_seconds


@contextmanager
def wrap_errors(operation: str) -> Iterator[None]:
    """Prefix ``operation`` to any error escaping the block.

    Raw API errors from the HTTP client are converted to ProviderAPIError;
    errors already in the taxonomy keep their type and gain the operation.
    """
    try:
        yield
    except ReconcileError as e:
        e.add_operation(operation)
        raise
    except APIError as e:
        error = ProviderAPIError(e.code, e.message, e.status_code)
        error.add_operation(operation)
        raise error from e
