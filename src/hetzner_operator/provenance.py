"""Audit records for convergence passes.

Every pass over an instance emits exactly one structured record answering:
- "What did the operator do to this resource, and when?"
- "Which operator version was running?"
- "Why did the pass fail, and will it be retried?"
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Version is set at build time or falls back to dev
OPERATOR_VERSION = os.environ.get("OPERATOR_VERSION", "dev")


@dataclass
class PassProvenance:
    """Provenance record for one convergence pass."""

    # Timestamp
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Identity
    kind: str = ""
    name: str = ""
    provider_id: int | None = None
    operator_version: str = OPERATOR_VERSION
    operator_instance_id: str = ""

    # Outcome
    action: str = "none"  # none, create, update, delete, forget
    drift_detected: bool = False

    # Timing
    duration_seconds: float = 0.0

    # Error tracking
    error: str | None = None
    error_type: str | None = None
    retryable: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


class ProvenanceLogger:
    """Writes provenance records to the structured log."""

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled
        self._instance_id = os.environ.get("OPERATOR_INSTANCE_ID", "")

    def create_provenance(self, kind: str, name: str, provider_id: int | None) -> PassProvenance:
        return PassProvenance(
            kind=kind,
            name=name,
            provider_id=provider_id,
            operator_instance_id=self._instance_id,
        )

    def log_provenance(self, provenance: PassProvenance) -> None:
        """Log a completed provenance record.

        Failed passes log at ERROR when a retry cannot help and at WARNING
        otherwise.
        """
        if not self._enabled:
            return

        log_level = logging.INFO
        if provenance.error:
            log_level = logging.WARNING if provenance.retryable else logging.ERROR

        logger.log(
            log_level,
            "Convergence provenance",
            extra={
                "provenance": provenance.to_dict(),
                # Flatten key fields for easier querying
                "kind": provenance.kind,
                "resource_name": provenance.name,
                "provider_id": provenance.provider_id,
                "action": provenance.action,
                "drift_detected": provenance.drift_detected,
                "operator_version": provenance.operator_version,
                "duration_seconds": provenance.duration_seconds,
            },
        )
