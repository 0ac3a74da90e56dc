"""Label handling for provider resources.

Every resource this operator creates or updates carries two system labels:
one marking the operator as owner and one recording when the labels were
last written. They are always applied on top of caller labels, so a caller
can never override them.
"""

from __future__ import annotations

import time
from collections.abc import Mapping

PROVIDER_LABEL = "hetzner-operator.io/provider"
GENERATED_AT_LABEL = "hetzner-operator.io/generated-at"
PROVIDER_NAME = "hetzner-operator"


def merge_labels(desired: Mapping[str, str] | None = None, now: float | None = None) -> dict[str, str]:
    """Merge caller labels with the system labels.

    Args:
        desired: Caller-declared labels. Passed through unchanged.
        now: Unix timestamp for the generated-at label (defaults to current time).

    Returns:
        New label map; system keys take precedence.
    """
    labels = dict(desired or {})
    labels[PROVIDER_LABEL] = PROVIDER_NAME
    labels[GENERATED_AT_LABEL] = str(int(time.time() if now is None else now))
    return labels


def to_selector(labels: Mapping[str, str]) -> str:
    """Render a label map as a provider label selector (``k=v,k2=v2``)."""
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))
