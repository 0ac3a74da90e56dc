"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for hcloud_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from hcloud_mock import MockHCloudClient  # noqa: E402

from hetzner_operator.awaiter import ActionAwaiter  # noqa: E402
from hetzner_operator.provider import ProviderConnection  # noqa: E402

# Short enough to keep tests fast, long enough to be measurable
POLL_INTERVAL = 0.01
ACTION_TIMEOUT = 0.5

SSH_PUBLIC_KEY = (
    "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIGb0sWtKAZfVqWjb9uPZUvxfR1hcYjw3Ce0w3bG2QZ7h "
    "ops@example.com"
)


@pytest.fixture
def client() -> MockHCloudClient:
    return MockHCloudClient()


@pytest.fixture
def provider(client: MockHCloudClient) -> ProviderConnection:
    return ProviderConnection(client)


@pytest.fixture
def awaiter(provider: ProviderConnection) -> ActionAwaiter:
    return ActionAwaiter(provider, poll_interval=POLL_INTERVAL, timeout=ACTION_TIMEOUT)
