"""Hetzner Cloud API mock for controller and scheduler tests.

Key Features:
- In-memory state for servers, networks, firewalls, load balancers,
  volumes, placement groups and SSH keys
- Seeded catalog of images, server types, locations and datacenters
- Actions that stay running for a configurable number of polls
- Error injection per call and scripted action failures
- Ordered call log for asserting operation sequences

Usage:
    from hcloud_mock import MockHCloudClient

    client = MockHCloudClient()
    provider = ProviderConnection(client)
    controller = VolumeController(provider, ActionAwaiter(provider, poll_interval=0.01))
    ...
    assert client.mutations()[-1].name == "volumes.resize"
"""

from .actions import MockAction
from .client import Call, MockHCloudClient, fingerprint, not_found

__all__ = [
    "Call",
    "MockAction",
    "MockHCloudClient",
    "fingerprint",
    "not_found",
]
