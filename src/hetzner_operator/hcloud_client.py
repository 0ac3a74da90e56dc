"""Thin synchronous client for the Hetzner Cloud REST API.

Payloads and responses are plain dicts in the shape the API documents. Each
API collection (servers, networks, ...) is exposed as a resource group on
``HCloudClient`` with the calls the controllers need. Calls that start an
asynchronous provider operation return the action dict (``{"id", "status",
"error"}``) so the caller can hand it to the action awaiter.

Every call blocks; async code goes through ``ProviderConnection.call``,
which runs it in the default executor.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

import requests

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.hetzner.cloud/v1"
USER_AGENT = "hetzner-operator"
INVALID_RESPONSE_CODE = "invalid_response"


class APIError(Exception):
    """Error envelope returned by the API, or a transport failure."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(f"{message} ({code})")
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details


class HCloudClient:
    """Authenticated Hetzner Cloud API client.

    Args:
        token: API token sent as a bearer credential.
        endpoint: API base URL.
        timeout: Timeout in seconds for each HTTP request.
        session: Optional pre-configured requests session.
    """

    def __init__(
        self,
        token: str,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "User-Agent": USER_AGENT,
                "Accept": "application/json",
            }
        )

        self.actions = ActionsAPI(self)
        self.servers = ServersAPI(self)
        self.server_types = ServerTypesAPI(self)
        self.images = ImagesAPI(self)
        self.locations = LocationsAPI(self)
        self.datacenters = DatacentersAPI(self)
        self.ssh_keys = SSHKeysAPI(self)
        self.networks = NetworksAPI(self)
        self.firewalls = FirewallsAPI(self)
        self.load_balancers = LoadBalancersAPI(self)
        self.volumes = VolumesAPI(self)
        self.placement_groups = PlacementGroupsAPI(self)

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Perform one API request and return the decoded JSON body.

        Raises:
            APIError: On transport failure, any non-2xx response, or a 2xx
                body that is not a JSON object.
        """
        url = f"{self._endpoint}/{path.lstrip('/')}"
        logger.debug("API request", extra={"method": method, "path": path})

        try:
            response = self._session.request(
                method, url, params=params, json=payload, timeout=self._timeout
            )
        except requests.RequestException as e:
            raise APIError("request_failed", str(e)) from e

        body: dict[str, Any] = {}
        decode_error: ValueError | None = None
        if response.status_code != 204 and response.content:
            try:
                body = response.json()
            except ValueError as e:
                decode_error = e

        if response.status_code >= 400:
            error = (body.get("error") if isinstance(body, dict) else None) or {}
            raise APIError(
                error.get("code", f"http_{response.status_code}"),
                error.get("message", response.reason or "request failed"),
                status_code=response.status_code,
                details=error.get("details"),
            )
        if decode_error is not None or not isinstance(body, dict):
            raise APIError(
                INVALID_RESPONSE_CODE,
                f"response body is not a JSON object: {decode_error or type(body).__name__}",
                status_code=response.status_code,
            ) from decode_error
        return body


class ResourceAPI:
    """Calls shared by every API collection."""

    path: ClassVar[str]
    key: ClassVar[str]

    def __init__(self, client: HCloudClient) -> None:
        self._client = client

    def get_by_id(self, resource_id: int) -> dict[str, Any]:
        return self._unwrap(self._client.request("GET", f"/{self.path}/{resource_id}"))

    def get_by_name(self, name: str) -> dict[str, Any] | None:
        return self._first({"name": name})

    def _unwrap(self, body: dict[str, Any]) -> dict[str, Any]:
        try:
            return body[self.key]
        except KeyError:
            raise APIError(INVALID_RESPONSE_CODE, f"response has no {self.key!r} field") from None

    def _first(self, params: dict[str, Any]) -> dict[str, Any] | None:
        items = self._client.request("GET", f"/{self.path}", params=params).get(self.path, [])
        return items[0] if items else None

    def _action(
        self, resource_id: int, command: str, payload: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        response = self._client.request(
            "POST", f"/{self.path}/{resource_id}/actions/{command}", payload=payload or {}
        )
        return response.get("action")

    def _actions(
        self, resource_id: int, command: str, payload: dict[str, Any]
    ) -> list[dict[str, Any]]:
        response = self._client.request(
            "POST", f"/{self.path}/{resource_id}/actions/{command}", payload=payload
        )
        return response.get("actions", [])


class ManagedResourceAPI(ResourceAPI):
    """Collections the operator creates, relabels and deletes."""

    def create(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Create a resource; returns the full response (resource, action, ...)."""
        return self._client.request("POST", f"/{self.path}", payload=payload)

    def update(self, resource_id: int, payload: dict[str, Any]) -> dict[str, Any]:
        return self._unwrap(
            self._client.request("PUT", f"/{self.path}/{resource_id}", payload=payload)
        )

    def delete(self, resource_id: int) -> dict[str, Any] | None:
        """Delete a resource; returns the delete action when the API reports one."""
        return self._client.request("DELETE", f"/{self.path}/{resource_id}").get("action")


class ActionsAPI(ResourceAPI):
    path = "actions"
    key = "action"


class ServerTypesAPI(ResourceAPI):
    path = "server_types"
    key = "server_type"


class LocationsAPI(ResourceAPI):
    path = "locations"
    key = "location"


class DatacentersAPI(ResourceAPI):
    path = "datacenters"
    key = "datacenter"


class ImagesAPI(ResourceAPI):
    path = "images"
    key = "image"

    def get_by_name_and_architecture(self, name: str, architecture: str) -> dict[str, Any] | None:
        return self._first({"name": name, "architecture": architecture})


class SSHKeysAPI(ManagedResourceAPI):
    path = "ssh_keys"
    key = "ssh_key"

    def get_by_fingerprint(self, fingerprint: str) -> dict[str, Any] | None:
        return self._first({"fingerprint": fingerprint})


class ServersAPI(ManagedResourceAPI):
    path = "servers"
    key = "server"

    def power_on(self, server_id: int) -> dict[str, Any] | None:
        return self._action(server_id, "poweron")

    def power_off(self, server_id: int) -> dict[str, Any] | None:
        return self._action(server_id, "poweroff")


class NetworksAPI(ManagedResourceAPI):
    path = "networks"
    key = "network"

    def change_ip_range(self, network_id: int, ip_range: str) -> dict[str, Any] | None:
        return self._action(network_id, "change_ip_range", {"ip_range": ip_range})


class FirewallsAPI(ManagedResourceAPI):
    path = "firewalls"
    key = "firewall"

    def set_rules(self, firewall_id: int, rules: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return self._actions(firewall_id, "set_rules", {"rules": rules})

    def apply_to_resources(
        self, firewall_id: int, resources: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        return self._actions(firewall_id, "apply_to_resources", {"apply_to": resources})

    def remove_from_resources(
        self, firewall_id: int, resources: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        return self._actions(firewall_id, "remove_from_resources", {"remove_from": resources})


class LoadBalancersAPI(ManagedResourceAPI):
    path = "load_balancers"
    key = "load_balancer"

    def change_type(self, load_balancer_id: int, load_balancer_type: str) -> dict[str, Any] | None:
        return self._action(
            load_balancer_id, "change_type", {"load_balancer_type": load_balancer_type}
        )

    def change_algorithm(self, load_balancer_id: int, algorithm: str) -> dict[str, Any] | None:
        return self._action(load_balancer_id, "change_algorithm", {"type": algorithm})

    def enable_public_interface(self, load_balancer_id: int) -> dict[str, Any] | None:
        return self._action(load_balancer_id, "enable_public_interface")

    def disable_public_interface(self, load_balancer_id: int) -> dict[str, Any] | None:
        return self._action(load_balancer_id, "disable_public_interface")

    def attach_to_network(self, load_balancer_id: int, network_id: int) -> dict[str, Any] | None:
        return self._action(load_balancer_id, "attach_to_network", {"network": network_id})

    def detach_from_network(self, load_balancer_id: int, network_id: int) -> dict[str, Any] | None:
        return self._action(load_balancer_id, "detach_from_network", {"network": network_id})

    def add_service(self, load_balancer_id: int, service: dict[str, Any]) -> dict[str, Any] | None:
        return self._action(load_balancer_id, "add_service", service)

    def delete_service(self, load_balancer_id: int, listen_port: int) -> dict[str, Any] | None:
        return self._action(load_balancer_id, "delete_service", {"listen_port": listen_port})

    def add_target(self, load_balancer_id: int, target: dict[str, Any]) -> dict[str, Any] | None:
        return self._action(load_balancer_id, "add_target", target)

    def remove_target(self, load_balancer_id: int, target: dict[str, Any]) -> dict[str, Any] | None:
        return self._action(load_balancer_id, "remove_target", target)


class VolumesAPI(ManagedResourceAPI):
    path = "volumes"
    key = "volume"

    def attach(self, volume_id: int, server_id: int, automount: bool) -> dict[str, Any] | None:
        return self._action(volume_id, "attach", {"server": server_id, "automount": automount})

    def detach(self, volume_id: int) -> dict[str, Any] | None:
        return self._action(volume_id, "detach")

    def resize(self, volume_id: int, size: int) -> dict[str, Any] | None:
        return self._action(volume_id, "resize", {"size": size})


class PlacementGroupsAPI(ManagedResourceAPI):
    path = "placement_groups"
    key = "placement_group"
