"""Client for the NGINX Plus upstream API.

Only the calls nginx-asg-sync needs are implemented: checking that an upstream
exists, listing its servers, and adding/removing servers so that the upstream
matches a desired list.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests

from nginx_asg_sync.config import UpstreamKind
from nginx_asg_sync.errors import LoadBalancerClientError, UpdateError

logger = logging.getLogger(__name__)

API_VERSION = 4
DEFAULT_SERVER_PORT = "80"

# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class UpstreamServer:
    """A server of an http or stream upstream."""

    server: str
    max_fails: int = 1
    id: Optional[int] = None

    def to_json(self) -> Dict[str, Any]:
        return {"server": self.server, "max_fails": self.max_fails}


def _add_port_to_server(server: str) -> str:
    """Normalize an address so ones without an explicit port compare as port 80."""
    if server.startswith("unix:"):
        return server
    if server.startswith("["):
        # IPv6 literal: [::1] or [::1]:8080
        return server if "]:" in server else f"{server}:{DEFAULT_SERVER_PORT}"
    if ":" in server:
        return server
    return f"{server}:{DEFAULT_SERVER_PORT}"


# =============================================================================
# NGINX Plus Client
# =============================================================================


class NginxPlusClient:
    """Load balancer admin client backed by the NGINX Plus REST API."""

    def __init__(
        self,
        endpoint: str,
        session: Optional[requests.Session] = None,
        api_version: int = API_VERSION,
        timeout: float = 10.0,
    ):
        self._endpoint = endpoint.rstrip("/")
        self._session = session or requests.Session()
        self._api_version = api_version
        self._timeout = timeout

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def check_api_version(self) -> None:
        """Make sure the API is reachable and supports the version we speak."""
        try:
            response = self._session.get(f"{self._endpoint}/", timeout=self._timeout)
            response.raise_for_status()
            versions = response.json()
        except (requests.exceptions.RequestException, json.JSONDecodeError) as e:
            raise LoadBalancerClientError(
                f"Couldn't get the supported API versions from {self._endpoint}: {e}"
            ) from e

        if not isinstance(versions, list) or self._api_version not in versions:
            raise LoadBalancerClientError(
                f"API version {self._api_version} is not supported by {self._endpoint}: "
                f"supported versions are {versions}"
            )
        logger.info(f"NGINX Plus API version {self._api_version} available at {self._endpoint}")

    def upstream_exists(self, name: str, kind: UpstreamKind) -> bool:
        try:
            response = self._session.get(self._upstream_url(name, kind), timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            raise LoadBalancerClientError(
                f"Couldn't check if the {kind.value} upstream {name} exists: {e}"
            ) from e

        if response.status_code == 404:
            return False
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise LoadBalancerClientError(
                f"Couldn't check if the {kind.value} upstream {name} exists: "
                f"{self._error_text(response) or e}"
            ) from e
        return True

    def get_servers(self, name: str, kind: UpstreamKind) -> List[UpstreamServer]:
        try:
            response = self._session.get(
                f"{self._upstream_url(name, kind)}/servers", timeout=self._timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, json.JSONDecodeError) as e:
            raise UpdateError(
                f"Couldn't get the servers of the {kind.value} upstream {name}: {e}"
            ) from e

        if not isinstance(data, list):
            raise UpdateError(
                f"Unexpected response for the servers of the {kind.value} upstream {name}: "
                f"expected list, got {type(data).__name__}"
            )

        servers: List[UpstreamServer] = []
        for s in data:
            if not isinstance(s, dict) or not isinstance(s.get("server"), str):
                logger.warning(f"Skipping malformed server entry of {name}: {s}")
                continue
            servers.append(
                UpstreamServer(
                    server=s["server"],
                    max_fails=int(s.get("max_fails", 1)),
                    id=s.get("id"),
                )
            )
        return servers

    def apply_servers(
        self, name: str, kind: UpstreamKind, servers: List[UpstreamServer]
    ) -> Tuple[List[UpstreamServer], List[UpstreamServer]]:
        """Make the upstream's server list match ``servers``.

        Servers are matched by address. Returns the (added, removed) servers.
        """
        current = self.get_servers(name, kind)
        current_addresses = {_add_port_to_server(s.server) for s in current}
        desired_addresses = {_add_port_to_server(s.server) for s in servers}

        to_add: List[UpstreamServer] = []
        for server in servers:
            address = _add_port_to_server(server.server)
            if address not in current_addresses:
                to_add.append(server)
                current_addresses.add(address)
        to_delete = [s for s in current if _add_port_to_server(s.server) not in desired_addresses]

        for server in to_add:
            self._add_server(name, kind, server)
        for server in to_delete:
            self._delete_server(name, kind, server)

        return to_add, to_delete

    def _add_server(self, name: str, kind: UpstreamKind, server: UpstreamServer) -> None:
        url = f"{self._upstream_url(name, kind)}/servers"
        try:
            response = self._session.post(url, json=server.to_json(), timeout=self._timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise UpdateError(
                f"Couldn't add the server {server.server} to the {kind.value} upstream {name}: {e}"
            ) from e
        logger.debug(f"Added server {server.server} to {kind.value} upstream {name}")

    def _delete_server(self, name: str, kind: UpstreamKind, server: UpstreamServer) -> None:
        if server.id is None:
            raise UpdateError(
                f"Couldn't remove the server {server.server} from the {kind.value} upstream "
                f"{name}: the server has no id"
            )
        url = f"{self._upstream_url(name, kind)}/servers/{server.id}"
        try:
            response = self._session.delete(url, timeout=self._timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise UpdateError(
                f"Couldn't remove the server {server.server} from the {kind.value} upstream "
                f"{name}: {e}"
            ) from e
        logger.debug(f"Removed server {server.server} from {kind.value} upstream {name}")

    def _upstream_url(self, name: str, kind: UpstreamKind) -> str:
        return f"{self._endpoint}/{self._api_version}/{kind.value}/upstreams/{name}"

    @staticmethod
    def _error_text(response: requests.Response) -> str:
        try:
            data = response.json()
        except json.JSONDecodeError:
            return ""
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            return str(data["error"].get("text") or "")
        return ""
