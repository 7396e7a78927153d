"""Unit tests for NginxPlusClient."""

from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import requests

from nginx_asg_sync.config import UpstreamKind
from nginx_asg_sync.errors import LoadBalancerClientError, UpdateError
from nginx_asg_sync.nginx import NginxPlusClient, UpstreamServer, _add_port_to_server

API = "http://127.0.0.1:8080/api"


def make_response(status_code: int = 200, json_data: Any = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = json_data
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status_code} Error"
        )
    return response


class TestApiVersion:
    def test_supported_version(self) -> None:
        client = NginxPlusClient(API)

        with patch.object(client._session, "get") as mock_get:
            mock_get.return_value = make_response(json_data=[1, 2, 3, 4, 5])
            client.check_api_version()

            mock_get.assert_called_once_with(f"{API}/", timeout=10.0)

    def test_unsupported_version(self) -> None:
        client = NginxPlusClient(API)

        with patch.object(client._session, "get") as mock_get:
            mock_get.return_value = make_response(json_data=[1, 2])
            with pytest.raises(LoadBalancerClientError, match="not supported"):
                client.check_api_version()

    def test_unreachable(self) -> None:
        client = NginxPlusClient(API)

        with patch.object(client._session, "get") as mock_get:
            mock_get.side_effect = requests.exceptions.ConnectionError("Connection refused")
            with pytest.raises(LoadBalancerClientError, match="Connection refused"):
                client.check_api_version()


class TestUpstreamExists:
    def test_http_upstream_exists(self) -> None:
        client = NginxPlusClient(API + "/")

        with patch.object(client._session, "get") as mock_get:
            mock_get.return_value = make_response(json_data={"peers": []})

            assert client.upstream_exists("backend", UpstreamKind.HTTP) is True
            mock_get.assert_called_once_with(f"{API}/4/http/upstreams/backend", timeout=10.0)

    def test_stream_upstream_uses_stream_api(self) -> None:
        client = NginxPlusClient(API)

        with patch.object(client._session, "get") as mock_get:
            mock_get.return_value = make_response(json_data={"peers": []})

            assert client.upstream_exists("tcp", UpstreamKind.STREAM) is True
            mock_get.assert_called_once_with(f"{API}/4/stream/upstreams/tcp", timeout=10.0)

    def test_upstream_missing(self) -> None:
        client = NginxPlusClient(API)

        with patch.object(client._session, "get") as mock_get:
            mock_get.return_value = make_response(404)

            assert client.upstream_exists("backend", UpstreamKind.HTTP) is False

    def test_server_error(self) -> None:
        client = NginxPlusClient(API)

        with patch.object(client._session, "get") as mock_get:
            mock_get.return_value = make_response(
                500, {"error": {"status": 500, "text": "internal error"}}
            )
            with pytest.raises(LoadBalancerClientError, match="internal error"):
                client.upstream_exists("backend", UpstreamKind.HTTP)


class TestApplyServers:
    def test_adds_and_removes_by_address(self) -> None:
        client = NginxPlusClient(API)
        current = [
            {"id": 0, "server": "10.0.0.1:80", "max_fails": 1},
            {"id": 1, "server": "10.0.0.9:80", "max_fails": 1},
        ]
        desired = [UpstreamServer("10.0.0.1:80"), UpstreamServer("10.0.0.2:80")]

        with patch.object(client._session, "get") as mock_get, patch.object(
            client._session, "post"
        ) as mock_post, patch.object(client._session, "delete") as mock_delete:
            mock_get.return_value = make_response(json_data=current)
            mock_post.return_value = make_response(201)
            mock_delete.return_value = make_response(200)

            added, removed = client.apply_servers("backend", UpstreamKind.HTTP, desired)

            assert added == [UpstreamServer("10.0.0.2:80")]
            assert removed == [UpstreamServer("10.0.0.9:80", max_fails=1, id=1)]
            mock_post.assert_called_once_with(
                f"{API}/4/http/upstreams/backend/servers",
                json={"server": "10.0.0.2:80", "max_fails": 1},
                timeout=10.0,
            )
            mock_delete.assert_called_once_with(
                f"{API}/4/http/upstreams/backend/servers/1", timeout=10.0
            )

    def test_no_changes(self) -> None:
        client = NginxPlusClient(API)
        current = [{"id": 3, "server": "10.0.0.1:80"}]

        with patch.object(client._session, "get") as mock_get, patch.object(
            client._session, "post"
        ) as mock_post, patch.object(client._session, "delete") as mock_delete:
            mock_get.return_value = make_response(json_data=current)

            added, removed = client.apply_servers(
                "backend", UpstreamKind.STREAM, [UpstreamServer("10.0.0.1:80")]
            )

            assert (added, removed) == ([], [])
            mock_post.assert_not_called()
            mock_delete.assert_not_called()

    def test_address_without_port_matches_port_80(self) -> None:
        client = NginxPlusClient(API)

        with patch.object(client._session, "get") as mock_get, patch.object(
            client._session, "post"
        ) as mock_post:
            mock_get.return_value = make_response(json_data=[{"id": 0, "server": "10.0.0.1"}])

            added, removed = client.apply_servers(
                "backend", UpstreamKind.HTTP, [UpstreamServer("10.0.0.1:80")]
            )

            assert (added, removed) == ([], [])
            mock_post.assert_not_called()

    def test_empty_desired_list_removes_everything(self) -> None:
        client = NginxPlusClient(API)
        current = [{"id": 0, "server": "10.0.0.1:80"}, {"id": 1, "server": "10.0.0.2:80"}]

        with patch.object(client._session, "get") as mock_get, patch.object(
            client._session, "delete"
        ) as mock_delete:
            mock_get.return_value = make_response(json_data=current)
            mock_delete.return_value = make_response(200)

            added, removed = client.apply_servers("backend", UpstreamKind.HTTP, [])

            assert added == []
            assert [s.server for s in removed] == ["10.0.0.1:80", "10.0.0.2:80"]
            assert mock_delete.call_count == 2

    def test_get_failure_raises_update_error(self) -> None:
        client = NginxPlusClient(API)

        with patch.object(client._session, "get") as mock_get:
            mock_get.side_effect = requests.exceptions.Timeout("timed out")
            with pytest.raises(UpdateError, match="timed out"):
                client.apply_servers("backend", UpstreamKind.HTTP, [UpstreamServer("10.0.0.1:80")])

    def test_add_failure_raises_update_error(self) -> None:
        client = NginxPlusClient(API)

        with patch.object(client._session, "get") as mock_get, patch.object(
            client._session, "post"
        ) as mock_post:
            mock_get.return_value = make_response(json_data=[])
            mock_post.return_value = make_response(400)
            with pytest.raises(UpdateError, match="10.0.0.1:80"):
                client.apply_servers("backend", UpstreamKind.HTTP, [UpstreamServer("10.0.0.1:80")])

    def test_unexpected_server_list_format(self) -> None:
        client = NginxPlusClient(API)

        with patch.object(client._session, "get") as mock_get:
            mock_get.return_value = make_response(json_data={"servers": []})
            with pytest.raises(UpdateError, match="expected list"):
                client.apply_servers("backend", UpstreamKind.HTTP, [])


@pytest.mark.parametrize(
    "server, expected",
    [
        ("10.0.0.1", "10.0.0.1:80"),
        ("10.0.0.1:8080", "10.0.0.1:8080"),
        ("[::1]", "[::1]:80"),
        ("[::1]:8080", "[::1]:8080"),
        ("unix:/tmp/backend.sock", "unix:/tmp/backend.sock"),
    ],
)
def test_add_port_to_server(server: str, expected: str) -> None:
    assert _add_port_to_server(server) == expected
