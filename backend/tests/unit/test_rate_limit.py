"""
Unit tests for the rate limit key function.
"""

from starlette.requests import Request

from app.middleware.rate_limit import get_client_identifier


def _request(path_params=None, headers=None, client=("10.0.0.9", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/",
        "headers": [
            (name.lower().encode(), value.encode())
            for name, value in (headers or {}).items()
        ],
        "path_params": path_params or {},
        "client": client,
    }
    return Request(scope)


class TestClientIdentifier:
    def test_user_routes_are_keyed_by_user(self):
        request = _request(
            path_params={"user_id": "user-1"},
            headers={"X-Forwarded-For": "1.2.3.4"},
        )

        assert get_client_identifier(request) == "user:user-1"

    def test_forwarded_for_first_hop(self):
        request = _request(headers={"X-Forwarded-For": "1.2.3.4, 10.0.0.1"})

        assert get_client_identifier(request) == "1.2.3.4"

    def test_falls_back_to_peer_address(self):
        assert get_client_identifier(_request()) == "10.0.0.9"
