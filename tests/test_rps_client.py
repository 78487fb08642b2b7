"""
Tests for the RPS client, against a mocked httpx transport.
"""

import json

import httpx
import pytest

from rpa.config import Options
from rpa.rps_client import RPSClient, RPSError

OTT = "ab" * 32


@pytest.fixture
def rps(monkeypatch):
    """An RPSClient whose requests go to ``rps.replies`` instead of the network."""
    real_client = httpx.Client
    client = RPSClient(Options(rps_host="rps.test:8011"))
    client.requests = []
    client.replies = {}

    def handler(request):
        client.requests.append(request)
        reply = client.replies.get(request.url.path, (200, {}))
        if isinstance(reply, Exception):
            raise reply
        status, body = reply
        if isinstance(body, (str, bytes)):
            return httpx.Response(status, content=body)
        return httpx.Response(status, json=body)

    def make_client(**kwargs):
        kwargs.pop("verify", None)
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "Client", make_client)
    return client


def _sent(request):
    return json.loads(request.content)


def test_authenticate(rps):
    rps.replies["/authenticate"] = (200, {"status": 200, "message": "OK", "userId": "alice"})

    assert rps.authenticate(OTT, "SID") == ("alice", "OK", 200)

    request = rps.requests[0]
    assert request.method == "POST"
    assert str(request.url) == "http://rps.test:8011/authenticate"
    assert _sent(request) == {"authOTT": OTT, "logoutData": {"sessionToken": "SID"}}


def test_authenticate_passes_rps_verdict(rps):
    rps.replies["/authenticate"] = (200, {"status": 401, "message": "Invalid PIN", "userId": "alice"})
    assert rps.authenticate(OTT, "SID") == ("alice", "Invalid PIN", 401)


@pytest.mark.parametrize("reply", [
    (500, {}),
    (200, "not json"),
    (200, {"status": "lots"}),
    (200, ["not", "an", "object"]),
    httpx.ConnectError("connection refused"),
])
def test_authenticate_server_error(rps, reply):
    rps.replies["/authenticate"] = reply
    assert rps.authenticate(OTT, "SID") == ("", "Server error", 500)


def test_report_login_result(rps):
    rps.replies["/loginResult"] = (200, "")
    rps.report_login_result("SID", "alice", OTT, 410, "Denied")

    assert _sent(rps.requests[0]) == {
        "authOTT": OTT,
        "status": 410,
        "message": "Denied",
        "logoutData": {"sessionToken": "SID", "userId": "alice"},
    }


def test_report_login_result_error(rps):
    rps.replies["/loginResult"] = (503, "")
    with pytest.raises(RPSError, match="Error code 503"):
        rps.report_login_result("SID", "alice", OTT, 200, "OK")


def test_activate_user(rps):
    rps.replies["/user/abcd"] = (200, "")
    rps.activate_user("abcd", "ff" * 32)

    request = rps.requests[0]
    assert str(request.url) == "http://rps.test:8011/user/abcd"
    assert _sent(request) == {"activateKey": "ff" * 32}


def test_activate_user_error(rps):
    rps.replies["/user/abcd"] = (404, "")
    with pytest.raises(RPSError):
        rps.activate_user("abcd", "ff" * 32)


def test_ca_cert_file_builds_ssl_context(monkeypatch):
    import ssl

    seen = {}

    def fake_context(cafile=None):
        seen["cafile"] = cafile
        return "ctx"

    monkeypatch.setattr(ssl, "create_default_context", fake_context)
    client = RPSClient(Options(rps_schema="https", ca_cert_file="/etc/rps/ca.pem"))
    assert client.verify == "ctx"
    assert seen["cafile"] == "/etc/rps/ca.pem"
    assert client.base_url == "https://127.0.0.1:8011"
