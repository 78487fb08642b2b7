"""
Tests for /mpinAuthenticate and the login result report.
"""

import json

import pytest

from rpa.protocol import send_login_result
from rpa.rps_client import RPSError

COOKIE = "mpindemo_session"
AUTH_OTT = "0123456789abcdef" * 4


def _post(client, body):
    data = body if isinstance(body, str) else json.dumps(body)
    return client.post("/mpinAuthenticate", content=data)


def _auth(ott=AUTH_OTT, **extra):
    response = {"authOTT": ott}
    response.update(extra)
    return {"mpinResponse": response}


def test_successful_login(client, store, fake_rps):
    response = _post(client, _auth(version="0.3", **{"pass": "x"}))
    assert response.status_code == 200
    assert response.json() == {
        "someUserData": "This will be handled by onSuccessLogin handler.",
        "userId": "user01",
    }

    session_id = response.cookies.get(COOKIE)
    assert fake_rps.authenticate_calls == [(AUTH_OTT, session_id)]
    assert fake_rps.login_results == [(session_id, "user01", AUTH_OTT, 200, "OK")]
    assert store.get(session_id).user == "user01"


def test_logged_in_session_shows_on_index(client):
    _post(client, _auth())
    assert "user01" in client.get("/").text


def test_request_otp_window(options, client):
    options.request_otp = True
    data = _post(client, _auth()).json()
    assert data["ttlSeconds"] == 64
    assert data["expireTime"] - data["nowTime"] == 64000
    assert data["nowTime"] % 1000 == 0


def test_rejected_login(client, store, fake_rps):
    fake_rps.auth_result = ("user01", "Invalid PIN", 401)
    response = _post(client, _auth())
    assert response.status_code == 401

    session_id = response.cookies.get(COOKIE)
    # Reported, but the session stays anonymous
    assert fake_rps.login_results[0][3] == 401
    assert store.get(session_id).user == ""


def test_rps_down(client, store, fake_rps):
    fake_rps.auth_result = ("", "Server error", 500)
    response = _post(client, _auth())
    assert response.status_code == 500
    assert store.get(response.cookies.get(COOKIE)).user == ""


def test_report_failure_does_not_fail_login(client, store, fake_rps):
    fake_rps.report_error = RPSError("Error code 503")
    response = _post(client, _auth())
    assert response.status_code == 200
    assert store.get(response.cookies.get(COOKIE)).user == "user01"


def test_get_not_allowed(client):
    assert client.get("/mpinAuthenticate").status_code == 405


@pytest.mark.parametrize("body, message", [
    ("{bad", "BAD REQUEST. INVALID JSON"),
    ("[]", "BAD REQUEST. INVALID JSON"),
    ({"other": 1}, "BAD REQUEST. INVALID KEY"),
    ({"mpinResponse": _auth()["mpinResponse"], "other": 1}, "BAD REQUEST. INVALID KEY"),
    ({}, "BAD REQUEST. INVALID KEY"),
    ({"mpinResponse": "x"}, "BAD REQUEST. INVALID KEY"),
    ({"mpinResponse": {"version": "1"}}, "BAD REQUEST. INVALID KEY"),
    (_auth(extra="x"), "BAD REQUEST. INVALID KEY"),
    (_auth(ott="abc"), "BAD REQUEST. AUTH OTT"),
    (_auth(ott="g" * 64), "BAD REQUEST. AUTH OTT"),
    (_auth(ott=12), "BAD REQUEST. AUTH OTT"),
])
def test_bad_requests(client, fake_rps, body, message):
    response = _post(client, body)
    assert response.status_code == 400
    assert response.text == message + "\n"
    assert fake_rps.authenticate_calls == []


def test_send_login_result_without_session(ctx, store, fake_rps):
    ctx.session_id = ""
    send_login_result(ctx, "user01", AUTH_OTT, 200, "OK")
    assert len(fake_rps.login_results) == 1
    assert store.session_count() == 0
