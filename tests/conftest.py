import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from rpa.config import Options
from rpa.main import build_application, create_app
from rpa.pipeline import RequestContext
from rpa.session_store import SessionStore


class FakeRPS:
    def __init__(self):
        self.auth_result = ("user01", "OK", 200)
        self.activate_error = None
        self.report_error = None
        self.authenticate_calls = []
        self.login_results = []
        self.activations = []

    def authenticate(self, auth_ott, session_id):
        self.authenticate_calls.append((auth_ott, session_id))
        return self.auth_result

    def report_login_result(self, session_id, user_id, auth_ott, status, message):
        self.login_results.append((session_id, user_id, auth_ott, status, message))
        if self.report_error:
            raise self.report_error

    def activate_user(self, identity, activate_key):
        self.activations.append((identity, activate_key))
        if self.activate_error:
            raise self.activate_error


class FakeDirectory:
    def __init__(self):
        self.entries = 1
        self.error = None
        self.lookups = []

    def count_entries(self, user_id):
        self.lookups.append(user_id)
        if self.error:
            raise self.error
        return self.entries


class FakeMailer:
    def __init__(self):
        self.links = []
        self.codes = []
        self.error = None

    def send_activation_mail(self, user_id, device_name, validate_url):
        self.links.append((user_id, device_name, validate_url))
        if self.error:
            raise self.error

    def send_activation_code_mail(self, user_id, device_name, activation_code):
        self.codes.append((user_id, device_name, activation_code))
        if self.error:
            raise self.error


@pytest.fixture
def options():
    return Options(mobile_support=False)


@pytest.fixture
def fake_rps():
    return FakeRPS()


@pytest.fixture
def fake_directory():
    return FakeDirectory()


@pytest.fixture
def fake_mailer():
    return FakeMailer()


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def application(options, store, fake_rps, fake_directory, fake_mailer):
    return build_application(options, store=store, rps=fake_rps,
                             directory=fake_directory, mailer=fake_mailer)


@pytest.fixture
def ctx(application):
    return RequestContext(app=application, session_id="SESSION-1")


@pytest.fixture
def client(options, store, fake_rps, fake_directory, fake_mailer):
    app = create_app(options, store=store, rps=fake_rps,
                     directory=fake_directory, mailer=fake_mailer)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_request():
    """Build a bare Starlette request for stage-level tests."""
    def _make(method="GET", path="/", headers=None, query_string=""):
        scope = {
            "type": "http",
            "method": method,
            "path": path,
            "root_path": "",
            "scheme": "http",
            "query_string": query_string.encode("latin-1"),
            "headers": [(k.lower().encode("latin-1"), v.encode("latin-1"))
                        for k, v in (headers or {}).items()],
            "client": ("127.0.0.1", 51000),
            "server": ("testserver", 80),
        }
        return Request(scope)
    return _make


