"""
Tests for option loading.
"""

import os

import pytest
from pydantic import ValidationError

from rpa.config import Options, load_options


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    # No stray config.yaml or RPA_* variables
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("RPA_"):
            monkeypatch.delenv(name)


def test_defaults():
    o = load_options()
    assert o.port == 8005
    assert o.session_cookie_name == "mpindemo_session"
    assert o.session_max_age == 14400
    assert o.rps_base_url == "http://127.0.0.1:8011"
    assert o.templates_path.endswith("templates")


def test_yaml_file(tmp_path):
    path = tmp_path / "rpa.yaml"
    path.write_text("port: 9000\nforce_activate: true\nrps_host: rps.test:8011\n")

    o = load_options(str(path))
    assert o.port == 9000
    assert o.force_activate is True
    assert o.rps_base_url == "http://rps.test:8011"


def test_config_from_env_path(tmp_path, monkeypatch):
    path = tmp_path / "other.yaml"
    path.write_text("ldap_verify: true\n")
    monkeypatch.setenv("RPA_CONFIG", str(path))
    assert load_options().ldap_verify is True


def test_env_overrides_yaml(tmp_path, monkeypatch):
    path = tmp_path / "rpa.yaml"
    path.write_text("port: 9000\n")
    monkeypatch.setenv("RPA_PORT", "9100")
    monkeypatch.setenv("RPA_REQUEST_OTP", "true")

    o = load_options(str(path))
    assert o.port == 9100
    assert o.request_otp is True


def test_missing_explicit_file():
    with pytest.raises(FileNotFoundError):
        load_options("/nonexistent/rpa.yaml")


def test_ldap_filter_needs_one_placeholder():
    with pytest.raises(ValidationError):
        Options(ldap_filter="(uid=alice)")
    with pytest.raises(ValidationError):
        Options(ldap_filter="(|(uid=%s)(mail=%s))")


def test_verify_identity_url_required():
    with pytest.raises(ValidationError):
        Options(verify_identity_url="")


def test_ldap_filter_with_stray_percent():
    with pytest.raises(ValidationError):
        Options(ldap_filter="(&(uid=%s)(o=100%))")
    assert Options(ldap_filter="(&(uid=%s)(o=100%%))").ldap_filter == "(&(uid=%s)(o=100%%))"
