"""
Configuration for the relying-party front end.

Options come from an optional YAML file and are then overridden by
``RPA_<FIELD>`` environment variables (a ``.env`` file is honoured). The
resulting Options value is passed explicitly to create_app; nothing below the
application factory reads the environment.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent
ENV_PREFIX = "RPA_"


class Options(BaseModel):
    # Server
    address: str = ""
    port: int = 8005
    enable_tls: bool = False
    cert_file: str = "/etc/ssl/certs/ssl-cert-snakeoil.pem"
    key_file: str = "/etc/ssl/private/ssl-cert-snakeoil.key"

    # Pages and static resources
    resources_base_path: str = str(PACKAGE_DIR / "resources")
    static_url_base: str = "/public/"
    mpin_js_url: str = "https://mpin.certivox.net/v3/mpin.js"
    client_settings_url: str = "/rps/clientSettings"
    about_url: str = "http://www.certivox.com/m-pin/"
    mobile_support: bool = True
    mobile_app_path: str = "/opt/mpin/mpin-3.5/mobile/"
    mobile_app_full_url: str = "/m/"

    # RPS
    rps_host: str = "127.0.0.1:8011"
    rps_schema: str = "http"
    rps_prefix: str = "rps"
    rps_timeout: float = 10.0
    ca_cert_file: str = ""
    request_otp: bool = False

    # Activation
    force_activate: bool = False
    verify_identity_url: str = "http://localhost:8005/mpinActivate"

    # Directory verification
    ldap_verify: bool = False
    ldap_verify_show: bool = False
    ldap_server: str = ""
    ldap_port: int = 389
    ldap_bind_dn: str = ""
    ldap_bind_pwd: str = ""
    ldap_base_dn: str = ""
    ldap_filter: str = "(uid=%s)"
    ldap_use_tls: bool = False

    # Mail
    email_subject: str = "M-Pin demo: New user activation"
    email_sender: str = ""
    smtp_server: str = ""
    smtp_port: int = 25
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = False

    # Session
    session_cookie_name: str = "mpindemo_session"
    session_max_age: int = 60 * 60 * 4
    use_secure_cookie: bool = False

    @field_validator('verify_identity_url')
    @classmethod
    def validate_verify_identity_url(cls, v):
        if not v:
            raise ValueError('verify_identity_url must not be empty')
        return v

    @field_validator('ldap_filter')
    @classmethod
    def validate_ldap_filter(cls, v):
        if v.count('%s') != 1:
            raise ValueError('ldap_filter must contain exactly one %s placeholder')
        try:
            v % 'user'
        except (TypeError, ValueError) as e:
            raise ValueError(f'ldap_filter is not a valid format string: {e}') from e
        return v

    @property
    def static_path(self) -> str:
        return str(Path(self.resources_base_path) / "public")

    @property
    def templates_path(self) -> str:
        return str(Path(self.resources_base_path) / "templates")

    @property
    def rps_base_url(self) -> str:
        return f"{self.rps_schema}://{self.rps_host}"


def _env_overrides() -> dict:
    overrides = {}
    for name in Options.model_fields:
        value = os.getenv(ENV_PREFIX + name.upper())
        if value is not None:
            overrides[name] = value
    return overrides


def load_options(config_path: Optional[str] = None) -> Options:
    """Load options from YAML (if present) with environment overrides."""
    load_dotenv()

    path = Path(config_path or os.getenv(ENV_PREFIX + "CONFIG", "config.yaml"))
    data = {}
    if path.exists():
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    elif config_path:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    data.update(_env_overrides())
    return Options.model_validate(data)
