"""
Process-wide collaborators shared by every request.

The pipeline hands each request a reference to one Application. Collaborators
are injected here so tests can swap the network-facing ones for doubles.
"""

from dataclasses import dataclass
from typing import Protocol, Tuple

from .config import Options
from .session_store import SessionStore
from .templates import TemplateRenderer


class RelyingPartyServer(Protocol):
    def authenticate(self, auth_ott: str, session_id: str) -> Tuple[str, str, int]: ...

    def report_login_result(self, session_id: str, user_id: str, auth_ott: str,
                            status: int, message: str) -> None: ...

    def activate_user(self, identity: str, activate_key: str) -> None: ...


class Directory(Protocol):
    def count_entries(self, user_id: str) -> int: ...


class Mailer(Protocol):
    def send_activation_mail(self, user_id: str, device_name: str, validate_url: str) -> None: ...

    def send_activation_code_mail(self, user_id: str, device_name: str, activation_code: int) -> None: ...


@dataclass
class Application:
    options: Options
    store: SessionStore
    rps: RelyingPartyServer
    directory: Directory
    mailer: Mailer
    templates: TemplateRenderer
