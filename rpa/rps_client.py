"""
RPS (Relying-Party Server) client.

JSON-over-HTTP(S) calls to the RPS endpoints, optionally over a transport
pinned to a CA bundle.
"""

import logging
import ssl
from typing import Optional, Tuple

import httpx

from .config import Options

logger = logging.getLogger(__name__)


class RPSError(Exception):
    pass


class RPSClient:
    """Talks to the RPS on behalf of the front end."""

    def __init__(self, options: Options):
        self.base_url = options.rps_base_url
        self.timeout = options.rps_timeout
        if options.ca_cert_file:
            self.verify = ssl.create_default_context(cafile=options.ca_cert_file)
        else:
            self.verify = True

    def fetch_json(self, url: str, method: str, payload: dict, expect_body: bool = True) -> Optional[dict]:
        """Send ``payload`` as JSON and decode the JSON reply.

        Raises RPSError on transport failure, on an HTTP status above 399 and
        on an undecodable reply.
        """
        try:
            with httpx.Client(verify=self.verify, timeout=self.timeout) as client:
                response = client.request(method, url, json=payload)
        except httpx.HTTPError as e:
            raise RPSError(f"{method} {url} failed: {e}") from e

        if response.status_code > 399:
            raise RPSError(f"Error code {response.status_code}")
        if not expect_body:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RPSError(f"Invalid JSON from {url}: {e}") from e

    def authenticate(self, auth_ott: str, session_id: str) -> Tuple[str, str, int]:
        """Exchange an auth OTT for ``(user_id, message, status)``."""
        url = f"{self.base_url}/authenticate"
        payload = {"authOTT": auth_ott, "logoutData": {"sessionToken": session_id}}
        try:
            data = self.fetch_json(url, "POST", payload)
        except RPSError as e:
            logger.error("%s Invalid data from RPS: %s", session_id, e)
            return "", "Server error", 500

        try:
            status = int(data.get("status") or 0)
        except (AttributeError, TypeError, ValueError):
            logger.error("%s Invalid data from RPS: %r", session_id, data)
            return "", "Server error", 500

        return str(data.get("userId") or ""), str(data.get("message") or ""), status

    def report_login_result(self, session_id: str, user_id: str, auth_ott: str,
                            status: int, message: str) -> None:
        """Tell the RPS how the login ended (its waitLoginResult hook).

        Statuses understood by the RPS: 200 login successful, 401 invalid PIN,
        403 denied without deleting the client token, 408 expired, 410 denied
        permanently (client token deleted).
        """
        url = f"{self.base_url}/loginResult"
        payload = {
            "authOTT": auth_ott,
            "status": status,
            "message": message,
            "logoutData": {"sessionToken": session_id, "userId": user_id},
        }
        self.fetch_json(url, "POST", payload, expect_body=False)

    def activate_user(self, identity: str, activate_key: str) -> None:
        url = f"{self.base_url}/user/{identity}"
        try:
            self.fetch_json(url, "POST", {"activateKey": activate_key}, expect_body=False)
        except RPSError as e:
            logger.error("URL: %s: Error: %s", url, e)
            raise
