"""
LDAP directory verification.

Only the number of entries matching the configured filter matters; a
connection, bind or search failure is reported as DirectoryError.
"""

import logging
import ssl

import ldap3
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from .config import Options

logger = logging.getLogger(__name__)

# Result codes that still carry usable entries
_SEARCH_OK = (0, 4)  # success, sizeLimitExceeded


class DirectoryError(Exception):
    pass


class LdapDirectory:
    def __init__(self, options: Options):
        self.options = options

    def _server(self) -> ldap3.Server:
        o = self.options
        tls = None
        if o.ldap_use_tls:
            tls = ldap3.Tls(validate=ssl.CERT_REQUIRED, ca_certs_file=o.ca_cert_file or None)
        return ldap3.Server(o.ldap_server, port=o.ldap_port, use_ssl=o.ldap_use_tls, tls=tls,
                            connect_timeout=10)

    def search_filter(self, user_id: str) -> str:
        try:
            return self.options.ldap_filter % escape_filter_chars(user_id)
        except (TypeError, ValueError) as e:
            raise DirectoryError(f"Invalid LDAP filter {self.options.ldap_filter!r}: {e}") from e

    def count_entries(self, user_id: str) -> int:
        """Return how many directory entries match ``user_id``."""
        o = self.options
        conn = ldap3.Connection(self._server(), user=o.ldap_bind_dn or None, password=o.ldap_bind_pwd or None,
                                auto_bind=ldap3.AUTO_BIND_NONE, receive_timeout=600)
        try:
            conn.open()
        except LDAPException as e:
            raise DirectoryError(f"Remote LDAP connection failed: {e}") from e

        try:
            if o.ldap_bind_dn and o.ldap_bind_pwd:
                try:
                    bound = conn.bind()
                except LDAPException as e:
                    raise DirectoryError(f"Bind failed: {e}") from e
                if not bound:
                    raise DirectoryError(f"Bind failed: {conn.result.get('description')}")

            try:
                conn.search(
                    o.ldap_base_dn,
                    self.search_filter(user_id),
                    search_scope=ldap3.SUBTREE,
                    dereference_aliases=ldap3.DEREF_NEVER,
                    size_limit=1,
                    time_limit=600,
                    types_only=True,
                )
            except LDAPException as e:
                raise DirectoryError(f"Search failed: {e}") from e

            result = conn.result or {}
            if result.get("result", 0) not in _SEARCH_OK:
                raise DirectoryError(f"Search failed: {result.get('description')}")

            entries = [r for r in (conn.response or []) if r.get("type") == "searchResEntry"]
            logger.debug("Directory search for %s matched %d entries", user_id, len(entries))
            return len(entries)
        finally:
            conn.unbind()
