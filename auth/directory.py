"""
auth/directory.py -- Directory Verifier (LDAP).

Verification algorithm, one connection per call:

  1. Bind as the service identity. A socket failure or a rejected service
     bind raises DirectoryUnavailableError -- an infrastructure fault, not
     the caller's.
  2. For each scope in configured order (staff, faculty, project by default),
     search the scope's subtree for entries whose identity attribute equals
     the username. Aliases are never dereferenced. A failed search is logged
     and the next scope is tried.
  3. For each entry found, bind as the entry's DN with the supplied password.
     The first bind that succeeds wins: its scope is returned and no further
     entries or scopes are tried.
  4. Nothing accepted the password -> None.

A connection lost during any bind or search is DirectoryUnavailableError,
never a password mismatch.

The username is escaped before it goes into the filter. An empty password is
never sent to the server, because many directories treat a DN with an empty
password as a successful unauthenticated bind.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from ldap3 import DEREF_NEVER, SIMPLE, SUBTREE, SYNC, Connection, Server
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from auth.models import DirectoryMatch

logger = logging.getLogger("hrauth.directory")


class DirectoryUnavailableError(Exception):
    """The directory could not be reached or refused the service bind."""


@dataclass(frozen=True)
class DirectoryScope:
    """A named subtree searched for candidate entries, e.g. ("faculty", "ou=faculty,...")."""

    tag: str
    base_dn: str


class DirectoryVerifier:
    """Verify a username/password pair against ordered directory scopes.

    Usage:
        verifier = DirectoryVerifier(
            Server("ldap://ldap.example.org:389", connect_timeout=10),
            bind_dn="cn=bind,ou=bind,dc=example,dc=org",
            bind_password="...",
            scopes=[DirectoryScope("staff", "ou=staff,..."), DirectoryScope("faculty", "ou=faculty,...")],
        )
        match = verifier.verify("alice", "s3cret")  # DirectoryMatch or None

    client_strategy is ldap3.SYNC in production; tests pass ldap3.MOCK_SYNC
    with a Server whose DIT has been populated.
    """

    def __init__(
        self,
        server: Server,
        bind_dn: str,
        bind_password: str,
        scopes: Iterable[DirectoryScope],
        identity_attribute: str = "uid",
        client_strategy: str = SYNC,
    ) -> None:
        self.server = server
        self.bind_dn = bind_dn
        self._bind_password = bind_password
        self.scopes = tuple(scopes)
        if not self.scopes:
            raise ValueError("At least one directory scope is required.")
        self.identity_attribute = identity_attribute
        self.client_strategy = client_strategy

    @classmethod
    def from_settings(cls, settings) -> "DirectoryVerifier":
        """Build a verifier for the configured directory."""
        return cls(
            Server(settings.ldap_url, connect_timeout=settings.ldap_connect_timeout),
            bind_dn=settings.ldap_bind_dn,
            bind_password=settings.ldap_bind_password,
            scopes=[DirectoryScope(tag, base) for tag, base in settings.ldap_search_scopes.items()],
            identity_attribute=settings.ldap_identity_attribute,
        )

    def verify(self, username: str, password: str) -> DirectoryMatch | None:
        """Return the first scope whose entry accepts the password, or None."""
        conn = self._service_connection()
        try:
            search_filter = f"({self.identity_attribute}={escape_filter_chars(username)})"
            service_bound = True
            for scope in self.scopes:
                if not service_bound:
                    self._rebind_service(conn)
                    service_bound = True

                dns = self._search(conn, scope, search_filter)
                for dn in dns:
                    if not password:
                        logger.warning("Skipping %s bind: empty password", scope.tag)
                        continue
                    service_bound = False
                    if self._bind_entry(conn, dn, password):
                        logger.info("%s bind successful for %s", scope.tag, username)
                        return DirectoryMatch(scope=scope.tag, dn=dn, username=username)
                    logger.info("%s bind failed for %s", scope.tag, username)
        except LDAPException as exc:
            raise DirectoryUnavailableError(f"Directory error: {exc}") from exc
        finally:
            _safe_unbind(conn)

        logger.info("Directory entries mismatch for %s", username)
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _service_connection(self) -> Connection:
        conn = Connection(
            self.server,
            user=self.bind_dn,
            password=self._bind_password,
            authentication=SIMPLE,
            client_strategy=self.client_strategy,
            auto_referrals=False,
            raise_exceptions=False,
        )
        try:
            bound = conn.bind()
        except LDAPException as exc:
            _safe_unbind(conn)
            raise DirectoryUnavailableError(f"Failed to connect to directory: {exc}") from exc
        if not bound:
            _safe_unbind(conn)
            raise DirectoryUnavailableError(f"Service bind failed: {conn.result.get('description')}")
        return conn

    def _rebind_service(self, conn: Connection) -> None:
        if not _rebind(conn, self.bind_dn, self._bind_password):
            raise DirectoryUnavailableError("Service re-bind failed")

    def _search(self, conn: Connection, scope: DirectoryScope, search_filter: str) -> list[str]:
        ok = conn.search(
            search_base=scope.base_dn,
            search_filter=search_filter,
            search_scope=SUBTREE,
            dereference_aliases=DEREF_NEVER,
            attributes=[self.identity_attribute],
        )
        if not ok:
            logger.info("Search in %s returned no entries (%s)", scope.tag, conn.result.get("description"))
            return []
        # Copy the DNs out: the next bind replaces conn.response.
        return [entry["dn"] for entry in conn.response or [] if entry.get("type") == "searchResEntry" and entry.get("dn")]

    def _bind_entry(self, conn: Connection, dn: str, password: str) -> bool:
        return _rebind(conn, dn, password)


def _rebind(conn: Connection, user: str, password: str) -> bool:
    # A rejected password returns False (raise_exceptions=False). A dropped
    # connection surfaces as LDAPBindError and must reach verify().
    return bool(conn.rebind(user=user, password=password, authentication=SIMPLE))


def _safe_unbind(conn: Connection) -> None:
    try:
        conn.unbind()
    except LDAPException:
        logger.debug("Directory unbind failed", exc_info=True)
