"""
Active Directory connector for recently active computer accounts.
Uses ldap3 with the Simple Paged Results control; the blocking LDAP calls
run in a worker thread so the three sources can be fetched together.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import ldap3
from ldap3.core.exceptions import LDAPBindError, LDAPCommunicationError, LDAPException
from ldap3.utils.dn import escape_rdn

from ..errors import (
    AuthenticationError,
    OrganizationLookupError,
    PartialResultError,
    TransportError
)
from ..processors.inventory import SourceInventory, SourceName
from ..utils.credentials import Credentials
from .base_connector import require_organization


PAGED_RESULTS_OID = '1.2.840.113556.1.4.319'
LDAP_NO_SUCH_OBJECT = 32
FILETIME_EPOCH = datetime(1601, 1, 1, tzinfo=timezone.utc)


def to_filetime(moment: datetime) -> int:
    """Convert a datetime to Windows FILETIME (100ns ticks since 1601-01-01 UTC)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    delta = moment - FILETIME_EPOCH
    return (delta.days * 86400 + delta.seconds) * 10**7 + delta.microseconds * 10


def _first_value(value: Any) -> Optional[str]:
    """Attributes come back as lists when no schema is loaded."""
    if isinstance(value, (list, tuple)):
        return str(value[0]) if value else None
    if value is None:
        return None
    return str(value)


class DirectoryConnector:
    """
    Connector for computer objects in Active Directory.

    A computer counts as active when its lastLogonTimestamp falls inside the
    recency window. The organization scopes the search through
    `search_base_template`; without a template the whole base DN is searched.
    """

    source = SourceName.DIRECTORY

    def __init__(
        self,
        host: str,
        base_dn: str,
        credentials: Credentials,
        search_base_template: Optional[str] = None,
        active_days: int = 30,
        exclude_disabled: bool = True,
        port: Optional[int] = None,
        use_ssl: bool = True,
        page_size: int = 500,
        timeout: int = 30,
        connection_factory: Optional[Callable[[], Any]] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        if not credentials.username or not credentials.secret:
            raise AuthenticationError("Bind user and password are required", self.source.label)

        self.host = host
        self.base_dn = base_dn
        self.credentials = credentials
        self.search_base_template = search_base_template
        self.active_days = active_days
        self.exclude_disabled = exclude_disabled
        self.port = port
        self.use_ssl = use_ssl
        self.page_size = page_size
        self.timeout = timeout
        self.connection_factory = connection_factory or self._default_connection
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.logger = logging.getLogger(f"inventory_recon.{self.__class__.__name__}")
        self.stats = {
            'searches_made': 0,
            'pages_fetched': 0,
            'entries_received': 0,
            'start_time': None,
            'end_time': None
        }

    async def __aenter__(self):
        self.stats['start_time'] = datetime.now()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.stats['end_time'] = datetime.now()
        return False

    def _default_connection(self):
        server = ldap3.Server(
            self.host,
            port=self.port,
            use_ssl=self.use_ssl,
            get_info=ldap3.NONE,
            connect_timeout=self.timeout
        )
        return ldap3.Connection(
            server,
            user=self.credentials.username,
            password=self.credentials.secret,
            authentication=ldap3.SIMPLE,
            auto_bind=True,
            read_only=True,
            receive_timeout=self.timeout
        )

    def _connect(self):
        label = self.source.label
        try:
            return self.connection_factory()
        except LDAPBindError as e:
            raise AuthenticationError(f"LDAP bind failed: {e}", label) from e
        except LDAPCommunicationError as e:
            raise TransportError(f"Cannot reach {self.host}: {e}", label) from e
        except LDAPException as e:
            raise TransportError(f"LDAP error: {e}", label) from e

    def build_search_base(self, organization: str) -> str:
        if not self.search_base_template:
            return self.base_dn
        return self.search_base_template.format(
            organization=escape_rdn(organization.strip()),
            base_dn=self.base_dn
        )

    def build_filter(self) -> str:
        cutoff = self.clock() - timedelta(days=self.active_days)
        conditions = [
            '(objectCategory=computer)',
            f'(lastLogonTimestamp>={to_filetime(cutoff)})'
        ]
        if self.exclude_disabled:
            conditions.append('(!(userAccountControl:1.2.840.113556.1.4.803:=2))')
        return f"(&{''.join(conditions)})"

    def _paged_search(self, connection, search_base: str, search_filter: str) -> List[Optional[str]]:
        label = self.source.label
        hostnames: List[Optional[str]] = []
        cookie = None
        pages = 0

        while True:
            try:
                self.stats['searches_made'] += 1
                connection.search(
                    search_base,
                    search_filter,
                    search_scope=ldap3.SUBTREE,
                    attributes=['name', 'dNSHostName'],
                    paged_size=self.page_size,
                    paged_cookie=cookie
                )
            except LDAPException as e:
                if pages == 0:
                    raise TransportError(f"LDAP search failed: {e}", label) from e
                raise PartialResultError(
                    f"Paged search stopped after {len(hostnames)} entries: {e}",
                    label,
                    items_received=len(hostnames)
                ) from e

            result = connection.result or {}
            code = result.get('result', 0)

            if code == LDAP_NO_SUCH_OBJECT:
                raise OrganizationLookupError(
                    f"Search base does not exist: {search_base}", label
                )

            if code != 0:
                message = f"LDAP search returned {code} ({result.get('description', '')})"
                if pages == 0:
                    raise TransportError(message, label)
                raise PartialResultError(message, label, items_received=len(hostnames))

            pages += 1
            self.stats['pages_fetched'] += 1

            for entry in connection.response or []:
                if entry.get('type') != 'searchResEntry':
                    continue
                attributes = entry.get('attributes', {})
                hostnames.append(
                    _first_value(attributes.get('name'))
                    or _first_value(attributes.get('dNSHostName'))
                )

            cookie = (
                result.get('controls', {})
                .get(PAGED_RESULTS_OID, {})
                .get('value', {})
                .get('cookie')
            )
            if not cookie:
                break

        self.stats['entries_received'] += len(hostnames)
        return hostnames

    def _fetch_sync(self, organization: str) -> SourceInventory:
        search_base = self.build_search_base(organization)
        search_filter = self.build_filter()

        self.logger.info(
            f"Searching {search_base} for computers active in the last {self.active_days} days"
        )

        connection = self._connect()
        try:
            hostnames = self._paged_search(connection, search_base, search_filter)
        finally:
            connection.unbind()

        self.logger.info(f"Fetched {len(hostnames)} computer accounts")
        return SourceInventory.from_records(self.source, organization, hostnames)

    async def fetch_inventory(self, organization: str) -> SourceInventory:
        """
        Fetch recently active computer names under the organization's scope.

        Returns:
            SourceInventory of computer names (possibly empty)
        """
        organization = require_organization(organization, self.source.label)
        if not self.search_base_template:
            self.logger.warning(
                "No search_base_template configured; searching the whole base DN"
            )
        return await asyncio.to_thread(self._fetch_sync, organization)

    async def test_connection(self) -> bool:
        """Bind to the directory and unbind again."""
        def bind_and_release():
            self._connect().unbind()

        try:
            await asyncio.to_thread(bind_and_release)
            return True
        except Exception as e:
            self.logger.error(f"Connection test failed: {e}")
            return False

    def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.copy()
        if stats['start_time'] and stats['end_time']:
            stats['duration_seconds'] = (
                stats['end_time'] - stats['start_time']
            ).total_seconds()
        return stats


async def create_directory_connector(config, credential_provider) -> DirectoryConnector:
    """Factory function to create a directory connector from config."""
    section = config.directory
    return DirectoryConnector(
        host=section.host,
        base_dn=section.base_dn,
        credentials=credential_provider.get_credentials(SourceName.DIRECTORY),
        search_base_template=section.search_base_template,
        active_days=section.active_days,
        exclude_disabled=section.exclude_disabled,
        port=section.port,
        use_ssl=section.use_ssl,
        page_size=section.page_size,
        timeout=section.timeout
    )
