"""
Base async connector class for source-of-record API integrations.
Provides the shared aiohttp session, error mapping and cursor pagination.
"""

import asyncio
import ssl
import aiohttp
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple
from datetime import datetime
import logging

from ..errors import (
    AuthenticationError,
    InventoryError,
    OrganizationLookupError,
    PartialResultError,
    TransportError
)
from ..processors.inventory import SourceInventory, SourceName


PageParser = Callable[[Any], Tuple[List[Any], Optional[Any], Optional[int]]]


def require_organization(organization: Optional[str], label: str) -> str:
    """Return the trimmed organization filter; a blank filter would match every client."""
    value = (organization or '').strip()
    if not value:
        raise OrganizationLookupError("Organization filter is empty", label)
    return value


class BaseAsyncConnector(ABC):
    """
    Abstract base class for async source connectors.

    Requests are made once: a failed request raises instead of being retried,
    retry policy belongs to the caller.
    """

    source: SourceName

    def __init__(
        self,
        base_url: str,
        max_concurrent_requests: int = 4,
        timeout: int = 30,
        verify_ssl: bool = True,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.max_concurrent_requests = max_concurrent_requests
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.verify_ssl = verify_ssl

        self._session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self.logger = logging.getLogger(f"inventory_recon.{self.__class__.__name__}")

        self.stats = {
            'requests_made': 0,
            'requests_successful': 0,
            'requests_failed': 0,
            'pages_fetched': 0,
            'start_time': None,
            'end_time': None
        }

    @abstractmethod
    def _get_auth_headers(self) -> Dict[str, str]:
        """Return authentication headers for API requests."""
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """Test the API connection. Returns True if successful."""
        pass

    @abstractmethod
    async def fetch_inventory(self, organization: str) -> SourceInventory:
        """
        Fetch every device hostname the source associates with the organization.
        Raises an InventoryError subclass instead of returning partial or empty data.
        """
        pass

    async def __aenter__(self):
        """Async context manager entry."""
        await self._create_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self._close_session()
        return False

    def _build_ssl_context(self):
        if self.verify_ssl:
            return None
        ssl_context = ssl.create_default_context()
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE
        return ssl_context

    async def _create_session(self):
        """Create aiohttp session and semaphore."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_concurrent_requests,
                limit_per_host=self.max_concurrent_requests,
                enable_cleanup_closed=True,
                ssl=self._build_ssl_context()
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={
                    'Content-Type': 'application/json',
                    'Accept': 'application/json'
                }
            )
            self._owns_session = True
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent_requests)
        self.stats['start_time'] = datetime.now()

    async def _close_session(self):
        """Close aiohttp session if this connector created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self.stats['end_time'] = datetime.now()

    async def _request(
        self,
        method: str,
        url: str,
        lookup_on_404: bool = False,
        authenticated: bool = True,
        **kwargs
    ) -> Any:
        """
        Make a single HTTP request and decode the JSON body.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Full URL to request
            lookup_on_404: Report 404 as OrganizationLookupError
            authenticated: Send the connector's auth headers
            **kwargs: Additional arguments for aiohttp request

        Returns:
            Decoded JSON response

        Raises:
            AuthenticationError: 401/403
            OrganizationLookupError: 404 when lookup_on_404 is set
            TransportError: timeouts, client errors, 429, 5xx and other statuses
        """
        if self._session is None or self._semaphore is None:
            await self._create_session()

        label = self.source.label

        if authenticated:
            headers = {**self._get_auth_headers(), **kwargs.pop('headers', {})}
            kwargs['headers'] = headers

        try:
            async with self._semaphore:
                self.stats['requests_made'] += 1

                async with self._session.request(method, url, **kwargs) as response:
                    if 200 <= response.status < 300:
                        self.stats['requests_successful'] += 1
                        if response.status == 204:
                            return {}
                        return await response.json()

                    self.stats['requests_failed'] += 1

                    if response.status in (401, 403):
                        raise AuthenticationError(
                            f"Authentication failed: HTTP {response.status}", label
                        )

                    if response.status == 404 and lookup_on_404:
                        raise OrganizationLookupError(f"Not found: {url}", label)

                    if response.status == 429:
                        retry_after = response.headers.get('Retry-After', 'unknown')
                        raise TransportError(
                            f"Rate limited (Retry-After: {retry_after})",
                            label,
                            status=response.status
                        )

                    text = await response.text()
                    raise TransportError(
                        f"Request failed: HTTP {response.status} - {text[:200]}",
                        label,
                        status=response.status
                    )

        except asyncio.TimeoutError as e:
            self.stats['requests_failed'] += 1
            raise TransportError(f"Request timeout: {url}", label) from e

        except aiohttp.ClientError as e:
            self.stats['requests_failed'] += 1
            raise TransportError(f"Client error: {e}", label) from e

    async def _cursor_paginated_fetch(
        self,
        endpoint: str,
        parse_page: PageParser,
        params: Optional[Dict[str, Any]] = None,
        cursor_param: str = "cursor",
        lookup_on_404: bool = False
    ) -> List[Any]:
        """
        Fetch all pages of a cursor-paginated endpoint.

        Args:
            endpoint: API endpoint (without base URL)
            parse_page: Callable returning (items, next_cursor, total) for a
                response body; next_cursor is None on the last page and total
                is None when the backend does not report one
            params: Additional query parameters
            cursor_param: Name of the continuation parameter
            lookup_on_404: Report 404 as OrganizationLookupError

        Returns:
            List of all fetched items

        Raises:
            PartialResultError: when a page after the first fails, a cursor
                repeats, or fewer items arrive than the reported total
        """
        label = self.source.label
        url = f"{self.base_url}{endpoint}"
        params = dict(params or {})

        all_data: List[Any] = []
        seen_cursors = set()
        cursor = None
        total_items = None

        while True:
            page_params = dict(params)
            if cursor is not None:
                page_params[cursor_param] = cursor

            try:
                response = await self._request(
                    'GET', url, params=page_params, lookup_on_404=lookup_on_404
                )
                items, next_cursor, total = parse_page(response)
            except InventoryError as e:
                if not all_data and cursor is None:
                    raise
                raise PartialResultError(
                    f"Pagination stopped after {len(all_data)} items: {e.message}",
                    label,
                    items_received=len(all_data)
                ) from e
            except (KeyError, TypeError, AttributeError) as e:
                if not all_data and cursor is None:
                    raise TransportError(
                        f"Unexpected response format: {e}", label
                    ) from e
                raise PartialResultError(
                    f"Unexpected page format after {len(all_data)} items: {e}",
                    label,
                    items_received=len(all_data)
                ) from e

            self.stats['pages_fetched'] += 1
            all_data.extend(items)

            if total is not None:
                total_items = total

            if next_cursor is None:
                break

            if next_cursor in seen_cursors:
                raise PartialResultError(
                    f"Cursor {next_cursor!r} repeated after {len(all_data)} items",
                    label,
                    items_received=len(all_data)
                )
            seen_cursors.add(next_cursor)
            cursor = next_cursor

            if total_items:
                progress = min(100, (len(all_data) / total_items) * 100)
                self.logger.debug(f"Progress: {len(all_data)}/{total_items} ({progress:.1f}%)")

        if total_items is not None and len(all_data) < total_items:
            raise PartialResultError(
                f"Received {len(all_data)} of {total_items} items",
                label,
                items_received=len(all_data)
            )

        return all_data

    def get_stats(self) -> Dict[str, Any]:
        """Return statistics about API requests."""
        stats = self.stats.copy()
        if stats['start_time'] and stats['end_time']:
            stats['duration_seconds'] = (
                stats['end_time'] - stats['start_time']
            ).total_seconds()
        return stats
