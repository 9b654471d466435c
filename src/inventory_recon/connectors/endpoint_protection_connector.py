"""
Endpoint protection console connector (SentinelOne management API v2.1).
Resolves a site by exact name and lists the agents enrolled in it.
"""

from typing import Any, Dict, List, Optional, Tuple

from ..errors import AuthenticationError, OrganizationLookupError
from ..processors.inventory import SourceInventory, SourceName
from ..processors.normalizer import clean_string
from ..utils.credentials import Credentials
from .base_connector import BaseAsyncConnector, require_organization


def _parse_page(response: Dict[str, Any]) -> Tuple[List[Any], Optional[str], Optional[int]]:
    """Split a SentinelOne list response into (items, next cursor, total)."""
    data = response['data']
    pagination = response.get('pagination') or {}

    if isinstance(data, dict):
        # /sites wraps the list one level deeper
        data = data['sites']

    return data, pagination.get('nextCursor') or None, pagination.get('totalItems')


class EndpointProtectionConnector(BaseAsyncConnector):
    """
    Async connector for the SentinelOne management console.
    The organization maps onto a site with the same name.
    """

    source = SourceName.ENDPOINT_PROTECTION

    def __init__(
        self,
        console_url: str,
        credentials: Credentials,
        page_size: int = 1000,
        include_decommissioned: bool = False,
        verify_ssl: bool = True,
        max_concurrent_requests: int = 4,
        timeout: int = 30,
        session=None
    ):
        super().__init__(
            base_url=f"{console_url.rstrip('/')}/web/api/v2.1",
            max_concurrent_requests=max_concurrent_requests,
            timeout=timeout,
            verify_ssl=verify_ssl,
            session=session
        )

        if not credentials.secret:
            raise AuthenticationError("API token is empty", self.source.label)

        self.api_token = credentials.secret
        self.page_size = page_size
        self.include_decommissioned = include_decommissioned

    def _get_auth_headers(self) -> Dict[str, str]:
        return {'Authorization': f'ApiToken {self.api_token}'}

    async def test_connection(self) -> bool:
        """Test connection to the management console."""
        try:
            await self._create_session()
            await self._request(
                'GET',
                f"{self.base_url}/sites",
                params={'limit': 1}
            )
            return True
        except Exception as e:
            self.logger.error(f"Connection test failed: {e}")
            return False

    async def find_sites(self, organization: str) -> List[Dict[str, Any]]:
        """Return the sites whose name equals the organization (case-insensitive)."""
        sites = await self._cursor_paginated_fetch(
            endpoint="/sites",
            parse_page=_parse_page,
            params={'name': organization, 'limit': self.page_size}
        )

        wanted = organization.strip().lower()
        matches = [
            site for site in sites
            if clean_string(site.get('name')).lower() == wanted
        ]

        if not matches:
            raise OrganizationLookupError(
                f"No site named '{organization}'", self.source.label
            )

        return matches

    async def fetch_inventory(self, organization: str) -> SourceInventory:
        """
        Fetch the computer names of every agent in the organization's site.

        Returns:
            SourceInventory of agent computer names (possibly empty)
        """
        organization = require_organization(organization, self.source.label)
        self.logger.info(f"Looking up site '{organization}'...")

        sites = await self.find_sites(organization)
        site_ids = ','.join(str(site['id']) for site in sites)

        self.logger.info(f"Fetching agents for site id(s) {site_ids}...")

        params = {'siteIds': site_ids, 'limit': self.page_size}
        if not self.include_decommissioned:
            params['isDecommissioned'] = 'false'

        agents = await self._cursor_paginated_fetch(
            endpoint="/agents",
            parse_page=_parse_page,
            params=params
        )

        self.logger.info(f"Fetched {len(agents)} agents")

        return SourceInventory.from_records(
            self.source,
            organization,
            (agent.get('computerName') for agent in agents)
        )


async def create_endpoint_protection_connector(config, credential_provider) -> EndpointProtectionConnector:
    """Factory function to create an endpoint protection connector from config."""
    section = config.endpoint_protection
    return EndpointProtectionConnector(
        console_url=section.console_url,
        credentials=credential_provider.get_credentials(SourceName.ENDPOINT_PROTECTION),
        page_size=section.page_size,
        include_decommissioned=section.include_decommissioned,
        verify_ssl=section.verify_ssl,
        max_concurrent_requests=section.max_concurrent_requests,
        timeout=section.timeout
    )
