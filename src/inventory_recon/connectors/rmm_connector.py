"""
RMM platform connector (NinjaOne public API v2).
Matches organizations by name substring and lists their managed devices.
"""

from typing import Any, Dict, List, Optional, Tuple

from ..errors import AuthenticationError, OrganizationLookupError, TransportError
from ..processors.inventory import SourceInventory, SourceName
from ..processors.normalizer import clean_string
from ..utils.credentials import Credentials
from .base_connector import BaseAsyncConnector, require_organization


def _id_cursor_parser(page_size: int):
    """
    Build a page parser for endpoints paginated with `after=<last id>`.
    A page shorter than page_size is the last one.
    """
    def parse(response: List[Dict[str, Any]]) -> Tuple[List[Any], Optional[Any], Optional[int]]:
        if not isinstance(response, list):
            raise TypeError(f"expected a list, got {type(response).__name__}")
        if len(response) < page_size:
            return response, None, None
        return response, response[-1]['id'], None
    return parse


class RmmConnector(BaseAsyncConnector):
    """
    Async connector for the NinjaOne RMM API.
    Authenticates with OAuth2 client credentials.
    """

    source = SourceName.RMM

    def __init__(
        self,
        instance_url: str,
        credentials: Credentials,
        scope: str = "monitoring",
        page_size: int = 1000,
        verify_ssl: bool = True,
        max_concurrent_requests: int = 4,
        timeout: int = 30,
        session=None
    ):
        self.instance_url = instance_url.rstrip('/')

        super().__init__(
            base_url=f"{self.instance_url}/v2",
            max_concurrent_requests=max_concurrent_requests,
            timeout=timeout,
            verify_ssl=verify_ssl,
            session=session
        )

        if not credentials.username or not credentials.secret:
            raise AuthenticationError("Client id and secret are required", self.source.label)

        self.client_id = credentials.username
        self.client_secret = credentials.secret
        self.scope = scope
        self.page_size = page_size

        self._access_token: Optional[str] = None

    def _get_auth_headers(self) -> Dict[str, str]:
        if not self._access_token:
            return {}
        return {'Authorization': f'Bearer {self._access_token}'}

    async def authenticate(self) -> str:
        """Obtain an access token using the client credentials grant."""
        try:
            response = await self._request(
                'POST',
                f"{self.instance_url}/ws/oauth/token",
                authenticated=False,
                headers={'Content-Type': 'application/x-www-form-urlencoded'},
                data={
                    'grant_type': 'client_credentials',
                    'client_id': self.client_id,
                    'client_secret': self.client_secret,
                    'scope': self.scope
                }
            )
        except TransportError as e:
            # token endpoint rejects bad clients with 400 invalid_client
            if e.status == 400:
                raise AuthenticationError(
                    f"Token request rejected: {e.message}", self.source.label
                ) from e
            raise

        token = response.get('access_token') if isinstance(response, dict) else None
        if not token:
            raise AuthenticationError("Token response has no access_token", self.source.label)

        self._access_token = token
        return token

    async def test_connection(self) -> bool:
        """Test connection by requesting a token and one organization."""
        try:
            await self._create_session()
            await self.authenticate()
            await self._request(
                'GET',
                f"{self.base_url}/organizations",
                params={'pageSize': 1}
            )
            return True
        except Exception as e:
            self.logger.error(f"Connection test failed: {e}")
            return False

    async def find_organizations(self, organization: str) -> List[Dict[str, Any]]:
        """Return organizations whose name contains the filter (case-insensitive)."""
        wanted = require_organization(organization, self.source.label).lower()
        organizations = await self._cursor_paginated_fetch(
            endpoint="/organizations",
            parse_page=_id_cursor_parser(self.page_size),
            params={'pageSize': self.page_size},
            cursor_param="after"
        )

        matches = [
            org for org in organizations
            if wanted in clean_string(org.get('name')).lower()
        ]

        if not matches:
            raise OrganizationLookupError(
                f"No organization name contains '{organization}'", self.source.label
            )

        return matches

    async def fetch_inventory(self, organization: str) -> SourceInventory:
        """
        Fetch the system names of every device in the matching organizations.

        Returns:
            SourceInventory of device names (possibly empty)
        """
        organization = require_organization(organization, self.source.label)

        if not self._access_token:
            await self.authenticate()

        matches = await self.find_organizations(organization)
        self.logger.info(
            f"Matched {len(matches)} organization(s): "
            f"{[org.get('name') for org in matches]}"
        )

        hostnames = []
        for org in matches:
            devices = await self._cursor_paginated_fetch(
                endpoint=f"/organization/{org['id']}/devices",
                parse_page=_id_cursor_parser(self.page_size),
                params={'pageSize': self.page_size},
                cursor_param="after",
                lookup_on_404=True
            )
            self.logger.info(f"Organization '{org.get('name')}': {len(devices)} devices")

            hostnames.extend(
                device.get('systemName') or device.get('dnsName')
                for device in devices
            )

        return SourceInventory.from_records(self.source, organization, hostnames)


async def create_rmm_connector(config, credential_provider) -> RmmConnector:
    """Factory function to create an RMM connector from config."""
    section = config.rmm
    return RmmConnector(
        instance_url=section.instance_url,
        credentials=credential_provider.get_credentials(SourceName.RMM),
        scope=section.scope,
        page_size=section.page_size,
        verify_ssl=section.verify_ssl,
        max_concurrent_requests=section.max_concurrent_requests,
        timeout=section.timeout
    )
