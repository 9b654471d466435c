"""
Tests for the endpoint protection (SentinelOne) connector.
"""

import asyncio

import pytest

from inventory_recon.connectors.endpoint_protection_connector import (
    EndpointProtectionConnector,
    create_endpoint_protection_connector,
)
from inventory_recon.errors import (
    AuthenticationError,
    OrganizationLookupError,
    PartialResultError,
    TransportError,
)
from inventory_recon.processors.inventory import SourceName
from inventory_recon.utils.config_loader import AppConfig
from inventory_recon.utils.credentials import Credentials, StaticCredentialProvider

from conftest import FakeResponse, FakeSession


CONSOLE = "https://s1.example.com"
SITES_URL = f"{CONSOLE}/web/api/v2.1/sites"
AGENTS_URL = f"{CONSOLE}/web/api/v2.1/agents"


def sites_page(*names):
    return {
        'data': {'sites': [{'id': str(100 + i), 'name': n} for i, n in enumerate(names)]},
        'pagination': {'nextCursor': None, 'totalItems': len(names)}
    }


def agents_page(names, next_cursor=None, total=None):
    return {
        'data': [{'computerName': n} for n in names],
        'pagination': {'nextCursor': next_cursor, 'totalItems': total}
    }


def make_connector(handler, **kwargs):
    session = FakeSession(handler)
    connector = EndpointProtectionConnector(
        CONSOLE, Credentials(secret='token-123'), session=session, **kwargs
    )
    return connector, session


class TestEndpointProtectionConnector:
    """Site lookup and agent listing."""

    def test_fetch_inventory_follows_pages(self):
        """All agent pages are collected for the matching site."""
        def handler(method, url, params):
            if url == SITES_URL:
                return FakeResponse(200, sites_page("Contoso Ltd", "Contoso"))
            if params.get('cursor') is None:
                return FakeResponse(200, agents_page(["WKS01", "wks02"], 'next-1', 3))
            return FakeResponse(200, agents_page([" WKS03 "], None, 3))

        connector, session = make_connector(handler)
        inventory = asyncio.run(connector.fetch_inventory("contoso"))

        assert inventory.source == SourceName.ENDPOINT_PROTECTION
        assert inventory.hostnames == ("WKS01", "wks02", " WKS03 ")

        agent_calls = [c for c in session.calls if c['url'] == AGENTS_URL]
        assert agent_calls[0]['params']['siteIds'] == '101'
        assert agent_calls[0]['params']['isDecommissioned'] == 'false'
        assert agent_calls[1]['params']['cursor'] == 'next-1'
        assert session.calls[0]['headers']['Authorization'] == 'ApiToken token-123'

    def test_include_decommissioned(self):
        """Decommissioned agents are requested when enabled."""
        def handler(method, url, params):
            if url == SITES_URL:
                return FakeResponse(200, sites_page("Contoso"))
            return FakeResponse(200, agents_page([]))

        connector, session = make_connector(handler, include_decommissioned=True)
        asyncio.run(connector.fetch_inventory("Contoso"))

        assert 'isDecommissioned' not in session.calls[-1]['params']

    def test_empty_site_is_empty_inventory(self):
        """A site with no agents is a successful empty result."""
        def handler(method, url, params):
            if url == SITES_URL:
                return FakeResponse(200, sites_page("Contoso"))
            return FakeResponse(200, agents_page([], None, 0))

        connector, _ = make_connector(handler)
        inventory = asyncio.run(connector.fetch_inventory("Contoso"))

        assert len(inventory) == 0

    def test_unknown_site(self):
        """No exact site name match raises OrganizationLookupError."""
        connector, _ = make_connector(
            lambda m, u, p: FakeResponse(200, sites_page("Contoso Ltd"))
        )
        with pytest.raises(OrganizationLookupError):
            asyncio.run(connector.fetch_inventory("Contoso"))

    def test_rejected_token(self):
        """401 surfaces as AuthenticationError."""
        connector, _ = make_connector(lambda m, u, p: FakeResponse(401))
        with pytest.raises(AuthenticationError):
            asyncio.run(connector.fetch_inventory("Contoso"))

    def test_blank_organization_rejected(self):
        """A blank site filter fails before any request is made."""
        connector, session = make_connector(lambda m, u, p: FakeResponse(200, sites_page("Contoso")))

        with pytest.raises(OrganizationLookupError):
            asyncio.run(connector.fetch_inventory("  "))
        assert session.calls == []

    def test_missing_token(self):
        """An empty token is rejected before any request."""
        with pytest.raises(AuthenticationError):
            EndpointProtectionConnector(CONSOLE, Credentials(secret=''))

    def test_truncated_agents(self):
        """Pagination ending short of totalItems is a partial result."""
        def handler(method, url, params):
            if url == SITES_URL:
                return FakeResponse(200, sites_page("Contoso"))
            return FakeResponse(200, agents_page(["A"], None, 2))

        connector, _ = make_connector(handler)
        with pytest.raises(PartialResultError):
            asyncio.run(connector.fetch_inventory("Contoso"))

    def test_server_error_is_transport(self):
        """5xx on the first request is a transport failure."""
        connector, _ = make_connector(lambda m, u, p: FakeResponse(500, text='boom'))
        with pytest.raises(TransportError):
            asyncio.run(connector.fetch_inventory("Contoso"))

    def test_factory_uses_provider(self, base_config):
        """The factory reads config and asks the provider for credentials."""
        config = AppConfig(**base_config)
        provider = StaticCredentialProvider({
            SourceName.ENDPOINT_PROTECTION: Credentials(secret='abc')
        })

        connector = asyncio.run(create_endpoint_protection_connector(config, provider))

        assert connector.base_url == f"{CONSOLE}/web/api/v2.1"
        assert connector.api_token == 'abc'
