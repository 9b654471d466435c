"""
Pytest configuration and shared fixtures.

Provides:
- FakeResponse / FakeSession: stand-ins for the aiohttp session used by connectors
- FakeLdapConnection: stand-in for an ldap3 Connection with paged results
- write_config: writes a YAML configuration into tmp_path
"""

from typing import Any, Callable, Dict, List, Optional

import pytest
import yaml

from inventory_recon.processors.inventory import FetchOutcome, SourceInventory, SourceName


class FakeResponse:
    """Minimal async response returned by FakeSession.request()."""

    def __init__(
        self,
        status: int = 200,
        payload: Any = None,
        headers: Optional[Dict[str, str]] = None,
        text: str = ''
    ):
        self.status = status
        self.payload = payload
        self.headers = headers or {}
        self._text = text

    async def json(self):
        return self.payload

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeSession:
    """
    Routes requests to a handler(method, url, params) that returns a
    FakeResponse or an exception instance to raise.
    """

    def __init__(self, handler: Callable[[str, str, Dict[str, Any]], Any]):
        self.handler = handler
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.calls.append({'method': method, 'url': url, **kwargs})
        result = self.handler(method, url, dict(kwargs.get('params') or {}))
        if isinstance(result, BaseException):
            raise result
        return result

    async def close(self):
        self.closed = True


class FakeLdapConnection:
    """
    Serves pre-built pages of search entries, following the paged-results
    cookie the way ldap3 reports it.
    """

    def __init__(self, pages: List[List[Dict[str, Any]]], result_codes=None, raise_on_page=None):
        self.pages = pages
        self.result_codes = result_codes or {}
        self.raise_on_page = raise_on_page or {}
        self.searches: List[Dict[str, Any]] = []
        self.result = None
        self.response = None
        self.unbound = False

    def search(self, search_base, search_filter, **kwargs):
        page_index = len(self.searches)
        self.searches.append({'search_base': search_base, 'search_filter': search_filter, **kwargs})

        if page_index in self.raise_on_page:
            raise self.raise_on_page[page_index]

        code = self.result_codes.get(page_index, 0)
        entries = self.pages[page_index] if page_index < len(self.pages) else []
        has_more = page_index + 1 < len(self.pages)

        self.response = [
            {'type': 'searchResEntry', 'attributes': attributes}
            for attributes in entries
        ] + [{'type': 'searchResRef', 'uri': ['ldap://other']}]
        self.result = {
            'result': code,
            'description': 'success' if code == 0 else 'error',
            'controls': {
                '1.2.840.113556.1.4.319': {
                    'value': {'size': 0, 'cookie': f'page-{page_index + 1}'.encode() if has_more else b''}
                }
            }
        }
        return code == 0 and bool(entries)

    def unbind(self):
        self.unbound = True


@pytest.fixture
def make_outcome():
    """Build a successful FetchOutcome from a list of hostnames."""
    def _make(source: SourceName, hostnames, organization: str = "Contoso"):
        return FetchOutcome.ok(SourceInventory.from_records(source, organization, hostnames))
    return _make


@pytest.fixture
def base_config() -> Dict[str, Any]:
    """Configuration dictionary with all three sources enabled."""
    return {
        'filtering': {'organization': 'Contoso'},
        'directory': {
            'host': 'dc01.example.local',
            'base_dn': 'DC=example,DC=local',
            'search_base_template': 'OU={organization},OU=Clients,{base_dn}'
        },
        'endpoint_protection': {'console_url': 'https://s1.example.com'},
        'rmm': {'instance_url': 'https://rmm.example.com'},
        'retry': {'max_attempts': 2, 'initial_delay': 0, 'max_delay': 0},
    }


@pytest.fixture
def write_config(tmp_path):
    """Write a configuration dictionary to YAML with outputs under tmp_path."""
    def _write(config: Dict[str, Any]) -> str:
        config = dict(config)
        config.setdefault('output', {'base_path': str(tmp_path / 'outputs')})
        config.setdefault('logging', {'file': str(tmp_path / 'logs' / 'test.log')})
        path = tmp_path / 'config.yaml'
        path.write_text(yaml.safe_dump(config), encoding='utf-8')
        return str(path)
    return _write
