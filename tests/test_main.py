"""
Tests for the reconciliation run orchestration.
"""

import asyncio
import sys

import pandas as pd
import pytest

from inventory_recon.connectors import create_endpoint_protection_connector
from inventory_recon.errors import AuthenticationError, TransportError
from inventory_recon.exporters import ExcelExporter
from inventory_recon.main import (
    EXIT_ERROR,
    EXIT_INDETERMINATE,
    EXIT_OK,
    InventoryReconciliationTool,
    main,
)
from inventory_recon.processors.inventory import SourceInventory, SourceName
from inventory_recon.utils.credentials import Credentials, StaticCredentialProvider


INVENTORIES = {
    SourceName.DIRECTORY: ["WKS01", "WKS02", "wks03"],
    SourceName.RMM: ["WKS01", "WKS03", "SRV01"],
    SourceName.ENDPOINT_PROTECTION: ["wks01", "wks03"],
}


class FakeConnector:
    """Connector double that replays a scripted sequence of results."""

    def __init__(self, source, script, calls):
        self.source = source
        self.script = script
        self.calls = calls

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    async def fetch_inventory(self, organization):
        attempt = len(self.calls[self.source])
        self.calls[self.source].append(organization)
        step = self.script[min(attempt, len(self.script) - 1)]
        if isinstance(step, Exception):
            raise step
        if isinstance(step, float):
            await asyncio.sleep(step)
            step = []
        return SourceInventory.from_records(self.source, organization, step)

    async def test_connection(self):
        return not any(isinstance(step, Exception) for step in self.script)

    def get_stats(self):
        return {}


def make_factories(scripts, calls):
    def factory_for(source):
        async def factory(config, credential_provider):
            return FakeConnector(source, scripts[source], calls)
        return factory
    return {source: factory_for(source) for source in SourceName}


def run_tool(config_path, overrides=None, generate_pdf=False, check=False):
    scripts = {source: [hosts] for source, hosts in INVENTORIES.items()}
    scripts.update(overrides or {})
    calls = {source: [] for source in SourceName}

    tool = InventoryReconciliationTool(
        config_path=config_path,
        credential_provider=StaticCredentialProvider({}),
        connector_factories=make_factories(scripts, calls),
        generate_pdf=generate_pdf
    )
    coroutine = tool.check_connections() if check else tool.run()
    return asyncio.run(coroutine), tool, calls


def extract_files(tmp_path, pattern):
    return list((tmp_path / 'outputs' / 'extracts').rglob(pattern))


class TestRun:
    """End-to-end runs with fake connectors."""

    def test_all_sources_succeed(self, base_config, write_config, tmp_path):
        """A complete run exits 0 and writes every output."""
        exit_code, tool, calls = run_tool(write_config(base_config), generate_pdf=True)

        assert exit_code == EXIT_OK
        assert tool.result.missing_from_directory.hosts == ("WKS02",)
        assert tool.result.missing_from_endpoint_protection.hosts == ("SRV01",)
        assert all(orgs == ["Contoso"] for orgs in calls.values())

        csv_files = extract_files(tmp_path, '*.csv')
        assert len(csv_files) == 1
        assert pd.read_csv(csv_files[0]).to_dict('records') == [
            {'ComputerName': 'WKS02', 'MissingFrom': 'RMM', 'PresentIn': 'Directory'},
            {'ComputerName': 'SRV01', 'MissingFrom': 'EndpointProtection', 'PresentIn': 'RMM'},
        ]
        assert len(extract_files(tmp_path, '*.xlsx')) == 1
        assert len(list((tmp_path / 'outputs' / 'reports').rglob('*.pdf'))) == 1

    def test_organization_override(self, base_config, write_config):
        """An explicit organization replaces the configured filter."""
        scripts = {source: [hosts] for source, hosts in INVENTORIES.items()}
        calls = {source: [] for source in SourceName}
        tool = InventoryReconciliationTool(
            config_path=write_config(base_config),
            organization="Fabrikam",
            credential_provider=StaticCredentialProvider({}),
            connector_factories=make_factories(scripts, calls),
            generate_pdf=False
        )

        asyncio.run(tool.run())

        assert calls[SourceName.RMM] == ["Fabrikam"]

    def test_failed_source_is_indeterminate(self, base_config, write_config, tmp_path):
        """An authentication failure is not retried and only affects its comparison."""
        overrides = {
            SourceName.ENDPOINT_PROTECTION: [AuthenticationError("denied", "EndpointProtection")]
        }
        exit_code, tool, calls = run_tool(write_config(base_config), overrides)

        assert exit_code == EXIT_INDETERMINATE
        assert len(calls[SourceName.ENDPOINT_PROTECTION]) == 1
        assert tool.result.missing_from_directory.is_complete
        assert not tool.result.missing_from_endpoint_protection.is_complete
        assert any('AuthenticationError' in e for e in tool.execution_stats['errors'])

        rows = pd.read_csv(extract_files(tmp_path, '*.csv')[0])
        assert list(rows['MissingFrom']) == ['RMM']

    def test_transport_error_is_retried(self, base_config, write_config):
        """A transient transport failure is retried by the caller."""
        overrides = {
            SourceName.RMM: [TransportError("reset", "RMM"), INVENTORIES[SourceName.RMM]]
        }
        exit_code, tool, calls = run_tool(write_config(base_config), overrides)

        assert exit_code == EXIT_OK
        assert len(calls[SourceName.RMM]) == 2

    def test_retries_exhausted(self, base_config, write_config):
        """After max_attempts the source is reported as failed."""
        overrides = {SourceName.RMM: [TransportError("reset", "RMM")]}
        exit_code, tool, calls = run_tool(write_config(base_config), overrides)

        assert exit_code == EXIT_INDETERMINATE
        assert len(calls[SourceName.RMM]) == 2
        assert tool.result.indeterminate == [
            tool.result.missing_from_directory,
            tool.result.missing_from_endpoint_protection,
        ]

    def test_source_timeout(self, base_config, write_config):
        """A source that exceeds the run timeout fails with a transport error."""
        base_config['run'] = {'source_timeout': 0.05}
        overrides = {SourceName.DIRECTORY: [1.0]}

        exit_code, tool, calls = run_tool(write_config(base_config), overrides)

        assert exit_code == EXIT_INDETERMINATE
        error = tool.outcomes[SourceName.DIRECTORY].error
        assert isinstance(error, TransportError)
        assert tool.result.missing_from_endpoint_protection.is_complete

    def test_abort_on_source_failure(self, base_config, write_config, tmp_path):
        """With abort_on_source_failure nothing is exported."""
        base_config['run'] = {'abort_on_source_failure': True}
        overrides = {SourceName.DIRECTORY: [AuthenticationError("bind", "Directory")]}

        exit_code, _, _ = run_tool(write_config(base_config), overrides)

        assert exit_code == EXIT_INDETERMINATE
        assert extract_files(tmp_path, '*.csv') == []
        assert extract_files(tmp_path, '*.xlsx') == []

    def test_disabled_source(self, base_config, write_config):
        """A disabled source is not fetched and its comparisons are indeterminate."""
        base_config['endpoint_protection']['enabled'] = False

        exit_code, tool, calls = run_tool(write_config(base_config))

        assert exit_code == EXIT_INDETERMINATE
        assert calls[SourceName.ENDPOINT_PROTECTION] == []
        assert "not collected" in tool.result.missing_from_endpoint_protection.reason

    def test_sequential_fetch(self, base_config, write_config):
        """parallel_fetch=False fetches sources one after another."""
        base_config['run'] = {'parallel_fetch': False}
        exit_code, tool, _ = run_tool(write_config(base_config))

        assert exit_code == EXIT_OK
        assert list(tool.outcomes) == list(SourceName)

    def test_missing_config(self, tmp_path):
        """A missing configuration file exits with an error."""
        exit_code, _, _ = run_tool(str(tmp_path / 'absent.yaml'))
        assert exit_code == EXIT_ERROR

    @pytest.mark.parametrize("organization", ["", "   "])
    def test_blank_organization_override(self, base_config, write_config, organization):
        """A blank organization override is a configuration error; nothing is fetched."""
        scripts = {source: [hosts] for source, hosts in INVENTORIES.items()}
        calls = {source: [] for source in SourceName}
        tool = InventoryReconciliationTool(
            config_path=write_config(base_config),
            organization=organization,
            credential_provider=StaticCredentialProvider({}),
            connector_factories=make_factories(scripts, calls),
            generate_pdf=False
        )

        exit_code = asyncio.run(tool.run())

        assert exit_code == EXIT_ERROR
        assert all(not orgs for orgs in calls.values())

    def test_organization_override_is_trimmed(self, base_config, write_config):
        """Whitespace around the override is removed before fetching."""
        scripts = {source: [hosts] for source, hosts in INVENTORIES.items()}
        calls = {source: [] for source in SourceName}
        tool = InventoryReconciliationTool(
            config_path=write_config(base_config),
            organization="  Fabrikam ",
            credential_provider=StaticCredentialProvider({}),
            connector_factories=make_factories(scripts, calls),
            generate_pdf=False
        )

        asyncio.run(tool.run())

        assert calls[SourceName.DIRECTORY] == ["Fabrikam"]

    def test_csv_written_when_workbook_fails(self, base_config, write_config, tmp_path, monkeypatch):
        """A failing workbook export does not prevent the CSV extract."""
        def broken(self, result, outcomes=None):
            raise RuntimeError("disk full")

        monkeypatch.setattr(ExcelExporter, 'export_reconciliation', broken)

        exit_code, tool, _ = run_tool(write_config(base_config))

        assert exit_code == EXIT_ERROR
        assert len(extract_files(tmp_path, '*.csv')) == 1
        assert any('Excel export error' in e for e in tool.execution_stats['errors'])

    def test_missing_credentials_fail_source(self, base_config, write_config, monkeypatch):
        """Environment credentials that are not set fail only that source."""
        monkeypatch.delenv('S1_API_TOKEN', raising=False)
        scripts = {source: [hosts] for source, hosts in INVENTORIES.items()}
        calls = {source: [] for source in SourceName}
        factories = make_factories(scripts, calls)
        factories[SourceName.ENDPOINT_PROTECTION] = create_endpoint_protection_connector

        tool = InventoryReconciliationTool(
            config_path=write_config(base_config),
            connector_factories=factories,
            generate_pdf=False
        )
        exit_code = asyncio.run(tool.run())

        assert exit_code == EXIT_INDETERMINATE
        assert 'S1_API_TOKEN' in tool.result.missing_from_endpoint_protection.reason


class TestCheckConnections:

    def test_all_ok(self, base_config, write_config):
        """Every source reachable exits 0."""
        exit_code, _, calls = run_tool(write_config(base_config), check=True)

        assert exit_code == EXIT_OK
        assert all(not orgs for orgs in calls.values())

    def test_one_failing(self, base_config, write_config):
        """Any unreachable source exits 1."""
        overrides = {SourceName.RMM: [TransportError("down", "RMM")]}
        exit_code, _, _ = run_tool(write_config(base_config), overrides, check=True)

        assert exit_code == EXIT_ERROR


def test_main_exits_with_run_code(tmp_path, monkeypatch):
    """The console entry point exits with the run's exit code."""
    monkeypatch.setattr(sys, 'argv', ['inventory-recon', '--config', str(tmp_path / 'absent.yaml')])

    with pytest.raises(SystemExit) as exc_info:
        main()

    assert exc_info.value.code == EXIT_ERROR


def test_static_credentials_reach_factory(base_config, write_config):
    """The injected credential provider is passed to connector factories."""
    seen = []

    async def factory(config, credential_provider):
        seen.append(credential_provider.get_credentials(SourceName.RMM))
        return FakeConnector(SourceName.RMM, [["A"]], {SourceName.RMM: []})

    base_config['directory']['enabled'] = False
    base_config['endpoint_protection']['enabled'] = False
    provider = StaticCredentialProvider({SourceName.RMM: Credentials('id', 'secret')})
    tool = InventoryReconciliationTool(
        config_path=write_config(base_config),
        credential_provider=provider,
        connector_factories={SourceName.RMM: factory},
        generate_pdf=False
    )

    asyncio.run(tool.run())

    assert seen == [Credentials('id', 'secret')]
