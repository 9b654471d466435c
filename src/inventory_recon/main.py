#!/usr/bin/env python3
"""
Endpoint Inventory Reconciliation - Main Entry Point

This script collects device inventories for one client organization from
Active Directory, the endpoint protection console and the RMM platform,
reconciles them, and exports the devices each source is missing.

Usage:
    inventory-recon [--config CONFIG_PATH] [--organization NAME] [--check]

Environment Variables:
    AD_BIND_USER / AD_BIND_PASSWORD: Directory bind account
    S1_API_TOKEN: Endpoint protection API token
    NINJA_CLIENT_ID / NINJA_CLIENT_SECRET: RMM OAuth client
"""

import asyncio
import argparse
import os
import sys
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from .connectors import (
    create_directory_connector,
    create_endpoint_protection_connector,
    create_rmm_connector
)
from .errors import InventoryError, PartialResultError, TransportError
from .exporters import ExcelExporter, PDFReportGenerator
from .processors import (
    FetchOutcome,
    InventoryReconciler,
    ReconciliationResult,
    SourceName,
    count_duplicates
)
from .utils import (
    CredentialProvider,
    EnvironmentCredentialProvider,
    create_output_directories,
    credential_env_vars,
    load_config,
    setup_logger
)


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INDETERMINATE = 2

ConnectorFactory = Callable[[Any, CredentialProvider], Awaitable[Any]]

CONNECTOR_FACTORIES: Dict[SourceName, ConnectorFactory] = {
    SourceName.DIRECTORY: create_directory_connector,
    SourceName.ENDPOINT_PROTECTION: create_endpoint_protection_connector,
    SourceName.RMM: create_rmm_connector,
}

RETRYABLE_ERRORS = (TransportError, PartialResultError)


class InventoryReconciliationTool:
    """
    Main orchestrator for the inventory reconciliation run.
    """

    def __init__(
        self,
        config_path: str = "config/config.yaml",
        organization: Optional[str] = None,
        credential_provider: Optional[CredentialProvider] = None,
        connector_factories: Optional[Dict[SourceName, ConnectorFactory]] = None,
        generate_pdf: bool = True
    ):
        self.config_path = config_path
        self.organization = organization
        self.credential_provider = credential_provider
        self.connector_factories = connector_factories or CONNECTOR_FACTORIES
        self.generate_pdf = generate_pdf

        self.config = None
        self.logger = None
        self.extracts_path = None
        self.reports_path = None

        self.outcomes: Dict[SourceName, FetchOutcome] = {}
        self.result: Optional[ReconciliationResult] = None

        self.execution_stats = {
            'start_time': None,
            'end_time': None,
            'fetch_times': {},
            'reconciliation_time': None,
            'export_time': None,
            'errors': []
        }

    def initialize(self) -> bool:
        """Initialize configuration and logging."""
        try:
            self.config = load_config(self.config_path)
            env_vars = credential_env_vars(self.config)

            self.logger = setup_logger(
                name="inventory_recon",
                level=self.config.logging.level,
                log_file=self.config.logging.file,
                max_size_mb=self.config.logging.max_size_mb,
                backup_count=self.config.logging.backup_count,
                log_format=self.config.logging.format,
                secrets=[os.environ.get(secret_var) for _, secret_var in env_vars.values()]
            )

            self.extracts_path, self.reports_path = create_output_directories(self.config)

            if self.organization is None:
                self.organization = self.config.filtering.organization
            elif not self.organization.strip():
                raise ValueError("organization must not be empty")
            else:
                self.organization = self.organization.strip()

            if self.credential_provider is None:
                self.credential_provider = EnvironmentCredentialProvider(env_vars)

            self.logger.info("=" * 60)
            self.logger.info("Endpoint Inventory Reconciliation - Starting")
            self.logger.info("=" * 60)
            self.logger.info(f"Configuration loaded from: {self.config_path}")
            self.logger.info(f"Extracts output: {self.extracts_path}")
            self.logger.info(f"Reports output: {self.reports_path}")
            self.logger.info(f"Organization: {self.organization}")
            self.logger.info(
                f"Enabled sources: {[s.label for s in self.config.enabled_sources()]}"
            )

            return True

        except FileNotFoundError as e:
            print(f"ERROR: Configuration file not found: {e}")
            return False
        except ValueError as e:
            print(f"ERROR: Configuration validation failed: {e}")
            return False
        except Exception as e:
            print(f"ERROR: Initialization failed: {e}")
            return False

    async def _fetch_once(self, source: SourceName):
        connector = await self.connector_factories[source](
            self.config, self.credential_provider
        )
        async with connector:
            try:
                inventory = await asyncio.wait_for(
                    connector.fetch_inventory(self.organization),
                    timeout=self.config.run.source_timeout
                )
            except asyncio.TimeoutError as e:
                raise TransportError(
                    f"No result within {self.config.run.source_timeout}s", source.label
                ) from e
            self.logger.debug(f"{source.label} request stats: {connector.get_stats()}")
        return inventory

    async def fetch_source(self, source: SourceName) -> FetchOutcome:
        """
        Fetch one source, retrying transport and pagination failures with
        exponential backoff. Other failures are returned immediately.
        """
        retry = self.config.retry
        delay = retry.initial_delay
        start_time = datetime.now()

        self.logger.info(f"Fetching {source.label} inventory...")

        for attempt in range(1, retry.max_attempts + 1):
            try:
                inventory = await self._fetch_once(source)
                outcome = FetchOutcome.ok(inventory)
                self.logger.info(f"Fetched {len(inventory)} devices from {source.label}")
                duplicates = count_duplicates(
                    inventory.hostnames, self.config.normalization.strip_domain
                )
                if duplicates:
                    self.logger.warning(
                        f"{source.label} returned {len(duplicates)} duplicated hostname(s): "
                        f"{sorted(duplicates)[:10]}"
                    )
                break

            except RETRYABLE_ERRORS as e:
                self.logger.warning(
                    f"{source.label} fetch failed: {e}. Attempt {attempt}/{retry.max_attempts}"
                )
                outcome = FetchOutcome.failed(source, e)
                if attempt < retry.max_attempts:
                    await asyncio.sleep(delay)
                    delay = min(delay * retry.backoff_multiplier, retry.max_delay)

            except InventoryError as e:
                self.logger.error(f"{source.label} fetch failed: {e}")
                outcome = FetchOutcome.failed(source, e)
                break

            except Exception as e:
                self.logger.error(f"Unexpected error fetching {source.label}: {e}", exc_info=True)
                outcome = FetchOutcome.failed(
                    source, InventoryError(f"Unexpected error: {e}", source.label)
                )
                break

        self.execution_stats['fetch_times'][source.label] = (
            datetime.now() - start_time
        ).total_seconds()

        if not outcome.succeeded:
            self.execution_stats['errors'].append(outcome.describe_failure())

        return outcome

    async def fetch_all(self) -> Dict[SourceName, FetchOutcome]:
        """Fetch every enabled source, concurrently unless configured otherwise."""
        self.logger.info("-" * 40)
        sources = self.config.enabled_sources()

        if self.config.run.parallel_fetch:
            outcomes = await asyncio.gather(*(self.fetch_source(s) for s in sources))
        else:
            outcomes = [await self.fetch_source(s) for s in sources]

        self.outcomes = {outcome.source: outcome for outcome in outcomes}
        return self.outcomes

    def reconcile_data(self) -> bool:
        """Reconcile the collected inventories."""
        self.logger.info("-" * 40)
        self.logger.info("Reconciling inventories...")

        start_time = datetime.now()

        try:
            reconciler = InventoryReconciler(
                comparisons=self.config.run.get_comparisons(),
                strip_domain=self.config.normalization.strip_domain
            )
            self.result = reconciler.reconcile(self.outcomes)

            self.execution_stats['reconciliation_time'] = (
                datetime.now() - start_time
            ).total_seconds()

            for comparison in self.result.indeterminate:
                self.logger.warning(
                    f"Indeterminate: {comparison.comparison.description} - {comparison.reason}"
                )

            self.logger.info(f"Reconciliation complete: {self.result.total_missing} missing entries")
            return True

        except Exception as e:
            self.logger.error(f"Error during reconciliation: {e}", exc_info=True)
            self.execution_stats['errors'].append(f"Reconciliation error: {str(e)}")
            return False

    def generate_exports(self) -> bool:
        """Generate the CSV extract and the Excel workbook."""
        self.logger.info("-" * 40)
        self.logger.info("Generating extracts...")

        start_time = datetime.now()

        exporter = ExcelExporter(
            output_path=self.extracts_path,
            file_prefix=self.config.output.file_prefix,
            branding={'primary_color': self.config.branding.primary_color},
            strip_domain=self.config.normalization.strip_domain
        )

        exports = []
        if self.config.output.export_csv:
            exports.append(('CSV', lambda: exporter.export_missing_csv(self.result)))
        if self.config.reports.generate.get('excel', True):
            exports.append(('Excel', lambda: exporter.export_reconciliation(
                self.result,
                self.outcomes if self.config.output.export_inventories else None
            )))

        all_ok = True
        # one try per sink
        for name, export in exports:
            try:
                export()
            except Exception as e:
                self.logger.error(f"Error generating {name} export: {e}", exc_info=True)
                self.execution_stats['errors'].append(f"{name} export error: {str(e)}")
                all_ok = False

        self.execution_stats['export_time'] = (
            datetime.now() - start_time
        ).total_seconds()

        if all_ok:
            self.logger.info("Extracts generated successfully")
        return all_ok

    def generate_reports(self) -> bool:
        """Generate the PDF summary."""
        if not self.generate_pdf or not self.config.reports.generate.get('pdf_summary', True):
            return True

        self.logger.info("-" * 40)
        self.logger.info("Generating PDF summary...")

        try:
            generator = PDFReportGenerator(
                output_path=self.reports_path,
                file_prefix=self.config.output.file_prefix,
                branding=self.config.branding.dict(),
                top_n_items=self.config.reports.top_n_items
            )
            generator.generate_summary_report(self.result, self.organization)
            return True

        except Exception as e:
            self.logger.error(f"Error generating reports: {e}", exc_info=True)
            self.execution_stats['errors'].append(f"Report generation error: {str(e)}")
            return False

    async def check_connections(self) -> int:
        """Test connectivity to every enabled source without fetching inventories."""
        if not self.initialize():
            return EXIT_ERROR

        all_ok = True
        for source in self.config.enabled_sources():
            try:
                connector = await self.connector_factories[source](
                    self.config, self.credential_provider
                )
                async with connector:
                    ok = await connector.test_connection()
            except InventoryError as e:
                self.logger.error(f"{source.label}: {e}")
                ok = False

            self.logger.info(f"{source.label}: {'OK' if ok else 'FAILED'}")
            all_ok = all_ok and ok

        return EXIT_OK if all_ok else EXIT_ERROR

    async def run(self) -> int:
        """Run the complete reconciliation workflow and return an exit code."""
        self.execution_stats['start_time'] = datetime.now()

        if not self.initialize():
            return EXIT_ERROR

        try:
            await self.fetch_all()

            if not self.reconcile_data():
                self.logger.error("Failed to reconcile data. Aborting.")
                return EXIT_ERROR

            if not self.result.is_complete and self.config.run.abort_on_source_failure:
                self.logger.error(
                    "Aborting before export: at least one comparison is indeterminate"
                )
                self.execution_stats['end_time'] = datetime.now()
                self._log_summary()
                return EXIT_INDETERMINATE

            exports_ok = self.generate_exports()
            if not exports_ok:
                self.logger.warning("Export had errors but continuing...")

            reports_ok = self.generate_reports()
            if not reports_ok:
                self.logger.warning("PDF report generation had errors but continuing...")

            self.execution_stats['end_time'] = datetime.now()

            self._log_summary()

            if not (exports_ok and reports_ok):
                return EXIT_ERROR
            if not self.result.is_complete:
                return EXIT_INDETERMINATE
            return EXIT_OK

        except Exception as e:
            self.logger.error(f"Unexpected error during execution: {e}", exc_info=True)
            return EXIT_ERROR

    def _log_summary(self):
        """Log execution summary."""
        duration = (
            self.execution_stats['end_time'] -
            self.execution_stats['start_time']
        ).total_seconds()

        self.logger.info("=" * 60)
        self.logger.info("EXECUTION SUMMARY")
        self.logger.info("=" * 60)
        self.logger.info(f"Total duration: {duration:.2f} seconds")
        for label, seconds in self.execution_stats['fetch_times'].items():
            self.logger.info(f"{label} fetch: {seconds:.2f}s")
        self.logger.info(f"Reconciliation: {self.execution_stats.get('reconciliation_time') or 0:.2f}s")
        self.logger.info(f"Export generation: {self.execution_stats.get('export_time') or 0:.2f}s")
        self.logger.info("-" * 40)
        for label, count in self.result.source_counts:
            self.logger.info(f"{label} devices: {count if count is not None else 'not collected'}")
        for comparison in self.result.comparisons:
            count = len(comparison.hosts) if comparison.is_complete else 'indeterminate'
            self.logger.info(f"{comparison.comparison.description}: {count}")
        self.logger.info("-" * 40)
        self.logger.info(f"Extracts saved to: {self.extracts_path}")
        self.logger.info(f"Reports saved to: {self.reports_path}")

        if self.execution_stats['errors']:
            self.logger.warning("-" * 40)
            self.logger.warning(f"Errors encountered: {len(self.execution_stats['errors'])}")
            for error in self.execution_stats['errors']:
                self.logger.warning(f"  - {error}")

        self.logger.info("=" * 60)
        self.logger.info("Execution complete")
        self.logger.info("=" * 60)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Endpoint Inventory Reconciliation - compare Directory, RMM and "
                    "endpoint protection inventories for one organization"
    )
    parser.add_argument(
        "--config", "-c",
        default="config/config.yaml",
        help="Path to configuration file (default: config/config.yaml)"
    )
    parser.add_argument(
        "--organization", "-o",
        default=None,
        help="Organization/client name (overrides filtering.organization)"
    )
    parser.add_argument(
        "--no-pdf",
        action="store_true",
        help="Skip the PDF summary report"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only test connectivity to the enabled sources"
    )

    args = parser.parse_args()

    tool = InventoryReconciliationTool(
        config_path=args.config,
        organization=args.organization,
        generate_pdf=not args.no_pdf
    )

    if args.check:
        exit_code = asyncio.run(tool.check_connections())
    else:
        exit_code = asyncio.run(tool.run())

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
