"""
Excel and CSV exporter for reconciliation results.
Uses xlsxwriter through pandas for the workbook.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from datetime import datetime

import pandas as pd

from ..processors.inventory import FetchOutcome, SourceName
from ..processors.normalizer import normalize_identity
from ..processors.reconciliation import ReconciliationResult


MISSING_COLUMNS = ['ComputerName', 'MissingFrom', 'PresentIn']


class ExcelExporter:
    """
    Writes the missing-device list, the comparison summary and the raw
    source inventories.
    """

    def __init__(
        self,
        output_path: Path,
        file_prefix: str = "inventory_reconciliation",
        branding: Optional[Dict[str, Any]] = None,
        strip_domain: bool = False
    ):
        self.output_path = Path(output_path)
        self.file_prefix = file_prefix
        self.branding = branding or {}
        self.strip_domain = strip_domain
        self.logger = logging.getLogger(f"inventory_recon.{self.__class__.__name__}")

        self.primary_color = self.branding.get('primary_color', '#1F4E79')

    def _get_filename(self, name: str, extension: str = "xlsx") -> Path:
        """Generate filename with date."""
        date_str = datetime.now().strftime("%Y-%m-%d")
        return self.output_path / f"{self.file_prefix}_{name}_{date_str}.{extension}"

    def _missing_frame(self, result: ReconciliationResult) -> pd.DataFrame:
        return pd.DataFrame(result.to_records(), columns=MISSING_COLUMNS)

    def _summary_frame(self, result: ReconciliationResult) -> pd.DataFrame:
        rows = []
        for comparison in result.comparisons:
            rows.append({
                'Comparison': comparison.comparison.description,
                'PresentIn': comparison.comparison.present_in.label,
                'MissingFrom': comparison.comparison.missing_from.label,
                'Status': comparison.status.value,
                'Count': len(comparison.hosts) if comparison.is_complete else None,
                'Reason': comparison.reason or ''
            })
        for label, count in result.source_counts:
            rows.append({
                'Comparison': f"{label} inventory",
                'PresentIn': '',
                'MissingFrom': '',
                'Status': 'collected' if count is not None else 'not collected',
                'Count': count,
                'Reason': ''
            })
        return pd.DataFrame(rows)

    def _write_sheet(self, writer, df: pd.DataFrame, sheet_name: str, header_format):
        df.to_excel(writer, sheet_name=sheet_name, index=False)

        worksheet = writer.sheets[sheet_name]
        for col_num, value in enumerate(df.columns.values):
            worksheet.write(0, col_num, value, header_format)
            if len(df):
                widths = df[value].map(lambda v: len(str(v)) if pd.notna(v) else 0)
                max_len = max(int(widths.max()), len(value)) + 2
            else:
                max_len = len(value) + 2
            worksheet.set_column(col_num, col_num, min(max_len, 50))

        if len(df.columns):
            worksheet.autofilter(0, 0, len(df), len(df.columns) - 1)
        worksheet.freeze_panes(1, 0)

    def export_reconciliation(
        self,
        result: ReconciliationResult,
        outcomes: Optional[Mapping[SourceName, FetchOutcome]] = None
    ) -> Path:
        """
        Export the reconciliation workbook.

        Sheets:
            Missing_Devices: ComputerName, MissingFrom, PresentIn
            Summary: one row per comparison and per source inventory
            <Source>_Inventory: raw and normalized hostnames per collected source
        """
        filename = self._get_filename("reconciliation")
        missing_df = self._missing_frame(result)
        self.logger.info(f"Exporting {len(missing_df)} missing device rows to {filename}")

        with pd.ExcelWriter(filename, engine='xlsxwriter') as writer:
            workbook = writer.book
            header_format = workbook.add_format({
                'bold': True,
                'bg_color': self.primary_color,
                'font_color': 'white',
                'border': 1
            })

            self._write_sheet(writer, missing_df, 'Missing_Devices', header_format)
            self._write_sheet(writer, self._summary_frame(result), 'Summary', header_format)

            for source, outcome in (outcomes or {}).items():
                if not outcome.succeeded:
                    continue
                inventory_df = pd.DataFrame({
                    'Hostname': list(outcome.inventory.hostnames),
                    'ComputerName': [
                        normalize_identity(h, self.strip_domain)
                        for h in outcome.inventory.hostnames
                    ]
                })
                self._write_sheet(
                    writer,
                    inventory_df,
                    f"{source.label}_Inventory"[:31],
                    header_format
                )

        self.logger.info(f"Reconciliation exported to {filename}")
        return filename

    def export_missing_csv(self, result: ReconciliationResult) -> Path:
        """Export the missing-device rows as CSV."""
        filename = self._get_filename("missing_devices", "csv")
        df = self._missing_frame(result)
        df.to_csv(filename, index=False)
        self.logger.info(f"Missing devices exported to {filename}")
        return filename
