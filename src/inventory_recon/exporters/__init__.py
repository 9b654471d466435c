"""Export modules for Excel, CSV and PDF generation."""

from .excel_exporter import ExcelExporter
from .pdf_report_generator import PDFReportGenerator

__all__ = [
    'ExcelExporter',
    'PDFReportGenerator'
]
