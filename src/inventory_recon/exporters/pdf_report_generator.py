"""
PDF summary report for a reconciliation run.
Uses reportlab for PDF generation and matplotlib for charts.
"""

import io
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch, mm
from reportlab.platypus import (
    SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle, Image
)
from reportlab.lib.enums import TA_CENTER

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from ..processors.reconciliation import ReconciliationResult


class PDFReportGenerator:
    """
    Generates the one-document reconciliation summary.
    """

    def __init__(
        self,
        output_path: Path,
        file_prefix: str = "inventory_reconciliation",
        branding: Optional[Dict[str, Any]] = None,
        top_n_items: int = 50
    ):
        self.output_path = Path(output_path)
        self.file_prefix = file_prefix
        self.branding = branding or {}
        self.top_n_items = top_n_items
        self.logger = logging.getLogger(f"inventory_recon.{self.__class__.__name__}")

        self.primary_hex = self.branding.get('primary_color', '#1F4E79')
        self.accent_hex = self.branding.get('accent_color', '#C00000')
        self.company = self.branding.get('company', 'Managed Services')
        self.footer_text = self.branding.get(
            'footer_text',
            'Confidential - Internal Use Only'
        )

        self._setup_styles()

    def _hex_to_rgb(self, hex_color: str) -> Tuple[float, float, float]:
        """Convert hex color to RGB tuple (0-1 range)."""
        hex_color = hex_color.lstrip('#')
        return tuple(int(hex_color[i:i+2], 16) / 255 for i in (0, 2, 4))

    def _hex_to_reportlab(self, hex_color: str) -> colors.Color:
        """Convert hex color to reportlab Color."""
        rgb = self._hex_to_rgb(hex_color)
        return colors.Color(rgb[0], rgb[1], rgb[2])

    def _setup_styles(self):
        """Set up paragraph styles."""
        self.styles = getSampleStyleSheet()

        self.styles.add(ParagraphStyle(
            name='CustomTitle',
            parent=self.styles['Title'],
            fontSize=22,
            textColor=self._hex_to_reportlab(self.primary_hex),
            spaceAfter=20,
            alignment=TA_CENTER
        ))

        self.styles.add(ParagraphStyle(
            name='CustomHeading1',
            parent=self.styles['Heading1'],
            fontSize=15,
            textColor=self._hex_to_reportlab(self.primary_hex),
            spaceBefore=16,
            spaceAfter=8
        ))

        self.styles.add(ParagraphStyle(
            name='Warning',
            parent=self.styles['Normal'],
            fontSize=10,
            leading=14,
            textColor=self._hex_to_reportlab(self.accent_hex),
            spaceAfter=6
        ))

        self.styles.add(ParagraphStyle(
            name='KPIValue',
            parent=self.styles['Normal'],
            fontSize=24,
            textColor=self._hex_to_reportlab(self.primary_hex),
            alignment=TA_CENTER,
            spaceAfter=2
        ))

        self.styles.add(ParagraphStyle(
            name='KPILabel',
            parent=self.styles['Normal'],
            fontSize=9,
            textColor=colors.gray,
            alignment=TA_CENTER
        ))

    def _get_filename(self, name: str) -> Path:
        """Generate filename with date."""
        date_str = datetime.now().strftime("%Y-%m-%d")
        return self.output_path / f"{self.file_prefix}_{name}_{date_str}.pdf"

    def _add_header_footer(self, canvas, doc):
        """Add header and footer to each page."""
        canvas.saveState()

        page_width, page_height = A4

        canvas.setFillColor(self._hex_to_reportlab(self.primary_hex))
        canvas.rect(0, page_height - 20*mm, page_width, 20*mm, fill=True, stroke=False)

        canvas.setFillColor(colors.white)
        canvas.setFont('Helvetica-Bold', 13)
        canvas.drawString(15*mm, page_height - 13*mm, self.company)

        date_str = datetime.now().strftime("%Y-%m-%d")
        canvas.setFont('Helvetica', 10)
        canvas.drawRightString(page_width - 15*mm, page_height - 13*mm, date_str)

        canvas.setFillColor(colors.gray)
        canvas.setFont('Helvetica', 8)
        canvas.drawString(15*mm, 12*mm, self.footer_text)
        canvas.drawRightString(page_width - 15*mm, 12*mm, f"Page {doc.page}")

        canvas.restoreState()

    def _create_bar_chart(
        self,
        data: Dict[str, int],
        title: str,
        width: float = 6,
        height: float = 2.5
    ) -> Image:
        """Create a horizontal bar chart and return as reportlab Image."""
        fig, ax = plt.subplots(figsize=(width, height))

        labels = list(data.keys())
        values = list(data.values())

        bars = ax.barh(labels, values, color=self.primary_hex)
        ax.set_xlabel("Devices")
        ax.invert_yaxis()
        ax.set_title(title, fontsize=11, fontweight='bold', color=self.primary_hex)

        for bar, val in zip(bars, values):
            ax.text(bar.get_width() + 0.2, bar.get_y() + bar.get_height()/2,
                    f'{val:,}', va='center', fontsize=8)

        plt.tight_layout()

        buf = io.BytesIO()
        plt.savefig(buf, format='png', dpi=150, bbox_inches='tight')
        plt.close(fig)
        buf.seek(0)

        return Image(buf, width=width*inch, height=height*inch)

    def _create_kpi_table(self, kpis: List[Tuple[str, str]]) -> Table:
        """Create a KPI display table."""
        row_values = [Paragraph(str(value), self.styles['KPIValue']) for value, _ in kpis]
        row_labels = [Paragraph(label, self.styles['KPILabel']) for _, label in kpis]

        col_width = 450 / len(kpis)
        table = Table([row_values, row_labels], colWidths=[col_width] * len(kpis))

        table.setStyle(TableStyle([
            ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('GRID', (0, 0), (-1, -1), 1, colors.lightgrey),
            ('BACKGROUND', (0, 0), (-1, -1), colors.whitesmoke),
            ('TOPPADDING', (0, 0), (-1, -1), 8),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 8),
        ]))

        return table

    def _create_data_table(
        self,
        headers: List[str],
        data: List[List[Any]],
        col_widths: Optional[List[float]] = None
    ) -> Table:
        """Create a styled data table."""
        table = Table([headers] + data, colWidths=col_widths, repeatRows=1)

        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), self._hex_to_reportlab(self.primary_hex)),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, 0), 9),
            ('FONTSIZE', (0, 1), (-1, -1), 8),
            ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.whitesmoke]),
            ('TOPPADDING', (0, 0), (-1, -1), 4),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
        ]))

        return table

    def _chart_data(self, result: ReconciliationResult) -> Dict[str, int]:
        """One bar per complete comparison, labelled by its direction."""
        return {
            r.comparison.description: len(r.hosts)
            for r in result.comparisons if r.is_complete
        }

    def generate_summary_report(
        self,
        result: ReconciliationResult,
        organization: str
    ) -> Path:
        """Generate the reconciliation summary PDF."""
        filename = self._get_filename("summary")
        self.logger.info(f"Generating summary report: {filename}")

        doc = SimpleDocTemplate(
            str(filename),
            pagesize=A4,
            topMargin=30*mm,
            bottomMargin=25*mm
        )

        story = [
            Paragraph("Endpoint Inventory Reconciliation", self.styles['CustomTitle']),
            Paragraph(f"Organization: <b>{escape(organization)}</b>", self.styles['Normal']),
            Spacer(1, 12)
        ]

        kpis = []
        for label, count in result.source_counts:
            kpis.append((f"{count:,}" if count is not None else "n/a", f"{label} devices"))
        kpis.append((f"{result.total_missing:,}", "Missing entries"))
        story.append(self._create_kpi_table(kpis))

        story.append(Paragraph("Comparisons", self.styles['CustomHeading1']))
        comparison_rows = [
            [
                r.comparison.description,
                r.status.value,
                str(len(r.hosts)) if r.is_complete else '-'
            ]
            for r in result.comparisons
        ]
        story.append(self._create_data_table(
            ['Comparison', 'Status', 'Devices'],
            comparison_rows,
            col_widths=[250, 120, 80]
        ))

        for r in result.indeterminate:
            story.append(Spacer(1, 6))
            story.append(Paragraph(
                escape(f"{r.comparison.description} could not be determined: {r.reason}"),
                self.styles['Warning']
            ))

        chart_data = self._chart_data(result)
        if chart_data:
            story.append(Spacer(1, 12))
            story.append(self._create_bar_chart(chart_data, "Missing devices by comparison"))

        records = result.to_records()
        if records:
            story.append(Paragraph("Missing Devices", self.styles['CustomHeading1']))
            rows = [
                [rec['ComputerName'], rec['MissingFrom'], rec['PresentIn']]
                for rec in records[:self.top_n_items]
            ]
            story.append(self._create_data_table(
                ['ComputerName', 'MissingFrom', 'PresentIn'],
                rows,
                col_widths=[200, 125, 125]
            ))
            if len(records) > self.top_n_items:
                story.append(Paragraph(
                    f"Showing {self.top_n_items} of {len(records)} entries; "
                    "see the Excel extract for the full list.",
                    self.styles['Normal']
                ))

        doc.build(
            story,
            onFirstPage=self._add_header_footer,
            onLaterPages=self._add_header_footer
        )

        self.logger.info(f"Summary report generated: {filename}")
        return filename
