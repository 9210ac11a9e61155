"""
PDF report generation with reportlab.
"""
import io
from datetime import datetime
from decimal import Decimal
from typing import List, Dict, Any
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle
from reportlab.lib.enums import TA_CENTER

from stockroom.config import settings
from stockroom.utils.alerts import stock_status

class PDFReportGenerator:
    """Generate PDF exports of the stock reports."""

    def __init__(self):
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        """Setup custom paragraph styles."""
        self.styles.add(ParagraphStyle(
            name='ReportTitle',
            parent=self.styles['Heading1'],
            fontSize=22,
            alignment=TA_CENTER,
            spaceAfter=24,
            textColor=colors.HexColor('#2c3e50')
        ))

        self.styles.add(ParagraphStyle(
            name='ReportSubtitle',
            parent=self.styles['Heading2'],
            fontSize=12,
            alignment=TA_CENTER,
            spaceAfter=16,
            textColor=colors.HexColor('#7f8c8d')
        ))

        self.styles.add(ParagraphStyle(
            name='SectionHeader',
            parent=self.styles['Heading2'],
            fontSize=14,
            spaceBefore=16,
            spaceAfter=8,
            textColor=colors.HexColor('#2980b9')
        ))

        self.styles.add(ParagraphStyle(
            name='NormalText',
            parent=self.styles['Normal'],
            fontSize=10,
            spaceAfter=6
        ))

        self.styles.add(ParagraphStyle(
            name='Footer',
            parent=self.styles['Normal'],
            fontSize=8,
            textColor=colors.gray,
            alignment=TA_CENTER
        ))

    def _table(self, data: List[List[str]], col_widths: List[float], header_color: str) -> Table:
        table = Table(data, colWidths=col_widths, repeatRows=1)
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor(header_color)),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('ALIGN', (0, 0), (-1, 0), 'CENTER'),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, 0), 9),
            ('BOTTOMPADDING', (0, 0), (-1, 0), 8),
            ('TEXTCOLOR', (0, 1), (-1, -1), colors.black),
            ('ALIGN', (2, 1), (-1, -1), 'RIGHT'),
            ('FONTNAME', (0, 1), (-1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 1), (-1, -1), 8),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.whitesmoke, colors.white]),
        ]))
        return table

    def generate_low_stock_report(self, report: Dict[str, Any]) -> bytes:
        """
        Render the low-stock report.

        Args:
            report: output of ReportAggregator.low_stock

        Returns:
            PDF bytes
        """
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=48,
            leftMargin=48,
            topMargin=60,
            bottomMargin=60
        )

        threshold = report.get('threshold', settings.LOW_STOCK_THRESHOLD)
        items = report.get('lowStockItems', [])
        story = []

        story.append(Paragraph("Low Stock Report", self.styles['ReportTitle']))
        story.append(Paragraph(
            f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')} | Threshold: below {threshold}",
            self.styles['ReportSubtitle']
        ))
        story.append(Spacer(1, 12))

        total_value = sum(Decimal(str(item.get('price', 0))) * item.get('quantity', 0) for item in items)
        out_of_stock = sum(1 for item in items if item.get('quantity', 0) <= 0)
        to_order = sum(item.get('suggested_order_qty', 0) for item in items)

        summary_text = f"""
        <b>Summary:</b><br/>
        Low Stock Items: {len(items)}<br/>
        Out of Stock: {out_of_stock}<br/>
        Value On Hand: {total_value:,.2f}<br/>
        Suggested Units To Order: {to_order}<br/>
        """
        story.append(Paragraph(summary_text, self.styles['NormalText']))

        story.append(Paragraph("Items To Reorder", self.styles['SectionHeader']))
        table_data = [['Code', 'Product', 'Qty', 'Status', 'Order', 'Out 30d', 'Last Restock']]
        for item in items:
            restocked = item.get('last_restock_date')
            table_data.append([
                item.get('code', ''),
                item.get('name', ''),
                str(item.get('quantity', 0)),
                stock_status(item.get('quantity', 0), threshold),
                str(item.get('suggested_order_qty', 0)),
                str(item.get('out_last_30_days', 0)),
                restocked.strftime('%Y-%m-%d') if isinstance(restocked, datetime) else (str(restocked)[:10] if restocked else '-'),
            ])
        story.append(self._table(
            table_data,
            [0.9*inch, 2.2*inch, 0.5*inch, 0.8*inch, 0.6*inch, 0.7*inch, 1.0*inch],
            '#c0392b'
        ))

        summary_by_type = report.get('summaryByType', [])
        if summary_by_type:
            story.append(Paragraph("Summary by Type", self.styles['SectionHeader']))
            type_data = [['Type', 'Items', 'Total Qty', 'Value']]
            for entry in summary_by_type:
                type_data.append([
                    entry.get('type', ''),
                    str(entry.get('low_stock_count', 0)),
                    str(entry.get('total_quantity', 0)),
                    f"{entry.get('total_value', 0):,.2f}",
                ])
            story.append(self._table(type_data, [2.5*inch, 1*inch, 1*inch, 1.2*inch], '#2c3e50'))

        story.append(Spacer(1, 24))
        story.append(Paragraph(f"{settings.APP_NAME} - Low Stock Report", self.styles['Footer']))

        doc.build(story)

        buffer.seek(0)
        return buffer.getvalue()

pdf_generator = PDFReportGenerator()
