"""
Document assembly for quotes.

Quotes are laid out in code with reportlab platypus: a page header with
the brand mark and document label, quote details, customer block, pricing
table, right-aligned total, notes, and a footer with page numbers and a
confidentiality notice. Preview renders carry a banner and a diagonal
PREVIEW watermark on every page.

Rendering is a pure function of the QuoteDocument, the layout and the
branding: no database access, and PDFs are written in reportlab's
invariant mode so identical input produces identical bytes.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from functools import partial
from io import BytesIO
from typing import List, Optional, Tuple
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

from proposals.exceptions import DocumentGenerationError

logger = logging.getLogger(__name__)

BRAND_RED = colors.HexColor('#E60000')
DARK_GREY = colors.HexColor('#333333')
MEDIUM_GREY = colors.HexColor('#666666')
LIGHT_GREY = colors.HexColor('#F4F4F4')
BORDER_GREY = colors.HexColor('#E0E0E0')
ALT_ROW_BG = colors.HexColor('#FFF5F5')
PREVIEW_BG = colors.HexColor('#FFF3CD')
PREVIEW_TEXT = colors.HexColor('#856404')

CONFIDENTIALITY_NOTICE = "This document is confidential and intended for the named recipient only."
PREVIEW_NOTICE = "PREVIEW - This document has not been finalised."
DATE_FORMAT = '%d %B %Y'

PRICING_HEADERS = ['Product', 'SKU', 'Qty', 'Term', 'Billing', 'Unit Price', 'Disc.', 'Line Total']


@dataclass(frozen=True)
class QuoteDocumentLine:
    product_name: str
    sku: str
    quantity: int
    commitment_term: Optional[str]
    billing_frequency: Optional[str]
    unit_price: Decimal
    discount_percent: Decimal
    line_total: Decimal
    currency: str


@dataclass(frozen=True)
class QuoteDocument:
    """Every quote field the renderer is allowed to see."""
    quote_number: str
    version: int
    customer_name: str
    customer_email: Optional[str]
    customer_company: Optional[str]
    issued_at: datetime
    valid_until: Optional[datetime]
    currency: str
    total_amount: Decimal
    notes: Optional[str]
    created_by: Optional[str]
    lines: Tuple[QuoteDocumentLine, ...]

    @classmethod
    def from_quote(cls, quote) -> 'QuoteDocument':
        lines = tuple(
            QuoteDocumentLine(
                product_name=line.product_name,
                sku=line.sku,
                quantity=line.quantity,
                commitment_term=line.commitment_term,
                billing_frequency=line.billing_frequency,
                unit_price=Decimal(line.unit_price),
                discount_percent=Decimal(line.discount_percent or 0),
                line_total=Decimal(line.line_total),
                currency=line.currency,
            )
            for line in quote.line_items
        )
        return cls(
            quote_number=quote.quote_number,
            version=quote.version or 1,
            customer_name=quote.customer_name,
            customer_email=quote.customer_email,
            customer_company=quote.customer_company,
            issued_at=quote.created_at,
            valid_until=quote.valid_until,
            currency=quote.currency,
            total_amount=Decimal(quote.total_amount),
            notes=quote.notes,
            created_by=quote.created_by,
            lines=lines,
        )


@dataclass(frozen=True)
class Branding:
    name: str = 'Business Solutions'
    tagline: str = ''
    logo_path: Optional[str] = None

    @classmethod
    def from_config(cls, config) -> 'Branding':
        return cls(
            name=config.get('BUSINESS_NAME') or cls.name,
            tagline=config.get('BUSINESS_TAGLINE') or '',
            logo_path=config.get('BUSINESS_LOGO_PATH'),
        )


@dataclass(frozen=True)
class Layout:
    name: str
    base_font_size: float
    heading_font_size: float
    table_font_size: float
    margin: float
    cell_padding: float
    section_spacing: float


LAYOUTS = {
    'standard': Layout('standard', base_font_size=10, heading_font_size=14, table_font_size=8,
                       margin=40, cell_padding=4, section_spacing=15),
    'compact': Layout('compact', base_font_size=8, heading_font_size=11, table_font_size=7,
                      margin=28, cell_padding=2, section_spacing=8),
}
DEFAULT_LAYOUT = 'standard'


def list_layouts() -> List[str]:
    """Names of the built-in layouts."""
    return sorted(LAYOUTS)


def resolve_layout(name: Optional[str]) -> Layout:
    """Look up a layout; unknown names fall back to the default with a warning."""
    if not name:
        return LAYOUTS[DEFAULT_LAYOUT]
    layout = LAYOUTS.get(name)
    if layout is None:
        logger.warning(f"[PDF] Layout '{name}' not found, falling back to '{DEFAULT_LAYOUT}'")
        return LAYOUTS[DEFAULT_LAYOUT]
    return layout


def format_money(amount: Decimal, currency: str) -> str:
    return f"{Decimal(amount):,.2f} {currency}"


def format_discount(discount: Decimal) -> str:
    return f"{Decimal(discount):.1f}%" if discount else "-"


def format_date(value: Optional[datetime]) -> str:
    return value.strftime(DATE_FORMAT) if value else "-"


class _DecoratedCanvas(canvas.Canvas):
    """Canvas that draws page decorations once the total page count is known."""

    def __init__(self, *args, page_decorator=None, **kwargs):
        canvas.Canvas.__init__(self, *args, **kwargs)
        self._saved_page_states = []
        self._page_decorator = page_decorator

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        page_count = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            if self._page_decorator:
                self._page_decorator(self, self._pageNumber, page_count)
            canvas.Canvas.showPage(self)
        canvas.Canvas.save(self)


class _QuoteRenderer:
    """Builds one PDF. Not shared between calls."""

    def __init__(self, document: QuoteDocument, is_preview: bool, layout: Layout, branding: Branding):
        self.document = document
        self.is_preview = is_preview
        self.layout = layout
        self.branding = branding
        self.logo = self._load_logo(branding.logo_path)
        self.styles = self._build_styles()

    @staticmethod
    def _load_logo(path: Optional[str]) -> Optional[ImageReader]:
        if not path:
            return None
        try:
            reader = ImageReader(path)
            reader.getSize()
            return reader
        except Exception as e:
            logger.warning(f"[PDF] Could not load logo '{path}': {e}. Using text brand mark.")
            return None

    def _build_styles(self):
        styles = getSampleStyleSheet()
        layout = self.layout
        return {
            'heading': ParagraphStyle(
                'SectionHeading',
                parent=styles['Heading2'],
                fontName='Helvetica-Bold',
                fontSize=layout.heading_font_size,
                leading=layout.heading_font_size + 4,
                textColor=BRAND_RED,
                spaceAfter=6,
                spaceBefore=0,
            ),
            'label': ParagraphStyle(
                'DetailLabel',
                parent=styles['Normal'],
                fontName='Helvetica-Bold',
                fontSize=layout.base_font_size,
                textColor=DARK_GREY,
            ),
            'value': ParagraphStyle(
                'DetailValue',
                parent=styles['Normal'],
                fontSize=layout.base_font_size,
                textColor=DARK_GREY,
            ),
            'cell': ParagraphStyle(
                'PriceCell',
                parent=styles['Normal'],
                fontSize=layout.table_font_size,
                leading=layout.table_font_size + 2,
                textColor=DARK_GREY,
                alignment=TA_LEFT,
            ),
            'banner': ParagraphStyle(
                'PreviewBanner',
                parent=styles['Normal'],
                fontSize=layout.base_font_size,
                textColor=PREVIEW_TEXT,
            ),
            'notes': ParagraphStyle(
                'Notes',
                parent=styles['Normal'],
                fontSize=layout.base_font_size,
                leading=layout.base_font_size + 3,
                textColor=DARK_GREY,
            ),
        }

    # --- Page decorations -------------------------------------------------

    def _draw_header(self, canv, doc):
        width, height = doc.pagesize
        left = doc.leftMargin
        right = width - doc.rightMargin
        top = height - 30

        canv.saveState()
        if self.logo is not None:
            canv.drawImage(self.logo, left, top - 45, width=160, height=45,
                           preserveAspectRatio=True, anchor='w', mask='auto')
        else:
            canv.setFont('Helvetica-Bold', 18)
            canv.setFillColor(BRAND_RED)
            canv.drawString(left, top - 30, self.branding.name)

        label = "QUOTE PREVIEW" if self.is_preview else "BUSINESS PROPOSAL"
        canv.setFont('Helvetica-Bold', 14)
        canv.setFillColor(DARK_GREY)
        canv.drawRightString(right, top - 30, label)

        # Accent bar
        canv.setFillColor(BRAND_RED)
        canv.rect(left, top - 56, right - left, 3, stroke=0, fill=1)
        canv.restoreState()

    def _decorate_page(self, canv, page_number: int, page_count: int):
        width, height = canv._pagesize
        margin = self.layout.margin
        left, right = margin, width - margin

        canv.saveState()
        canv.setFillColor(BRAND_RED)
        canv.rect(left, 50, right - left, 2, stroke=0, fill=1)

        canv.setFont('Helvetica', 7)
        canv.setFillColor(MEDIUM_GREY)
        canv.drawString(left, 40, f"{self.branding.name}  |  {self.document.quote_number}")
        canv.drawRightString(right, 40, f"Page {page_number} of {page_count}")

        canv.setFont('Helvetica', 6)
        canv.setFillColor(colors.HexColor('#999999'))
        canv.drawString(left, 30, CONFIDENTIALITY_NOTICE)
        canv.restoreState()

        if self.is_preview:
            canv.saveState()
            canv.setFont('Helvetica-Bold', 96)
            canv.setFillColorRGB(0.9, 0, 0, alpha=0.12)
            canv.translate(width / 2, height / 2)
            canv.rotate(45)
            canv.drawCentredString(0, -30, "PREVIEW")
            canv.restoreState()

    # --- Content ----------------------------------------------------------

    def _detail_table(self, rows, width):
        data = [
            [Paragraph(escape(label), self.styles['label']), Paragraph(escape(value), self.styles['value'])]
            for label, value in rows
        ]
        table = Table(data, colWidths=[140, width - 140], hAlign='LEFT')
        table.setStyle(TableStyle([
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('TOPPADDING', (0, 0), (-1, -1), 3),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 3),
            ('LEFTPADDING', (0, 0), (-1, -1), 0),
        ]))
        return table

    def _preview_banner(self, width):
        banner = Table([[Paragraph(PREVIEW_NOTICE, self.styles['banner'])]], colWidths=[width])
        banner.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, -1), PREVIEW_BG),
            ('TOPPADDING', (0, 0), (-1, -1), 8),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 8),
        ]))
        return banner

    def _pricing_row(self, index: int, line: QuoteDocumentLine):
        cell = self.styles['cell']
        try:
            return [
                Paragraph(escape(line.product_name), cell),
                Paragraph(escape(line.sku), cell),
                str(int(line.quantity)),
                Paragraph(escape(line.commitment_term or '-'), cell),
                Paragraph(escape(line.billing_frequency or '-'), cell),
                format_money(line.unit_price, line.currency),
                format_discount(line.discount_percent),
                format_money(line.line_total, line.currency),
            ]
        except Exception as e:
            raise DocumentGenerationError(
                f"Could not render line {index + 1} of quote {self.document.quote_number}"
            ) from e

    def _pricing_table(self, width):
        fixed = 40 + 45  # Qty, Disc.
        unit = (width - fixed) / 9.9
        col_widths = [3 * unit, 1.5 * unit, 40, 1.2 * unit, 1.2 * unit, 1.5 * unit, 45, 1.5 * unit]

        data = [PRICING_HEADERS]
        for index, line in enumerate(self.document.lines):
            data.append(self._pricing_row(index, line))

        padding = self.layout.cell_padding
        table = Table(data, colWidths=col_widths, repeatRows=1)
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), BRAND_RED),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), self.layout.table_font_size),
            ('TOPPADDING', (0, 0), (-1, -1), padding),
            ('BOTTOMPADDING', (0, 0), (-1, -1), padding),
            ('ALIGN', (2, 1), (2, -1), 'CENTER'),
            ('ALIGN', (5, 1), (-1, -1), 'RIGHT'),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('LINEBELOW', (0, 1), (-1, -1), 0.5, BORDER_GREY),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, ALT_ROW_BG]),
        ]))
        return table

    def _total_table(self):
        doc = self.document
        total = Table(
            [['Total:', format_money(doc.total_amount, doc.currency)]],
            hAlign='RIGHT'
        )
        total.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (-1, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), self.layout.heading_font_size),
            ('TEXTCOLOR', (0, 0), (0, 0), DARK_GREY),
            ('TEXTCOLOR', (1, 0), (1, 0), BRAND_RED),
            ('BACKGROUND', (0, 0), (-1, -1), LIGHT_GREY),
            ('BOX', (0, 0), (-1, -1), 1, BORDER_GREY),
            ('ALIGN', (0, 0), (-1, -1), 'RIGHT'),
            ('TOPPADDING', (0, 0), (-1, -1), 10),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 10),
        ]))
        return total

    def _notes_block(self, width):
        notes = escape(self.document.notes).replace('\n', '<br/>')
        block = Table([[Paragraph(notes, self.styles['notes'])]], colWidths=[width])
        block.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, -1), LIGHT_GREY),
            ('TOPPADDING', (0, 0), (-1, -1), 10),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 10),
        ]))
        return block

    def _story(self, width):
        doc = self.document
        spacing = self.layout.section_spacing
        heading = self.styles['heading']
        elements = []

        if self.is_preview:
            elements.append(self._preview_banner(width))
            elements.append(Spacer(1, spacing))

        # 1. Quote details
        elements.append(Paragraph("Quote Details", heading))
        elements.append(self._detail_table([
            ("Quote Number", doc.quote_number),
            ("Date", format_date(doc.issued_at)),
            ("Valid Until", format_date(doc.valid_until)),
            ("Currency", doc.currency),
        ], width))
        elements.append(Spacer(1, spacing))

        # 2. Customer
        customer_rows = [("Name", doc.customer_name)]
        if doc.customer_company:
            customer_rows.append(("Company", doc.customer_company))
        if doc.customer_email:
            customer_rows.append(("Email", doc.customer_email))
        elements.append(Paragraph("Customer Information", heading))
        elements.append(self._detail_table(customer_rows, width))
        elements.append(Spacer(1, spacing))

        # 3. Pricing
        if doc.lines:
            elements.append(Paragraph("Pricing", heading))
            elements.append(self._pricing_table(width))
            elements.append(Spacer(1, spacing))

        # 4. Total
        elements.append(self._total_table())
        elements.append(Spacer(1, spacing))

        # 5. Notes
        if doc.notes:
            elements.append(Paragraph("Notes", heading))
            elements.append(self._notes_block(width))

        return elements

    def render(self) -> bytes:
        buffer = BytesIO()
        margin = self.layout.margin
        pdf = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=margin,
            rightMargin=margin,
            topMargin=100,
            bottomMargin=70,
            title=f"Quote {self.document.quote_number}",
            author=self.branding.name,
            invariant=1,
        )
        width = pdf.width

        try:
            pdf.build(
                self._story(width),
                onFirstPage=self._draw_header,
                onLaterPages=self._draw_header,
                canvasmaker=partial(_DecoratedCanvas, page_decorator=self._decorate_page),
            )
        except DocumentGenerationError:
            raise
        except Exception as e:
            logger.exception(f"[PDF] Rendering failed for quote {self.document.quote_number}: {e}")
            raise DocumentGenerationError(
                f"Could not generate the document for quote {self.document.quote_number}"
            ) from e

        return buffer.getvalue()


def render_quote_pdf(document: QuoteDocument, is_preview: bool, layout: Optional[str] = None,
                     branding: Optional[Branding] = None) -> bytes:
    """Render a quote snapshot to PDF bytes."""
    renderer = _QuoteRenderer(document, is_preview, resolve_layout(layout), branding or Branding())
    pdf_bytes = renderer.render()
    logger.info(
        f"[PDF] Quote {document.quote_number} rendered "
        f"({'preview' if is_preview else 'final'}, {len(pdf_bytes)} bytes)"
    )
    return pdf_bytes


def render_quote(quote, is_preview: bool, config) -> bytes:
    """Render a Quote model with branding and default layout taken from config."""
    layout = quote.template_name or config.get('QUOTE_DEFAULT_LAYOUT')
    return render_quote_pdf(QuoteDocument.from_quote(quote), is_preview, layout, Branding.from_config(config))
