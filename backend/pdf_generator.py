"""
PDF Generator for compiled audit reports.

Renders a ReportDocument with ReportLab. The document is rendered exactly as
assembled; no scores or classifications are computed here.

PDF Structure:
1. Header - Store, document number, visit details, overall result
2. Section Tables - Every response with its pre-action evidence
3. Trend Table - Current and historical cycle percentages
4. Corrective Actions - Deficiencies with post-action evidence
5. Enrichment Blocks - e.g. temperature readings
"""

import logging
from datetime import datetime
from io import BytesIO
from typing import Dict, List
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.lib.utils import ImageReader
from reportlab.platypus import (
    Image,
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from checklist import Severity, Status
from evidence import EvidenceImage, Gallery
from report_assembler import (
    CorrectiveBlock,
    EnrichmentBlock,
    ReportDocument,
    SectionBlock,
    TrendTable,
)

logger = logging.getLogger(__name__)

# =============================================================================
# STYLING CONSTANTS
# =============================================================================

REPORT_BLUE = colors.HexColor("#1f4788")
REPORT_LIGHT_BLUE = colors.HexColor("#e8f0f8")
PASS_GREEN = colors.HexColor("#28a745")
FAIL_RED = colors.HexColor("#dc3545")
ROW_ALT = colors.HexColor("#f8f9fa")

SEVERITY_COLORS = {
    Severity.CRITICAL: colors.HexColor("#dc3545"),
    Severity.MAJOR: colors.HexColor("#fd7e14"),
    Severity.MINOR: colors.HexColor("#ffc107"),
}

CONTENT_WIDTH = letter[0] - 1.0 * inch
GALLERY_HEIGHT = 1.6 * inch


def _get_styles() -> Dict[str, ParagraphStyle]:
    """Create consistent paragraph styles for the PDF."""
    base = getSampleStyleSheet()

    return {
        "title": ParagraphStyle(
            "Title",
            parent=base["Heading1"],
            fontSize=22,
            textColor=REPORT_BLUE,
            spaceAfter=16,
            alignment=TA_CENTER,
        ),
        "section_header": ParagraphStyle(
            "SectionHeader",
            parent=base["Heading2"],
            fontSize=15,
            textColor=REPORT_BLUE,
            spaceBefore=16,
            spaceAfter=10,
        ),
        "subsection": ParagraphStyle(
            "Subsection",
            parent=base["Heading3"],
            fontSize=11,
            textColor=REPORT_BLUE,
            spaceBefore=10,
            spaceAfter=6,
        ),
        "body": ParagraphStyle(
            "Body",
            parent=base["Normal"],
            fontSize=10,
            spaceAfter=8,
            leading=14,
        ),
        "table_cell": ParagraphStyle(
            "TableCell",
            parent=base["Normal"],
            fontSize=8,
            leading=10,
        ),
        "caption": ParagraphStyle(
            "Caption",
            parent=base["Normal"],
            fontSize=7,
            textColor=colors.gray,
            alignment=TA_CENTER,
        ),
        "footer": ParagraphStyle(
            "Footer",
            parent=base["Normal"],
            fontSize=8,
            textColor=colors.gray,
            alignment=TA_CENTER,
        ),
    }


def _p(text, style: ParagraphStyle) -> Paragraph:
    return Paragraph(escape(str(text)) if text is not None else "", style)


def _header_style() -> List:
    return [
        ("BACKGROUND", (0, 0), (-1, 0), REPORT_BLUE),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, 0), 9),
        ("FONTSIZE", (0, 1), (-1, -1), 8),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.gray),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, ROW_ALT]),
    ]


# =============================================================================
# IMAGES
# =============================================================================

def _image_flowable(image: EvidenceImage, max_width: float, styles: Dict):
    """A scaled image, or a placeholder when the payload is missing or unreadable."""
    if not image.payload:
        return _p("Image not available", styles["caption"])

    try:
        width, height = ImageReader(BytesIO(image.payload)).getSize()
    except Exception as e:
        logger.warning(f"Unreadable image {image.image_ref_id or image.picture_id}: {e}")
        return _p("Image not available", styles["caption"])

    scale = min(max_width / width, GALLERY_HEIGHT / height, 1.0)
    return Image(BytesIO(image.payload), width=width * scale, height=height * scale)


def _build_gallery(gallery: Gallery, width: float, styles: Dict):
    """Grid of images with captions; None for an empty gallery."""
    if gallery.is_empty:
        return None

    columns = max(len(row) for row in gallery.rows)
    cell_width = width / columns
    data = []
    for row in gallery.rows:
        cells = [
            [_image_flowable(cell.image, cell_width - 6, styles), _p(cell.caption, styles["caption"])]
            for cell in row
        ]
        cells += [""] * (columns - len(cells))
        data.append(cells)

    table = Table(data, colWidths=[cell_width] * columns)
    table.setStyle(TableStyle([
        ("ALIGN", (0, 0), (-1, -1), "CENTER"),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("TOPPADDING", (0, 0), (-1, -1), 3),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
    ]))
    return table


# =============================================================================
# SECTION BUILDERS
# =============================================================================

def _build_header(document: ReportDocument, styles: Dict, generation_time: str) -> List:
    """Build the report header: visit details and overall result."""
    elements = []
    header = document.header

    elements.append(_p(f"Audit Report - {header.store_name or header.document_id}", styles["title"]))

    meta_data = [
        ["Document Number:", header.document_id],
        ["Store:", header.store_name or "N/A"],
        ["Audit Date:", header.audit_date or "N/A"],
        ["Time In / Out:", f"{header.time_in or '-'} / {header.time_out or '-'}"],
        ["Cycle:", header.cycle or "N/A"],
        ["Auditors:", header.auditors or "N/A"],
        ["Accompanied By:", header.accompanied_by or "N/A"],
        ["Overall Score:", header.to_dict()["overall_display"]],
        ["Result:", header.status.value],
        ["Generated:", generation_time],
    ]

    meta_table = Table(meta_data, colWidths=[1.6*inch, 4.5*inch])
    result_color = PASS_GREEN if header.status is Status.PASS else FAIL_RED
    meta_table.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
        ("TEXTCOLOR", (1, 8), (1, 8), result_color),
        ("FONTNAME", (1, 8), (1, 8), "Helvetica-Bold"),
    ]))
    elements.append(meta_table)
    elements.append(Spacer(1, 12))

    if document.integrity_warnings:
        elements.append(_p("Data Notes", styles["subsection"]))
        for warning in document.integrity_warnings:
            elements.append(_p(warning, styles["table_cell"]))

    elements.append(PageBreak())
    return elements


def _reference_cell(reference_value: str, repeat_count: int) -> str:
    """Reference, with an occurrence badge when the finding was seen before."""
    if repeat_count:
        return f"{reference_value}\n{repeat_count}x"
    return reference_value


def _build_section(section: SectionBlock, styles: Dict) -> List:
    """Build one checklist section table."""
    elements = []
    title = f"{section.title} ({section.percentage_display})"
    if section.repeat_count:
        title += f" - {section.repeat_count} repeat issue(s)"
    elements.append(_p(title, styles["section_header"]))

    cell = styles["table_cell"]
    col_widths = [0.5*inch, 3.0*inch, 0.5*inch, 0.8*inch, 2.7*inch]
    table_data = [["Ref", "Question", "Coeff", "Answer", "Comment"]]
    galleries = []

    for row in section.rows:
        question = _p(row.title, cell)
        if row.criterion:
            question = [question, _p(row.criterion, styles["caption"])]
        table_data.append([
            _reference_cell(row.reference_value, row.repeat_count),
            question,
            row.weight,
            row.answer,
            _p(row.comment or "", cell),
        ])
        galleries.append(_build_gallery(row.gallery, sum(col_widths) - 12, styles))

    # Each gallery spans the full width on its own line below its row
    final_data = [table_data[0]]
    spans = []
    for row_data, gallery in zip(table_data[1:], galleries):
        final_data.append(row_data)
        if gallery is not None:
            final_data.append([gallery, "", "", "", ""])
            index = len(final_data) - 1
            spans.append(("SPAN", (0, index), (-1, index)))

    table = Table(final_data, colWidths=col_widths, repeatRows=1)
    table.setStyle(TableStyle(_header_style() + [
        ("ALIGN", (0, 0), (0, -1), "CENTER"),
        ("ALIGN", (2, 0), (3, -1), "CENTER"),
    ] + spans))
    elements.append(table)
    elements.append(Spacer(1, 10))
    return elements


def _build_trend_table(trend: TrendTable, styles: Dict) -> List:
    """Build the score trend table."""
    elements = []
    elements.append(_p("Score Trend", styles["section_header"]))

    table_data = [trend.headers]
    for row in trend.rows:
        table_data.append([_p(row.label, styles["table_cell"]), row.current] + list(row.historical))
    table_data.append([trend.result.label, trend.result.current] + list(trend.result.historical))

    history_width = 0.9*inch
    col_widths = [2.8*inch, 0.9*inch] + [history_width] * len(trend.cycle_ids)
    table = Table(table_data, colWidths=col_widths, repeatRows=1)

    result_color = PASS_GREEN if trend.result.current == Status.PASS.value else FAIL_RED
    table.setStyle(TableStyle(_header_style() + [
        ("ALIGN", (1, 0), (-1, -1), "CENTER"),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ("BACKGROUND", (0, -1), (-1, -1), REPORT_LIGHT_BLUE),
        ("TEXTCOLOR", (1, -1), (1, -1), result_color),
    ]))
    elements.append(table)
    elements.append(PageBreak())
    return elements


def _build_corrective_actions(block: CorrectiveBlock, styles: Dict) -> List:
    """Build the corrective action table, or the none-required statement."""
    elements = []
    elements.append(_p("Corrective Actions", styles["section_header"]))

    if block.none_required:
        elements.append(_p(block.message, styles["body"]))
        return elements

    cell = styles["table_cell"]
    col_widths = [0.5*inch, 1.3*inch, 2.2*inch, 2.2*inch, 0.8*inch]
    table_data = [["Ref", "Section", "Finding", "Corrective Action", "Priority"]]
    style_commands = _header_style() + [
        ("ALIGN", (0, 0), (0, -1), "CENTER"),
        ("ALIGN", (4, 0), (4, -1), "CENTER"),
    ]

    for entry in block.entries:
        source = entry.action.source
        table_data.append([
            _reference_cell(source.reference_value, entry.action.repeat_count),
            _p(source.section_title, cell),
            _p(source.finding or source.comment or source.title, cell),
            _p(source.corrective_action or "", cell),
            entry.action.severity.value,
        ])
        index = len(table_data) - 1
        style_commands.append(
            ("TEXTCOLOR", (4, index), (4, index), SEVERITY_COLORS[entry.action.severity])
        )

        gallery = _build_gallery(entry.gallery, sum(col_widths) - 12, styles)
        if gallery is not None:
            table_data.append([gallery, "", "", "", ""])
            index = len(table_data) - 1
            style_commands.append(("SPAN", (0, index), (-1, index)))

    table = Table(table_data, colWidths=col_widths, repeatRows=1)
    table.setStyle(TableStyle(style_commands))
    elements.append(table)
    return elements


def _build_enrichment_block(block: EnrichmentBlock, styles: Dict) -> List:
    """Build a specialized block such as temperature readings."""
    if block.is_empty:
        return []

    elements = []
    elements.append(_p(block.title, styles["section_header"]))

    for sub in block.tables:
        if not sub.rows:
            continue
        elements.append(_p(sub.title, styles["subsection"]))

        col_width = CONTENT_WIDTH / len(sub.columns)
        table_data = [list(sub.columns)]
        spans = []
        for row in sub.rows:
            table_data.append([_p(c, styles["table_cell"]) for c in row.cells])
            gallery = _build_gallery(row.gallery, CONTENT_WIDTH - 12, styles)
            if gallery is not None:
                table_data.append([gallery] + [""] * (len(sub.columns) - 1))
                index = len(table_data) - 1
                spans.append(("SPAN", (0, index), (-1, index)))

        table = Table(table_data, colWidths=[col_width] * len(sub.columns), repeatRows=1)
        table.setStyle(TableStyle(_header_style() + spans))
        elements.append(table)
        elements.append(Spacer(1, 8))

    return elements


# =============================================================================
# MAIN GENERATOR
# =============================================================================

def _add_page_number(canvas, doc):
    """Add page numbers to each page."""
    page_num = canvas.getPageNumber()
    text = f"Page {page_num}"
    canvas.saveState()
    canvas.setFont("Helvetica", 8)
    canvas.setFillColor(colors.gray)
    canvas.drawCentredString(letter[0] / 2, 0.5 * inch, text)
    canvas.restoreState()


def generate_report_pdf(document: ReportDocument) -> bytes:
    """
    Render a compiled report to PDF.

    Args:
        document: The assembled ReportDocument

    Returns:
        PDF file contents as bytes
    """
    styles = _get_styles()
    generation_time = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S UTC")

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        rightMargin=0.5*inch,
        leftMargin=0.5*inch,
        topMargin=0.75*inch,
        bottomMargin=0.75*inch,
        title=f"Audit Report - {document.header.document_id}",
        author="Audit Report Compiler",
    )

    elements = []
    elements.extend(_build_header(document, styles, generation_time))
    for section in document.sections:
        elements.extend(_build_section(section, styles))
    elements.append(PageBreak())
    elements.extend(_build_trend_table(document.trend_table, styles))
    elements.extend(_build_corrective_actions(document.corrective_block, styles))
    for block in document.enrichment_blocks:
        elements.extend(_build_enrichment_block(block, styles))

    elements.append(Spacer(1, 20))
    elements.append(_p(f"Generated: {generation_time}", styles["footer"]))

    doc.build(elements, onFirstPage=_add_page_number, onLaterPages=_add_page_number)

    buffer.seek(0)
    return buffer.read()
