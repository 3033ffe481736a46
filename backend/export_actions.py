"""
Export of the corrective action plan of a compiled report.
Supports CSV and Excel formats.
"""

import csv
import io
from typing import Any, Dict, List

import openpyxl
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from report_assembler import ReportDocument

FIELDNAMES = [
    'Document_Number',
    'Store',
    'Reference',
    'Section',
    'Question',
    'Answer',
    'Finding',
    'Comment',
    'Corrective_Action',
    'Priority',
    'Priority_Source',
    'Post_Action_Images',
    'Repeat_Count',
    'Previous_Documents'
]

COLUMN_WIDTHS = [22, 25, 10, 30, 60, 12, 50, 40, 50, 10, 15, 18, 14, 40]


def action_rows(document: ReportDocument) -> List[Dict[str, Any]]:
    """
    Flatten the corrective action block into export rows.

    Args:
        document: Compiled report

    Returns:
        One dictionary per corrective action, keyed by FIELDNAMES
    """
    header = document.header
    rows = []
    for entry in document.corrective_block.entries:
        source = entry.action.source
        rows.append({
            'Document_Number': header.document_id,
            'Store': header.store_name,
            'Reference': source.reference_value,
            'Section': source.section_title,
            'Question': source.title,
            'Answer': source.selected_choice.value or 'No Answer',
            'Finding': source.finding or '',
            'Comment': source.comment or '',
            'Corrective_Action': source.corrective_action or '',
            'Priority': entry.action.severity.value,
            'Priority_Source': 'Derived' if entry.action.severity_derived else 'Recorded',
            'Post_Action_Images': len(entry.action.post_action_images),
            'Repeat_Count': entry.action.repeat_count,
            'Previous_Documents': ', '.join(entry.action.repeat_documents)
        })
    return rows


def export_actions_to_csv(document: ReportDocument) -> str:
    """
    Export the corrective action plan to CSV format.

    Args:
        document: Compiled report

    Returns:
        CSV string (header only when no action is required)
    """
    output = io.StringIO()

    writer = csv.DictWriter(output, fieldnames=FIELDNAMES, extrasaction='ignore')
    writer.writeheader()

    for row in action_rows(document):
        writer.writerow(row)

    return output.getvalue()


def export_actions_to_xlsx(document: ReportDocument) -> bytes:
    """
    Export the corrective action plan to Excel format.

    Args:
        document: Compiled report

    Returns:
        Excel file bytes
    """
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Corrective Actions"

    header_font = Font(bold=True)
    header_fill = PatternFill(start_color="CCCCCC", end_color="CCCCCC", fill_type="solid")

    # Write headers
    for col, header in enumerate(FIELDNAMES, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = header_font
        cell.fill = header_fill

    rows = action_rows(document)
    if not rows:
        ws.cell(row=2, column=1, value=document.corrective_block.message)

    # Write data
    for row_idx, row in enumerate(rows, 2):
        for col, field in enumerate(FIELDNAMES, 1):
            ws.cell(row=row_idx, column=col, value=row[field])

    # Adjust column widths
    for col, width in enumerate(COLUMN_WIDTHS, 1):
        ws.column_dimensions[get_column_letter(col)].width = width

    # Save to bytes
    output = io.BytesIO()
    wb.save(output)
    output.seek(0)
    return output.getvalue()
