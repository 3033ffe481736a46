"""
Temperature-monitoring enrichment block.

Fridge and freezer readings are captured outside the checklist. They are
reported under the reference number of the checklist item that asks about
air temperature, split into readings with findings and compliant readings.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from checklist import ChecklistResponse
from evidence import EvidenceImage, render_gallery
from report_assembler import EnrichmentBlock, EnrichmentRow, EnrichmentTable

logger = logging.getLogger(__name__)

KIND = "temperature"
BLOCK_TITLE = "Temperature Readings"
COMPLIANT_READING_TYPE = "Good"

FINDING_COLUMNS = ("Section", "Unit", "Display (°C)", "Probe (°C)", "Issue")
COMPLIANT_COLUMNS = ("Section", "Unit", "Display (°C)", "Probe (°C)")


@dataclass(frozen=True)
class TemperatureRecord:
    """One instrument reading of a fridge or freezer."""
    reading_id: Optional[int]
    section: str
    unit: str
    display_temp: Optional[float]
    probe_temp: Optional[float]
    issue: Optional[str]
    reading_type: str
    picture: Optional[bytes] = None
    created_at: Optional[str] = None

    @property
    def is_compliant(self) -> bool:
        return self.reading_type.strip().lower() == COMPLIANT_READING_TYPE.lower()

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "TemperatureRecord":
        return cls(
            reading_id=record.get("id"),
            section=record.get("section") or "",
            unit=record.get("unit") or "",
            display_temp=record.get("display_temp"),
            probe_temp=record.get("probe_temp"),
            issue=record.get("issue"),
            reading_type=record.get("reading_type") or "",
            picture=record.get("picture"),
            created_at=record.get("created_at"),
        )


def find_reference_value(responses: Iterable[ChecklistResponse], marker: str,
                         default_reference: str) -> str:
    """
    Reference number shared by every reading: that of the checklist item
    whose title mentions `marker`, else `default_reference`.
    """
    needle = marker.strip().lower()
    if needle:
        for response in responses:
            if needle in (response.title or "").lower():
                return response.reference_value
    return default_reference


def _temp(value: Optional[float]) -> str:
    if value is None:
        return "-"
    return f"{value:g}"


def _row(record: TemperatureRecord, with_issue: bool, max_columns: int) -> EnrichmentRow:
    cells = [record.section, record.unit, _temp(record.display_temp), _temp(record.probe_temp)]
    if with_issue:
        cells.append(record.issue or "")

    images = []
    if record.picture:
        images.append(EvidenceImage(
            question_id=str(record.reading_id or ""),
            is_corrective=False,
            payload=record.picture,
            picture_id=record.reading_id,
            file_name=record.unit,
        ))
    return EnrichmentRow(cells=tuple(cells), gallery=render_gallery(images, max_columns))


def build_temperature_block(records: Sequence[Dict[str, Any]],
                            responses: Sequence[ChecklistResponse],
                            marker: str,
                            default_reference: str,
                            max_columns: int = 2) -> EnrichmentBlock:
    """
    Join temperature readings against the shared reference value.

    Args:
        records: Raw temperature readings of the audit
        responses: Current-audit responses, searched for the reference item
        marker: Title fragment identifying the temperature checklist item
        default_reference: Reference used when no item matches
        max_columns: Images per gallery row

    Returns:
        EnrichmentBlock with a findings table and a compliant table
    """
    readings = [TemperatureRecord.from_record(r) for r in records]
    reference = find_reference_value(responses, marker, default_reference)

    findings = [r for r in readings if not r.is_compliant]
    compliant = [r for r in readings if r.is_compliant]

    tables = (
        EnrichmentTable(
            title=f"Fridges with Findings - #{reference} ({len(findings)})",
            columns=FINDING_COLUMNS,
            rows=tuple(_row(r, True, max_columns) for r in findings),
        ),
        EnrichmentTable(
            title=f"Compliant Fridges - #{reference} ({len(compliant)})",
            columns=COMPLIANT_COLUMNS,
            rows=tuple(_row(r, False, max_columns) for r in compliant),
        ),
    )

    return EnrichmentBlock(kind=KIND, title=BLOCK_TITLE, reference_value=reference, tables=tables)


def empty_block() -> EnrichmentBlock:
    return EnrichmentBlock(kind=KIND, title=BLOCK_TITLE)


def load_temperature_block(store, document_id: str, responses: Sequence[ChecklistResponse],
                           config) -> EnrichmentBlock:
    """
    Fetch and build the temperature block of a document.

    Any failure to read the readings yields an empty block.
    """
    try:
        records: List[Dict[str, Any]] = list(store.get_specialized_records(KIND, document_id) or [])
    except Exception as e:
        logger.warning(f"Temperature readings unavailable for {document_id}: {e}")
        return empty_block()

    block = build_temperature_block(
        records,
        responses,
        config.temperature_marker,
        config.temperature_default_reference,
        config.max_gallery_columns,
    )
    logger.info(f"Built temperature block for {document_id} from {len(records)} readings")
    return block
