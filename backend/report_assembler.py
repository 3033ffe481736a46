"""
Report Assembler.

Composes the immutable ReportDocument handed to the renderers, in a fixed
order:
    1. one response table per section (template order, rows by reference)
    2. the trend table (current + historical cycles, closed by a Result row)
    3. the corrective-action block, or the "none required" affirmation
    4. specialized enrichment blocks (e.g. temperature monitoring)

Display rules for weight and answer cells are keyed off the Choice enum.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from checklist import (
    ChecklistResponse,
    Choice,
    RejectedResponse,
    Status,
    reference_sort_key,
)
from corrective_actions import CorrectiveActionItem, find_repeat, requires_action
from evidence import EvidenceIndex, Gallery, extract_question_id, render_gallery
from history import HistoricalScores, RepeatFinding
from scoring import Percentage, aggregate_section, format_percentage, overall_status

NO_ANSWER = "No Answer"
NO_CORRECTIVE_ACTION_MESSAGE = "No corrective action required"
RESULT_ROW_LABEL = "Result"


# =============================================================================
# DISPLAY RULES
# =============================================================================

# Choices whose weight cell is left blank
BLANK_WEIGHT_CHOICES = frozenset({Choice.NA})

# Choices rendered with a fixed label instead of their own value
ANSWER_LABELS = {
    Choice.UNANSWERED: NO_ANSWER,
}


def format_weight(weight: Optional[float]) -> str:
    if weight is None:
        return ""
    if float(weight).is_integer():
        return str(int(weight))
    return str(weight)


def weight_display(response: ChecklistResponse) -> str:
    if response.selected_choice in BLANK_WEIGHT_CHOICES:
        return ""
    return format_weight(response.weight)


def answer_display(choice: Choice) -> str:
    return ANSWER_LABELS.get(choice, choice.value)


def gallery_to_dict(gallery: Gallery) -> List[List[Dict[str, Any]]]:
    """Gallery metadata for JSON; payload bytes stay with the renderers."""
    return [
        [
            {
                "position": cell.position,
                "caption": cell.caption,
                "image_ref_id": cell.image.image_ref_id,
                "picture_id": cell.image.picture_id,
                "content_type": cell.image.content_type,
                "available": cell.image.available,
            }
            for cell in row
        ]
        for row in gallery.rows
    ]


# =============================================================================
# DOCUMENT MODEL
# =============================================================================

@dataclass(frozen=True)
class ReportHeader:
    document_id: str
    store_name: str = ""
    audit_date: Optional[str] = None
    time_in: Optional[str] = None
    time_out: Optional[str] = None
    cycle: Optional[str] = None
    year: Optional[int] = None
    auditors: Optional[str] = None
    accompanied_by: Optional[str] = None
    overall_percentage: Percentage = None
    status: Status = Status.FAIL

    @classmethod
    def from_audit(cls, audit: Dict[str, Any]) -> "ReportHeader":
        return cls(
            document_id=audit.get("document_number") or "",
            store_name=audit.get("store_name") or "",
            audit_date=audit.get("audit_date"),
            time_in=audit.get("time_in"),
            time_out=audit.get("time_out"),
            cycle=audit.get("cycle"),
            year=audit.get("year"),
            auditors=audit.get("auditors"),
            accompanied_by=audit.get("accompanied_by"),
        )

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "store_name": self.store_name,
            "audit_date": self.audit_date,
            "time_in": self.time_in,
            "time_out": self.time_out,
            "cycle": self.cycle,
            "year": self.year,
            "auditors": self.auditors,
            "accompanied_by": self.accompanied_by,
            "overall_percentage": self.overall_percentage,
            "overall_display": format_percentage(self.overall_percentage),
            "status": self.status.value,
        }


@dataclass(frozen=True)
class SectionRow:
    """One line of a section's response table."""
    reference_value: str
    title: str
    criterion: Optional[str]
    weight: str
    answer: str
    comment: Optional[str]
    gallery: Gallery = field(default_factory=Gallery)
    question_id: str = ""
    scored: bool = True
    repeat_count: int = 0
    repeat_documents: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "reference_value": self.reference_value,
            "title": self.title,
            "criterion": self.criterion,
            "weight": self.weight,
            "answer": self.answer,
            "comment": self.comment,
            "question_id": self.question_id,
            "scored": self.scored,
            "repeat_count": self.repeat_count,
            "repeat_documents": list(self.repeat_documents),
            "gallery": gallery_to_dict(self.gallery),
        }


@dataclass(frozen=True)
class SectionBlock:
    title: str
    percentage: Percentage
    rows: Tuple[SectionRow, ...] = ()

    @property
    def percentage_display(self) -> str:
        return format_percentage(self.percentage)

    @property
    def repeat_count(self) -> int:
        """Rows of this section already deficient in an earlier audit."""
        return sum(1 for row in self.rows if row.repeat_count)

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "percentage": self.percentage,
            "percentage_display": self.percentage_display,
            "repeat_count": self.repeat_count,
            "rows": [row.to_dict() for row in self.rows],
        }


@dataclass(frozen=True)
class TrendRow:
    label: str
    current: str
    historical: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"label": self.label, "current": self.current, "historical": list(self.historical)}


@dataclass(frozen=True)
class TrendTable:
    cycle_ids: Tuple[str, ...]
    rows: Tuple[TrendRow, ...]
    result: TrendRow

    @property
    def headers(self) -> List[str]:
        return ["Section", "Current"] + list(self.cycle_ids)

    def to_dict(self) -> dict:
        return {
            "headers": self.headers,
            "rows": [row.to_dict() for row in self.rows],
            "result": self.result.to_dict(),
        }


@dataclass(frozen=True)
class CorrectiveEntry:
    action: CorrectiveActionItem
    gallery: Gallery = field(default_factory=Gallery)

    def to_dict(self) -> dict:
        data = self.action.to_dict()
        data["gallery"] = gallery_to_dict(self.gallery)
        return data


@dataclass(frozen=True)
class CorrectiveBlock:
    entries: Tuple[CorrectiveEntry, ...] = ()

    @property
    def none_required(self) -> bool:
        return not self.entries

    @property
    def message(self) -> Optional[str]:
        return NO_CORRECTIVE_ACTION_MESSAGE if self.none_required else None

    def to_dict(self) -> dict:
        return {
            "none_required": self.none_required,
            "message": self.message,
            "entries": [entry.to_dict() for entry in self.entries],
        }


@dataclass(frozen=True)
class EnrichmentRow:
    cells: Tuple[str, ...]
    gallery: Gallery = field(default_factory=Gallery)

    def to_dict(self) -> dict:
        return {"cells": list(self.cells), "gallery": gallery_to_dict(self.gallery)}


@dataclass(frozen=True)
class EnrichmentTable:
    title: str
    columns: Tuple[str, ...]
    rows: Tuple[EnrichmentRow, ...] = ()

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "columns": list(self.columns),
            "rows": [row.to_dict() for row in self.rows],
        }


@dataclass(frozen=True)
class EnrichmentBlock:
    """A specialized section joined from records outside the checklist."""
    kind: str
    title: str
    reference_value: str = ""
    tables: Tuple[EnrichmentTable, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not any(table.rows for table in self.tables)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "title": self.title,
            "reference_value": self.reference_value,
            "is_empty": self.is_empty,
            "tables": [table.to_dict() for table in self.tables],
        }


@dataclass(frozen=True)
class ReportDocument:
    header: ReportHeader
    sections: Tuple[SectionBlock, ...]
    trend_table: TrendTable
    corrective_block: CorrectiveBlock
    enrichment_blocks: Tuple[EnrichmentBlock, ...] = ()
    integrity_warnings: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "header": self.header.to_dict(),
            "sections": [section.to_dict() for section in self.sections],
            "trend_table": self.trend_table.to_dict(),
            "corrective_actions": self.corrective_block.to_dict(),
            "enrichment_blocks": [block.to_dict() for block in self.enrichment_blocks],
            "integrity_warnings": list(self.integrity_warnings),
        }


# =============================================================================
# ORDERING
# =============================================================================

def section_titles_in_order(section_order: Sequence[str],
                            items: Iterable[Any]) -> List[str]:
    """
    Template order first; sections only seen in the data follow in order of
    first appearance.
    """
    titles = list(dict.fromkeys(section_order))
    seen = set(titles)
    for item in items:
        if item.section_title not in seen:
            seen.add(item.section_title)
            titles.append(item.section_title)
    return titles


def order_responses(responses: Sequence[ChecklistResponse],
                    section_order: Sequence[str]) -> List[ChecklistResponse]:
    """Responses in report order: section template order, then reference."""
    titles = section_titles_in_order(section_order, responses)
    position = {title: i for i, title in enumerate(titles)}
    return sorted(
        responses,
        key=lambda r: (position[r.section_title], reference_sort_key(r.reference_value)),
    )


# =============================================================================
# ASSEMBLY
# =============================================================================

def _question_id(image_ref_id: str, document_id: Optional[str]) -> str:
    return extract_question_id(image_ref_id, document_id) if image_ref_id else ""


def _response_row(response: ChecklistResponse, evidence_index: EvidenceIndex,
                  max_columns: int,
                  repeat_findings: Optional[Mapping[str, RepeatFinding]] = None) -> SectionRow:
    question_id = _question_id(response.image_ref_id, response.document_id)
    pre_images = evidence_index.lookup(question_id).pre if question_id else ()
    # Only a current deficiency can repeat an earlier one
    repeat = find_repeat(response, repeat_findings) if requires_action(response) else None
    return SectionRow(
        reference_value=response.reference_value,
        title=response.title,
        criterion=response.criterion,
        weight=weight_display(response),
        answer=answer_display(response.selected_choice),
        comment=response.comment,
        gallery=render_gallery(pre_images, max_columns),
        question_id=question_id,
        repeat_count=repeat.count if repeat else 0,
        repeat_documents=repeat.document_ids if repeat else (),
    )


def _rejected_row(rejected: RejectedResponse, evidence_index: EvidenceIndex,
                  max_columns: int) -> SectionRow:
    question_id = _question_id(rejected.image_ref_id, None)
    pre_images = evidence_index.lookup(question_id).pre if question_id else ()
    return SectionRow(
        reference_value=rejected.reference_value,
        title=rejected.title,
        criterion=rejected.criterion,
        weight="",
        answer=rejected.answer_label or NO_ANSWER,
        comment=rejected.comment,
        gallery=render_gallery(pre_images, max_columns),
        question_id=question_id,
        scored=False,
    )


def build_section_blocks(responses: Sequence[ChecklistResponse],
                         rejected: Sequence[RejectedResponse],
                         section_titles: Sequence[str],
                         evidence_index: EvidenceIndex,
                         max_columns: int,
                         repeat_findings: Optional[Mapping[str, RepeatFinding]] = None) -> Tuple[SectionBlock, ...]:
    by_section: Dict[str, List[ChecklistResponse]] = {}
    for response in responses:
        by_section.setdefault(response.section_title, []).append(response)

    rejected_by_section: Dict[str, List[RejectedResponse]] = {}
    for item in rejected:
        rejected_by_section.setdefault(item.section_title, []).append(item)

    blocks = []
    for title in section_titles:
        items = by_section.get(title, [])
        skipped = rejected_by_section.get(title, [])
        if not items and not skipped:
            continue

        rows = [_response_row(r, evidence_index, max_columns, repeat_findings) for r in items]
        rows += [_rejected_row(r, evidence_index, max_columns) for r in skipped]
        rows.sort(key=lambda row: reference_sort_key(row.reference_value))

        blocks.append(SectionBlock(
            title=title,
            percentage=aggregate_section(items),
            rows=tuple(rows),
        ))

    return tuple(blocks)


def build_trend_table(section_titles: Sequence[str],
                      current_scores: Dict[str, Percentage],
                      historical: Optional[HistoricalScores],
                      cycle_ids: Sequence[str],
                      status: Status) -> TrendTable:
    def past(title: Optional[str], cycle_id: str) -> str:
        if historical is None:
            return format_percentage(None)
        if title is None:
            return format_percentage(historical.overall_for(cycle_id))
        return format_percentage(historical.section(title, cycle_id))

    rows = tuple(
        TrendRow(
            label=title,
            current=format_percentage(current_scores.get(title)),
            historical=tuple(past(title, c) for c in cycle_ids),
        )
        for title in section_titles
    )
    result = TrendRow(
        label=RESULT_ROW_LABEL,
        current=status.value,
        historical=tuple(past(None, c) for c in cycle_ids),
    )
    return TrendTable(cycle_ids=tuple(cycle_ids), rows=rows, result=result)


def build_corrective_block(actions: Sequence[CorrectiveActionItem],
                           max_columns: int) -> CorrectiveBlock:
    return CorrectiveBlock(entries=tuple(
        CorrectiveEntry(action=action, gallery=render_gallery(action.post_action_images, max_columns))
        for action in actions
    ))


def assemble(current_items: Sequence[ChecklistResponse],
             evidence_index: EvidenceIndex,
             historical_scores: Optional[HistoricalScores],
             corrective_actions: Sequence[CorrectiveActionItem],
             specialized_blocks: Sequence[EnrichmentBlock] = (),
             *,
             audit: Optional[Dict[str, Any]] = None,
             section_order: Sequence[str] = (),
             rejected: Sequence[RejectedResponse] = (),
             cycle_ids: Sequence[str] = (),
             pass_threshold: float = 83.0,
             max_gallery_columns: int = 2,
             integrity_warnings: Iterable[Any] = (),
             repeat_findings: Optional[Mapping[str, RepeatFinding]] = None) -> ReportDocument:
    """
    Compose the report document.

    Args:
        current_items: Valid responses of the audit being compiled
        evidence_index: Evidence of that audit
        historical_scores: Trend inputs, or None when history is unavailable
        corrective_actions: Output of corrective_actions.extract
        specialized_blocks: Enrichment blocks, rendered last in given order
        audit: Audit metadata for the header
        section_order: Template section order
        rejected: Items excluded from scoring but kept in the listing
        cycle_ids: Historical cycle columns of the trend table
        pass_threshold: Minimum overall percentage for a Pass
        max_gallery_columns: Images per gallery row
        integrity_warnings: Non-fatal data problems found while compiling
        repeat_findings: Earlier deficiencies of the store keyed by reference
            value; deficient rows matching one carry its count

    Returns:
        The immutable ReportDocument
    """
    titles = section_titles_in_order(section_order, list(current_items) + list(rejected))

    sections = build_section_blocks(
        current_items, rejected, titles, evidence_index, max_gallery_columns, repeat_findings
    )
    current_scores = {block.title: block.percentage for block in sections}

    overall = aggregate_section(current_items)
    status = overall_status(overall, pass_threshold)

    header = ReportHeader.from_audit(audit or {})
    header = replace(header, overall_percentage=overall, status=status)

    return ReportDocument(
        header=header,
        sections=sections,
        trend_table=build_trend_table(titles, current_scores, historical_scores, cycle_ids, status),
        corrective_block=build_corrective_block(corrective_actions, max_gallery_columns),
        enrichment_blocks=tuple(specialized_blocks),
        integrity_warnings=tuple(str(w) for w in integrity_warnings),
    )
