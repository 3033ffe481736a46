"""
Checklist domain types for the Audit Report Compilation Engine.

Holds the canonical ChecklistResponse shape, the answer/severity/status
enums, the error taxonomy, and the single normalization step that turns a
raw source record (with its field-name aliases) into a canonical record.

Nothing past this module ever sees a raw field name.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


# =============================================================================
# ERRORS
# =============================================================================

class ValidationError(ValueError):
    """A checklist item is malformed (e.g. non-positive weight)."""


class LookupFailure(RuntimeError):
    """An external fetch failed or timed out. Always recovered locally."""

    def __init__(self, key: Any, reason: str):
        super().__init__(f"Lookup failed for {key!r}: {reason}")
        self.key = key
        self.reason = reason


class IntegrityWarning(UserWarning):
    """Non-fatal data inconsistency, e.g. evidence for an unknown question."""


class ReportCompilationError(RuntimeError):
    """The current document's own responses could not be read."""


class AuditNotFoundError(ReportCompilationError):
    """No audit exists for the requested document number."""


# =============================================================================
# ENUMS
# =============================================================================

class Choice(Enum):
    """Answer given to a checklist question."""
    YES = "Yes"
    PARTIALLY = "Partially"
    NO = "No"
    NA = "NA"
    UNANSWERED = ""

    @classmethod
    def parse(cls, label: Optional[str], numeric_value: Optional[float] = None) -> "Choice":
        """
        Resolve a choice from its text label, falling back to the numeric
        encoding (2 = Yes, 1 = Partially, 0 = No) when the label is blank.

        Raises:
            ValidationError: if the label, or the numeric value used in its
                place, is present but not recognised
        """
        text = (label or "").strip()
        if text:
            choice = _CHOICE_LABELS.get(text.lower())
            if choice is None:
                raise ValidationError(f"Unrecognised answer label: {label!r}")
            return choice

        if numeric_value is not None:
            choice = _CHOICE_NUMERIC.get(numeric_value)
            if choice is None:
                raise ValidationError(f"Unrecognised answer value: {numeric_value!r}")
            return choice

        return cls.UNANSWERED


_CHOICE_LABELS = {
    "yes": Choice.YES,
    "partially": Choice.PARTIALLY,
    "partial": Choice.PARTIALLY,
    "no": Choice.NO,
    "na": Choice.NA,
    "n/a": Choice.NA,
}

_CHOICE_NUMERIC = {
    2: Choice.YES,
    1: Choice.PARTIALLY,
    0: Choice.NO,
}


class Severity(Enum):
    """Severity of a corrective action."""
    CRITICAL = "Critical"
    MAJOR = "Major"
    MINOR = "Minor"


class Status(Enum):
    """Overall audit outcome."""
    PASS = "Pass"
    FAIL = "Fail"


# =============================================================================
# RESPONSES
# =============================================================================

@dataclass(frozen=True)
class ChecklistResponse:
    """One answered question in an audit."""
    reference_value: str
    title: str
    weight: float
    selected_choice: Choice
    criterion: Optional[str] = None
    numeric_value: Optional[float] = None
    comment: Optional[str] = None
    finding: Optional[str] = None
    priority: Optional[str] = None
    corrective_action: Optional[str] = None
    image_ref_id: str = ""
    section_title: str = ""
    section_number: Optional[int] = None
    document_id: Optional[str] = None

    def __post_init__(self):
        if self.weight is None or not math.isfinite(self.weight) or self.weight <= 0:
            raise ValidationError(
                f"Item {self.reference_value!r} has an invalid weight: {self.weight!r}"
            )


@dataclass(frozen=True)
class RejectedResponse:
    """
    A record that failed validation. It stays in the section listing but is
    never scored.
    """
    reference_value: str
    title: str
    section_title: str
    section_number: Optional[int]
    answer_label: str
    comment: Optional[str]
    image_ref_id: str
    error: str
    criterion: Optional[str] = None


# =============================================================================
# NORMALIZATION
# =============================================================================

# Canonical field -> aliases seen in the source system, in priority order
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "document_id": ("document_id", "document_number", "DocumentNumber", "Document_x0020_Number"),
    "section_title": ("section_title", "section_name", "SectionName", "Section"),
    "section_number": ("section_number", "SectionNumber"),
    "reference_value": ("reference_value", "ReferenceValue", "Reference", "Ref"),
    "title": ("title", "Title", "Question"),
    "criterion": ("criterion", "cr", "CR", "Criteria"),
    "weight": ("weight", "coeff", "Coeff", "Coefficient", "Coef"),
    "selected_choice": ("selected_choice", "SelectedChoice", "Answer"),
    "numeric_value": ("numeric_value", "NumericValue", "answer_value"),
    "comment": ("comment", "Comment", "Comments", "Note", "notes"),
    "finding": ("finding", "Finding"),
    "priority": ("priority", "Priority"),
    "corrective_action": ("corrective_action", "CorrectiveAction", "correctedaction"),
    "image_ref_id": ("image_ref_id", "ImageID", "Id", "ID"),
}


def _first_present(raw: Dict[str, Any], aliases: Tuple[str, ...]) -> Any:
    for alias in aliases:
        value = raw.get(alias)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> Optional[int]:
    number = _to_float(value)
    if number is None or not math.isfinite(number):
        return None
    return int(number)


def _to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_record(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Resolve the source system's field-name aliases into one canonical record.

    Args:
        raw: Record as read from the source (ORM dict, imported JSON, ...)

    Returns:
        Dictionary keyed by the canonical field names of FIELD_ALIASES
    """
    record = {field: _first_present(raw, aliases) for field, aliases in FIELD_ALIASES.items()}

    record["reference_value"] = _to_text(record["reference_value"]) or ""
    record["title"] = _to_text(record["title"]) or ""
    record["section_title"] = _to_text(record["section_title"]) or ""
    record["image_ref_id"] = _to_text(record["image_ref_id"]) or ""
    record["document_id"] = _to_text(record["document_id"])
    record["section_number"] = _to_int(record["section_number"])
    record["weight"] = _to_float(record["weight"])
    record["numeric_value"] = _to_float(record["numeric_value"])
    record["selected_choice"] = _to_text(record["selected_choice"]) or ""
    for field in ("criterion", "comment", "finding", "priority", "corrective_action"):
        record[field] = _to_text(record[field])

    return record


def response_from_record(record: Dict[str, Any]) -> ChecklistResponse:
    """
    Build a ChecklistResponse from a canonical record.

    Raises:
        ValidationError: if the record's weight or answer label is malformed
    """
    choice = Choice.parse(record.get("selected_choice"), record.get("numeric_value"))
    return ChecklistResponse(
        reference_value=record.get("reference_value") or "",
        title=record.get("title") or "",
        weight=record.get("weight"),
        selected_choice=choice,
        criterion=record.get("criterion"),
        numeric_value=record.get("numeric_value"),
        comment=record.get("comment"),
        finding=record.get("finding"),
        priority=record.get("priority"),
        corrective_action=record.get("corrective_action"),
        image_ref_id=record.get("image_ref_id") or "",
        section_title=record.get("section_title") or "",
        section_number=record.get("section_number"),
        document_id=record.get("document_id"),
    )


def build_responses(records: List[Dict[str, Any]]) -> Tuple[List[ChecklistResponse], List[RejectedResponse]]:
    """
    Build responses from canonical records, setting malformed ones aside.

    Returns:
        Tuple of (valid_responses, rejected_responses), both in input order
    """
    valid: List[ChecklistResponse] = []
    rejected: List[RejectedResponse] = []

    for record in records:
        try:
            valid.append(response_from_record(record))
        except ValidationError as e:
            logger.warning(f"Excluding item {record.get('reference_value')!r} from scoring: {e}")
            rejected.append(RejectedResponse(
                reference_value=record.get("reference_value") or "",
                title=record.get("title") or "",
                section_title=record.get("section_title") or "",
                section_number=record.get("section_number"),
                answer_label=record.get("selected_choice") or "",
                comment=record.get("comment"),
                image_ref_id=record.get("image_ref_id") or "",
                error=str(e),
                criterion=record.get("criterion"),
            ))

    return valid, rejected


def reference_sort_key(reference_value: str) -> Tuple:
    """
    Natural sort key for hierarchical reference values ("1.2" < "1.10").
    Non-numeric segments sort after numeric ones, alphabetically.
    """
    parts = []
    for segment in (reference_value or "").split("."):
        segment = segment.strip()
        try:
            parts.append((0, float(segment), ""))
        except ValueError:
            parts.append((1, 0.0, segment))
    return tuple(parts)
