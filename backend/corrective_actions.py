"""
Corrective Action Extractor.

Selects the responses that fall short of full compliance, attaches their
post-action evidence, and settles a severity for each: the auditor's own
priority when it names a known level, otherwise one derived from the item's
score ratio.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Tuple

from checklist import ChecklistResponse, Choice, Severity
from evidence import EvidenceImage, EvidenceIndex, extract_question_id
from history import RepeatFinding, repeat_key
from scoring import classify_severity, score_item, score_ratio

logger = logging.getLogger(__name__)


# Priority labels used by auditors, mapped onto the three severities
PRIORITY_LABELS = {
    "critical": Severity.CRITICAL,
    "high": Severity.CRITICAL,
    "major": Severity.MAJOR,
    "medium": Severity.MAJOR,
    "moderate": Severity.MAJOR,
    "minor": Severity.MINOR,
    "low": Severity.MINOR,
}

SEVERITY_ORDER = {
    Severity.CRITICAL: 0,
    Severity.MAJOR: 1,
    Severity.MINOR: 2,
}


@dataclass(frozen=True)
class CorrectiveActionItem:
    """A response below full compliance, with what is needed to act on it."""
    source: ChecklistResponse
    severity: Severity
    post_action_images: Tuple[EvidenceImage, ...] = ()
    severity_derived: bool = False
    repeat_count: int = 0
    repeat_documents: Tuple[str, ...] = ()

    @property
    def is_repeat(self) -> bool:
        return self.repeat_count > 0

    @property
    def question_id(self) -> str:
        return extract_question_id(self.source.image_ref_id, self.source.document_id)

    @property
    def contribution(self) -> float:
        return score_item(self.source)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "reference_value": self.source.reference_value,
            "section_title": self.source.section_title,
            "title": self.source.title,
            "answer": self.source.selected_choice.value or None,
            "weight": self.source.weight,
            "contribution": self.contribution,
            "finding": self.source.finding,
            "comment": self.source.comment,
            "corrective_action": self.source.corrective_action,
            "priority": self.severity.value,
            "severity_derived": self.severity_derived,
            "post_action_image_count": len(self.post_action_images),
            "repeat_count": self.repeat_count,
            "repeat_documents": list(self.repeat_documents),
        }


def requires_action(response: ChecklistResponse) -> bool:
    """
    True when a response earned less than its full weight.

    NA is always exempt, whatever else the record says.
    """
    if response.selected_choice is Choice.NA:
        return False
    return score_item(response) < response.weight


def parse_priority(priority: Optional[str]) -> Optional[Severity]:
    """
    Map an auditor-entered priority onto a severity.

    Returns None for an empty priority. Unknown labels are logged and also
    return None so the caller falls back to a derived severity.
    """
    if priority is None or not str(priority).strip():
        return None

    severity = PRIORITY_LABELS.get(str(priority).strip().lower())
    if severity is None:
        logger.warning(f"Unrecognised priority {priority!r}, deriving severity from score")
    return severity


def resolve_severity(response: ChecklistResponse) -> Tuple[Severity, bool]:
    """
    Severity of a qualifying response.

    Returns:
        Tuple of (severity, derived) where derived is True when the severity
        was computed from the score ratio rather than read from the record
    """
    explicit = parse_priority(response.priority)
    if explicit is not None:
        return explicit, False
    return classify_severity(score_ratio(response)), True


def find_repeat(response: ChecklistResponse,
                repeat_findings: Optional[Mapping[str, RepeatFinding]]) -> Optional[RepeatFinding]:
    """Earlier occurrences of the same deficiency, if any."""
    if not repeat_findings:
        return None
    return repeat_findings.get(repeat_key(response.reference_value, response.title))


def extract(items: Iterable[ChecklistResponse],
            evidence_index: Optional[EvidenceIndex] = None,
            repeat_findings: Optional[Mapping[str, RepeatFinding]] = None) -> List[CorrectiveActionItem]:
    """
    Build the corrective-action list for an audit.

    Args:
        items: Current-audit responses, in report order
        evidence_index: Evidence of the audit; post-action images are joined
            by question id. None means no evidence was captured.
        repeat_findings: Earlier deficiencies of the store keyed by
            reference value (see history.TrendAggregator.get_repeat_findings)

    Returns:
        One CorrectiveActionItem per qualifying response, in input order
    """
    actions: List[CorrectiveActionItem] = []

    for response in items:
        if not requires_action(response):
            continue

        severity, derived = resolve_severity(response)

        post_images: Tuple[EvidenceImage, ...] = ()
        if evidence_index is not None:
            question_id = extract_question_id(response.image_ref_id, response.document_id)
            post_images = evidence_index.lookup(question_id).post

        repeat = find_repeat(response, repeat_findings)

        actions.append(CorrectiveActionItem(
            source=response,
            severity=severity,
            post_action_images=post_images,
            severity_derived=derived,
            repeat_count=repeat.count if repeat else 0,
            repeat_documents=repeat.document_ids if repeat else (),
        ))

    return actions


def summarize(actions: Iterable[CorrectiveActionItem]) -> dict:
    """Count corrective actions per severity."""
    counts = {severity.value: 0 for severity in SEVERITY_ORDER}
    total = 0
    for action in actions:
        counts[action.severity.value] += 1
        total += 1
    counts["total"] = total
    return counts
