"""
Scoring Engine for checklist responses.

Pure functions: item contribution, section percentage, severity derivation
and overall Pass/Fail. No I/O.

Percentages are whole numbers. A section or cycle with nothing to score has
no percentage at all (None), which is distinct from 0.
"""

import math
from typing import Iterable, Optional, Union

from checklist import ChecklistResponse, Choice, Severity, Status

# Share of the weight earned by each answer
CHOICE_FACTORS = {
    Choice.YES: 1.0,
    Choice.PARTIALLY: 0.5,
    Choice.NO: 0.0,
    Choice.UNANSWERED: 0.0,
    Choice.NA: 0.0,
}

# Legacy "not yet scored" placeholder written by the old survey lists.
LEGACY_PLACEHOLDER_SCORE = 0.1

NOT_AVAILABLE = "Not Available"

Percentage = Optional[int]


def is_scorable(response: ChecklistResponse) -> bool:
    """NA items take no part in a section aggregate."""
    return response.selected_choice is not Choice.NA


def score_item(response: ChecklistResponse) -> float:
    """
    Contribution of one response to its section score.

    Yes earns the full weight, Partially half of it, No and Unanswered
    nothing. NA also returns 0 but is kept out of the aggregate entirely.
    """
    return response.weight * CHOICE_FACTORS[response.selected_choice]


def round_percentage(value: float) -> int:
    """Round half up to a whole percentage."""
    return int(math.floor(value + 0.5))


def aggregate_section(items: Iterable[ChecklistResponse]) -> Percentage:
    """
    Weighted compliance percentage of a group of responses.

    Args:
        items: Responses of one section (or of a whole audit)

    Returns:
        Whole percentage in [0, 100], or None when no item is scorable
    """
    earned = 0.0
    possible = 0.0

    for item in items:
        if not is_scorable(item):
            continue
        earned += score_item(item)
        possible += item.weight

    if possible <= 0:
        return None

    return round_percentage(earned / possible * 100)


def score_ratio(response: ChecklistResponse) -> float:
    """Share of its own weight an item earned."""
    return score_item(response) / response.weight


def classify_severity(ratio: float) -> Severity:
    """
    Derive a severity from an item's score ratio (contribution / weight).

    Used only when the auditor left the priority empty:
        ratio == 0          -> Critical
        0 < ratio <= 0.5    -> Major
        0.5 < ratio < 1     -> Minor

    Raises:
        ValueError: for ratios outside [0, 1); fully compliant items never
            need a severity
    """
    if ratio < 0 or ratio >= 1:
        raise ValueError(f"Severity is only defined for ratios in [0, 1), got {ratio}")
    if ratio == 0:
        return Severity.CRITICAL
    if ratio <= 0.5:
        return Severity.MAJOR
    return Severity.MINOR


def overall_status(percentage: Percentage, pass_threshold: float) -> Status:
    """Pass when the percentage reaches the configured threshold."""
    if percentage is None:
        return Status.FAIL
    return Status.PASS if percentage >= pass_threshold else Status.FAIL


def is_placeholder_score(value: Optional[Union[int, float]]) -> bool:
    """True for the legacy 0.1 "not yet available" marker."""
    if value is None:
        return False
    return math.isclose(float(value), LEGACY_PLACEHOLDER_SCORE, abs_tol=1e-9)


def normalize_stored_score(value) -> Percentage:
    """
    Convert a persisted score to a percentage.

    Missing values, unparseable values and the legacy 0.1 placeholder all
    become None.
    """
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or is_placeholder_score(number):
        return None
    return round_percentage(number)


def format_percentage(value: Optional[Union[int, float]]) -> str:
    """Display form of a percentage; every gap renders the same token."""
    normalized = normalize_stored_score(value)
    if normalized is None:
        return NOT_AVAILABLE
    return f"{normalized}%"
