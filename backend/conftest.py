"""
Shared pytest fixtures.

DATABASE_PATH is pointed at a throwaway sqlite file before any module that
imports config is collected.
"""

import os
import tempfile

_TEST_DB_DIR = tempfile.mkdtemp(prefix="audit_reports_test_")
os.environ["DATABASE_PATH"] = os.path.join(_TEST_DB_DIR, "test_audit_reports.db")

import threading  # noqa: E402
from typing import Any, Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402

from checklist import ChecklistResponse, Choice  # noqa: E402
from config import ReportConfig  # noqa: E402
from evidence import EvidenceImage  # noqa: E402


def make_response(reference_value: str = "1.1", weight: float = 4, choice: Choice = Choice.YES,
                  **kwargs) -> ChecklistResponse:
    """ChecklistResponse with sensible defaults."""
    fields = {
        "reference_value": reference_value,
        "title": kwargs.pop("title", f"Question {reference_value}"),
        "weight": weight,
        "selected_choice": choice,
        "section_title": kwargs.pop("section_title", "Food Storage"),
        "document_id": kwargs.pop("document_id", "DOC-0001"),
    }
    fields.update(kwargs)
    return ChecklistResponse(**fields)


def response_record(reference_value: str = "1.1", weight: Optional[float] = 4,
                    answer: str = "Yes", **kwargs) -> Dict[str, Any]:
    """Canonical response record as the store returns it."""
    record = {
        "document_id": "DOC-0001",
        "section_title": "Food Storage",
        "section_number": 1,
        "reference_value": reference_value,
        "title": f"Question {reference_value}",
        "criterion": None,
        "weight": weight,
        "selected_choice": answer,
        "numeric_value": None,
        "comment": None,
        "finding": None,
        "priority": None,
        "corrective_action": None,
        "image_ref_id": "",
    }
    record.update(kwargs)
    return record


def make_image(question_id: str = "87", is_corrective: bool = False, payload: bytes = b"img",
               **kwargs) -> EvidenceImage:
    return EvidenceImage(question_id=question_id, is_corrective=is_corrective, payload=payload, **kwargs)


class FakeStore:
    """
    In-memory raw data store.

    `history` is keyed by (store_name, section_title_or_None, cycle_id) and
    `findings` by store_name. Both are returned as-is, without applying the
    exclusion, so callers' own self-exclusion can be tested. Any method named
    in `failing` raises.
    """

    def __init__(self, audits=None, responses=None, section_order=None, images=None,
                 payloads=None, history=None, stored=None, temperature=None,
                 findings=None, failing=(), failing_cycles=()):
        self.audits = audits or {}
        self.responses = responses or {}
        self.section_order = section_order or {}
        self.images = images or {}
        self.payloads = payloads or {}
        self.history = history or {}
        self.stored = stored or {}
        self.temperature = temperature or {}
        self.findings = findings or {}
        self.failing = set(failing)
        self.failing_cycles = set(failing_cycles)
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def _record(self, name, *args):
        with self._lock:
            self.calls.append((name,) + args)
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")

    def count(self, name) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def get_audit(self, document_id):
        self._record("get_audit", document_id)
        return self.audits.get(document_id)

    def get_section_order(self, document_id):
        self._record("get_section_order", document_id)
        return self.section_order.get(document_id, [])

    def get_responses(self, document_id):
        self._record("get_responses", document_id)
        return self.responses.get(document_id, [])

    def get_images(self, document_id):
        self._record("get_images", document_id)
        return self.images.get(document_id, [])

    def get_image_payload(self, picture_id):
        self._record("get_image_payload", picture_id)
        payload = self.payloads.get(picture_id)
        if isinstance(payload, Exception):
            raise payload
        return payload

    def get_historical_responses(self, store_name, section_title, cycle_id, exclude_document_id):
        self._record("get_historical_responses", store_name, section_title, cycle_id, exclude_document_id)
        if cycle_id in self.failing_cycles:
            raise RuntimeError(f"cycle {cycle_id} unavailable")
        return self.history.get((store_name, section_title, cycle_id), [])

    def get_stored_scores(self, store_name, cycle_id, exclude_document_id):
        self._record("get_stored_scores", store_name, cycle_id, exclude_document_id)
        return self.stored.get((store_name, cycle_id), {})

    def get_historical_findings(self, store_name, exclude_document_id):
        self._record("get_historical_findings", store_name, exclude_document_id)
        return self.findings.get(store_name, [])

    def get_specialized_records(self, kind, document_id):
        self._record("get_specialized_records", kind, document_id)
        if kind != "temperature":
            raise ValueError(f"Unknown specialized record kind: {kind}")
        return self.temperature.get(document_id, [])


@pytest.fixture
def report_config():
    return ReportConfig(fetch_timeout=2.0, max_workers=4)


@pytest.fixture
def clean_db():
    """Fresh tables for each database-backed test."""
    import database as db
    db.drop_db()
    db.init_db()
    yield db
    db.drop_db()
    db.init_db()
