"""Tests for report assembly."""

import json

from checklist import Choice, RejectedResponse, Status
from conftest import make_image, make_response
from corrective_actions import extract
from evidence import EvidenceIndex
from history import HistoricalScores, RepeatFinding
from report_assembler import (
    NO_CORRECTIVE_ACTION_MESSAGE,
    EnrichmentBlock,
    assemble,
    order_responses,
)
from scoring import NOT_AVAILABLE

AUDIT = {"document_number": "DOC-0001", "store_name": "Downtown", "cycle": "C5"}


def _assemble(items, index=None, historical=None, **kwargs):
    index = index if index is not None else EvidenceIndex.build([])
    kwargs.setdefault("audit", AUDIT)
    kwargs.setdefault("cycle_ids", ["C1", "C2"])
    return assemble(items, index, historical, extract(items, index), **kwargs)


class TestSectionTables:

    def test_section_percentage_excludes_na(self):
        items = [
            make_response("1.1", 4, Choice.YES),
            make_response("1.2", 4, Choice.PARTIALLY),
            make_response("1.3", 2, Choice.NA),
        ]

        document = _assemble(items)

        assert document.sections[0].percentage == 75
        assert document.sections[0].percentage_display == "75%"

    def test_display_rules(self):
        items = [
            make_response("1.1", 4, Choice.NA),
            make_response("1.2", 2, Choice.UNANSWERED),
            make_response("1.3", 2, Choice.PARTIALLY),
        ]

        rows = _assemble(items).sections[0].rows

        assert (rows[0].weight, rows[0].answer) == ("", "NA")
        assert (rows[1].weight, rows[1].answer) == ("2", "No Answer")
        assert (rows[2].weight, rows[2].answer) == ("2", "Partially")

    def test_rows_in_reference_order(self):
        items = [make_response(ref, 2, Choice.YES) for ref in ["1.10", "1.2", "1.1"]]
        rows = _assemble(items).sections[0].rows

        assert [r.reference_value for r in rows] == ["1.1", "1.2", "1.10"]

    def test_sections_in_template_order(self):
        items = [
            make_response("3.1", section_title="Waste"),
            make_response("1.1", section_title="Food Storage"),
            make_response("9.1", section_title="Unlisted"),
        ]

        document = _assemble(items, section_order=["Food Storage", "Hygiene", "Waste"])

        assert [s.title for s in document.sections] == ["Food Storage", "Waste", "Unlisted"]
        assert [r.label for r in document.trend_table.rows] == ["Food Storage", "Hygiene", "Waste", "Unlisted"]

    def test_pre_action_gallery(self):
        index = EvidenceIndex.build([
            make_image("11", False, b"a", file_name="before.jpg"),
            make_image("11", True, b"b", file_name="after.jpg"),
        ])
        items = [make_response("1.1", 4, Choice.YES, image_ref_id="DOC-0001-11")]

        row = _assemble(items, index).sections[0].rows[0]

        assert row.question_id == "11"
        assert [c.caption for c in row.gallery.cells] == ["before.jpg"]

    def test_rejected_items_listed_but_not_scored(self):
        rejected = RejectedResponse(
            reference_value="1.2", title="Missing weight", section_title="Food Storage",
            section_number=1, answer_label="No", comment=None, image_ref_id="", error="bad",
            criterion="Below 5 degrees",
        )
        items = [make_response("1.1", 4, Choice.YES)]

        section = _assemble(items, rejected=[rejected]).sections[0]

        assert section.percentage == 100
        assert [(r.reference_value, r.weight, r.answer, r.scored) for r in section.rows] == [
            ("1.1", "4", "Yes", True),
            ("1.2", "", "No", False),
        ]
        assert section.rows[1].criterion == "Below 5 degrees"


class TestTrendTable:

    def test_missing_history_not_available(self):
        document = _assemble([make_response("1.1", 4, Choice.YES)])
        row = document.trend_table.rows[0]

        assert row.current == "100%"
        assert row.historical == (NOT_AVAILABLE, NOT_AVAILABLE)

    def test_history_and_result_row(self):
        historical = HistoricalScores(
            cycle_ids=("C1", "C2"),
            sections={("Food Storage", "C1"): 60, ("Food Storage", "C2"): None},
            overall={"C1": 64, "C2": None},
        )
        items = [make_response("1.1", 4, Choice.YES), make_response("1.2", 4, Choice.PARTIALLY)]

        trend = _assemble(items, historical=historical, pass_threshold=70).trend_table

        assert trend.headers == ["Section", "Current", "C1", "C2"]
        assert trend.rows[0].current == "75%"
        assert trend.rows[0].historical == ("60%", NOT_AVAILABLE)
        assert trend.result.label == "Result"
        assert trend.result.current == "Pass"
        assert trend.result.historical == ("64%", NOT_AVAILABLE)

    def test_fail_below_threshold(self):
        document = _assemble([make_response("1.1", 4, Choice.PARTIALLY)], pass_threshold=83)

        assert document.header.overall_percentage == 50
        assert document.header.status is Status.FAIL
        assert document.trend_table.result.current == "Fail"


class TestCorrectiveBlock:

    def test_none_required_block(self):
        document = _assemble([make_response("1.1", 4, Choice.YES), make_response("1.2", 2, Choice.NA)])

        block = document.corrective_block
        assert block.none_required is True
        assert block.message == NO_CORRECTIVE_ACTION_MESSAGE
        assert block.to_dict()["message"] == NO_CORRECTIVE_ACTION_MESSAGE

    def test_entries_with_post_action_gallery(self):
        index = EvidenceIndex.build([make_image("5", True, b"fixed", file_name="fixed.jpg")])
        items = [make_response("1.5", 4, Choice.NO, image_ref_id="DOC-0001-5")]

        block = _assemble(items, index).corrective_block

        assert block.none_required is False
        assert block.message is None
        assert [c.caption for c in block.entries[0].gallery.cells] == ["fixed.jpg"]


class TestRepeatFindings:

    def _document(self, items):
        repeats = {
            "1.1": RepeatFinding("1.1", 3, ("DOC-0003", "DOC-0002")),
            "1.2": RepeatFinding("1.2", 1, ("DOC-0002",)),
        }
        index = EvidenceIndex.build([])
        return assemble(
            items, index, None, extract(items, index, repeats),
            audit=AUDIT, repeat_findings=repeats,
        )

    def test_only_deficient_rows_flagged(self):
        items = [
            make_response("1.1", 4, Choice.NO),
            make_response("1.2", 4, Choice.YES),
        ]

        section = self._document(items).sections[0]

        assert [(r.reference_value, r.repeat_count) for r in section.rows] == [("1.1", 3), ("1.2", 0)]
        assert section.rows[0].repeat_documents == ("DOC-0003", "DOC-0002")
        assert section.repeat_count == 1

    def test_repeat_in_serialized_document(self):
        data = self._document([make_response("1.1", 4, Choice.PARTIALLY)]).to_dict()

        assert data["sections"][0]["repeat_count"] == 1
        assert data["sections"][0]["rows"][0]["repeat_documents"] == ["DOC-0003", "DOC-0002"]
        assert data["corrective_actions"]["entries"][0]["repeat_count"] == 3


class TestDocument:

    def test_enrichment_blocks_kept_last_in_order(self):
        blocks = [EnrichmentBlock(kind="temperature", title="Temperature Readings")]
        document = _assemble([make_response()], specialized_blocks=blocks)

        assert document.enrichment_blocks == tuple(blocks)

    def test_integrity_warnings_as_text(self):
        document = _assemble([make_response()], integrity_warnings=[UserWarning("orphan image")])
        assert document.integrity_warnings == ("orphan image",)

    def test_to_dict_is_json_serializable(self):
        index = EvidenceIndex.build([make_image("1", False, b"\x00\x01")])
        items = [make_response("1.1", 4, Choice.NO, image_ref_id="DOC-0001-1")]

        data = json.loads(json.dumps(_assemble(items, index).to_dict()))

        assert data["header"]["status"] == "Fail"
        assert data["sections"][0]["rows"][0]["gallery"][0][0]["available"] is True
        assert data["corrective_actions"]["entries"][0]["priority"] == "Critical"

    def test_order_responses(self):
        items = [
            make_response("2.1", section_title="B"),
            make_response("1.10", section_title="A"),
            make_response("1.9", section_title="A"),
        ]
        ordered = order_responses(items, ["A", "B"])

        assert [r.reference_value for r in ordered] == ["1.9", "1.10", "2.1"]
