"""Tests for the sqlite-backed raw data store."""

import pytest

from history import OVERALL_KEY


def _response(ref, answer="Yes", coeff=4, section="Food Storage", number=1, **extra):
    record = {
        "ReferenceValue": ref,
        "Title": f"Question {ref}",
        "Coeff": coeff,
        "SelectedChoice": answer,
        "SectionName": section,
        "SectionNumber": number,
    }
    record.update(extra)
    return record


class TestResponses:

    def test_aliases_normalized(self, clean_db):
        clean_db.save_audit("DOC-1", "Downtown", [
            _response("1.1", "Partially", ImageID="DOC-1-11", Comments="Dusty"),
        ])

        record = clean_db.get_responses("DOC-1")[0]

        assert record["document_id"] == "DOC-1"
        assert record["reference_value"] == "1.1"
        assert record["weight"] == 4
        assert record["selected_choice"] == "Partially"
        assert record["section_title"] == "Food Storage"
        assert record["image_ref_id"] == "DOC-1-11"
        assert record["comment"] == "Dusty"

    def test_unknown_audit(self, clean_db):
        assert clean_db.get_audit("NOPE") is None
        assert clean_db.get_responses("NOPE") == []


class TestSectionOrder:

    def test_template_order(self, clean_db):
        clean_db.save_sections("FSACR", ["Food Storage", "Hygiene", "Waste"])
        clean_db.save_audit("DOC-1", "Downtown", [_response("3.1", section="Waste", number=3)],
                            schema_name="FSACR")

        assert clean_db.get_section_order("DOC-1") == ["Food Storage", "Hygiene", "Waste"]

    def test_falls_back_to_response_order(self, clean_db):
        clean_db.save_audit("DOC-1", "Downtown", [
            _response("2.1", section="Hygiene", number=2),
            _response("1.1", section="Food Storage", number=1),
            _response("1.2", section="Food Storage", number=1),
        ])

        assert clean_db.get_section_order("DOC-1") == ["Food Storage", "Hygiene"]


class TestHistoricalLookup:

    def _seed(self, db):
        db.save_audit("OLD-A", "Downtown", [_response("1.1", "No")], cycle="C1 (Jan/Feb)",
                      year=2023, audit_date="2023-01-10")
        db.save_audit("OLD-B", "Downtown", [_response("1.1", "Yes")], cycle="C1",
                      year=2024, audit_date="2024-01-15")
        db.save_audit("OLD-C", "Downtown", [_response("1.1", "Partially")], cycle="C10",
                      year=2025, audit_date="2025-10-01")
        db.save_audit("OTHER", "Uptown", [_response("1.1", "Yes")], cycle="C1",
                      year=2025, audit_date="2025-01-01")

    def test_most_recent_audit_of_the_cycle(self, clean_db):
        self._seed(clean_db)

        records = clean_db.get_historical_responses("Downtown", "Food Storage", "C1", "CURRENT")

        assert [r["document_id"] for r in records] == ["OLD-B"]

    def test_prefix_does_not_match_longer_cycle_numbers(self, clean_db):
        self._seed(clean_db)
        clean_db.delete_audit("OLD-B")
        clean_db.delete_audit("OLD-A")

        assert clean_db.get_historical_responses("Downtown", None, "C1", "CURRENT") == []

    def test_current_document_excluded(self, clean_db):
        self._seed(clean_db)

        records = clean_db.get_historical_responses("Downtown", None, "C1", "OLD-B")

        assert [r["document_id"] for r in records] == ["OLD-A"]

    def test_section_filter(self, clean_db):
        clean_db.save_audit("OLD", "Downtown", [
            _response("1.1"),
            _response("2.1", section="Hygiene", number=2),
        ], cycle="C2")

        hygiene = clean_db.get_historical_responses("Downtown", "Hygiene", "C2", "CURRENT")
        everything = clean_db.get_historical_responses("Downtown", None, "C2", "CURRENT")

        assert [r["reference_value"] for r in hygiene] == ["2.1"]
        assert len(everything) == 2

    def test_stored_scores(self, clean_db):
        clean_db.save_audit("OLD", "Downtown", cycle="C3", total_score=0.1)
        clean_db.save_section_scores("OLD", {"Food Storage": 88.0, "Hygiene": 0.1})

        scores = clean_db.get_stored_scores("Downtown", "C3", "CURRENT")

        assert scores == {"Food Storage": 88.0, "Hygiene": 0.1, OVERALL_KEY: 0.1}
        assert clean_db.get_stored_scores("Downtown", "C4", "CURRENT") == {}


class TestHistoricalFindings:

    def test_deficient_answers_of_earlier_completed_audits(self, clean_db):
        clean_db.save_audit("OLD-A", "Downtown", [
            _response("1.1", "No"), _response("1.2", "Yes"), _response("1.3", "partially"),
        ], audit_date="2024-01-10")
        clean_db.save_audit("OLD-B", "Downtown", [_response("1.1", "Partially")], audit_date="2024-05-10")
        clean_db.save_audit("DRAFT", "Downtown", [_response("1.1", "No")], status="in_progress")
        clean_db.save_audit("OTHER", "Uptown", [_response("1.1", "No")])
        clean_db.save_audit("CURRENT", "Downtown", [_response("1.1", "No")])

        records = clean_db.get_historical_findings("Downtown", "CURRENT")

        assert [(r["reference_value"], r["document_id"]) for r in records] == [
            ("1.1", "OLD-B"),
            ("1.1", "OLD-A"),
            ("1.3", "OLD-A"),
        ]
        assert records[0]["selected_choice"] == "Partially"
        assert records[0]["title"] == "Question 1.1"

    def test_no_earlier_findings(self, clean_db):
        clean_db.save_audit("CURRENT", "Downtown", [_response("1.1", "No")])
        assert clean_db.get_historical_findings("Downtown", "CURRENT") == []


class TestEvidence:

    def test_images_listed_without_payload(self, clean_db):
        clean_db.save_audit("DOC-1", "Downtown")
        first = clean_db.add_picture("DOC-1", "DOC-1-87", b"before", file_name="a.jpg")
        clean_db.add_picture("DOC-1", "DOC-1-87", b"after", is_corrective=True, file_name="b.jpg")

        images = clean_db.get_images("DOC-1")

        assert [i["file_name"] for i in images] == ["a.jpg", "b.jpg"]
        assert [i["is_corrective"] for i in images] == [False, True]
        assert all("file_data" not in i for i in images)
        assert clean_db.get_image_payload(first["id"]) == b"before"

    def test_missing_payload(self, clean_db):
        assert clean_db.get_image_payload(9999) is None


class TestSpecializedRecords:

    def test_temperature_readings(self, clean_db):
        clean_db.save_audit("DOC-1", "Downtown")
        clean_db.add_temperature_reading("DOC-1", "Finding", "Freezer 2", -12, -10.5,
                                         issue="Door seal", section="Kitchen", picture=b"jpeg")
        clean_db.add_temperature_reading("DOC-1", "Good", "Fridge 1", 3, 3.5, section="Kitchen")

        records = clean_db.get_specialized_records("temperature", "DOC-1")

        assert [r["reading_type"] for r in records] == ["Finding", "Good"]
        assert records[0]["picture"] == b"jpeg"

    def test_unknown_kind(self, clean_db):
        with pytest.raises(ValueError):
            clean_db.get_specialized_records("pest_control", "DOC-1")


class TestDelete:

    def test_delete_cascades(self, clean_db):
        clean_db.save_audit("DOC-1", "Downtown", [_response("1.1")])
        clean_db.add_picture("DOC-1", "DOC-1-1", b"x")

        assert clean_db.delete_audit("DOC-1") is True
        assert clean_db.get_responses("DOC-1") == []
        assert clean_db.get_images("DOC-1") == []
        assert clean_db.delete_audit("DOC-1") is False
