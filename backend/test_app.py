"""API tests against a seeded sqlite store."""

import csv
import io

import openpyxl
import pytest

from app import app
from history import OVERALL_KEY

DOC = "GMRL-FSACR-0048"


@pytest.fixture
def client(clean_db):
    clean_db.save_sections("FSACR", ["Food Storage", "Hygiene"])
    clean_db.save_audit(DOC, "Downtown", [
        {"ReferenceValue": "1.1", "Title": "Food covered", "Coeff": 4, "SelectedChoice": "Yes",
         "SectionName": "Food Storage", "SectionNumber": 1, "ImageID": f"{DOC}-1"},
        {"ReferenceValue": "2.1", "Title": "Sinks clean", "Coeff": 4, "SelectedChoice": "No",
         "SectionName": "Hygiene", "SectionNumber": 2, "ImageID": f"{DOC}-2",
         "Finding": "Sink blocked", "Priority": "High"},
    ], schema_name="FSACR", cycle="C5", audit_date="2024-09-01")
    clean_db.add_picture(DOC, f"{DOC}-2", b"after", is_corrective=True, file_name="sink.jpg")

    clean_db.save_audit("OLD-1", "Downtown", [
        {"ReferenceValue": "1.1", "Coeff": 4, "SelectedChoice": "Partially",
         "SectionName": "Food Storage", "SectionNumber": 1},
    ], schema_name="FSACR", cycle="C1 (Jan/Feb)")
    clean_db.save_section_scores("OLD-1", {"Hygiene": 0.1})

    app.config["TESTING"] = True
    with app.test_client() as test_client:
        yield test_client


class TestHealth:

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.get_json()["status"] == "ok"


class TestReport:

    def test_report_json(self, client):
        response = client.get(f"/api/reports/{DOC}")
        data = response.get_json()

        assert response.status_code == 200
        assert data["header"]["overall_percentage"] == 50
        assert data["header"]["status"] == "Fail"
        assert [s["title"] for s in data["sections"]] == ["Food Storage", "Hygiene"]

        trend = {row["label"]: row for row in data["trend_table"]["rows"]}
        assert trend["Food Storage"]["historical"][0] == "50%"
        assert trend["Hygiene"]["historical"][0] == "Not Available"

        entries = data["corrective_actions"]["entries"]
        assert [e["reference_value"] for e in entries] == ["2.1"]
        assert entries[0]["priority"] == "Critical"
        assert entries[0]["gallery"][0][0]["caption"] == "sink.jpg"

    def test_missing_audit(self, client):
        response = client.get("/api/reports/NOPE")

        assert response.status_code == 404
        assert response.get_json()["error"] == "Audit not found"

    def test_unreadable_responses(self, client, monkeypatch):
        import database

        def broken(document_id):
            raise RuntimeError("disk I/O error")

        monkeypatch.setattr(database, "get_responses", broken)

        response = client.get(f"/api/reports/{DOC}")

        assert response.status_code == 500
        assert response.get_json()["error"] == "Failed to compile report"

    def test_unexpected_error_returns_json(self, client, monkeypatch):
        def broken(document_id, store=None, config=None):
            raise KeyError("section_title")

        monkeypatch.setattr("app.compile_report", broken)

        response = client.get(f"/api/reports/{DOC}")

        assert response.status_code == 500
        assert response.mimetype == "application/json"
        assert response.get_json()["error"] == "Failed to compile report"
        assert "section_title" in response.get_json()["message"]

    def test_repeat_findings_flagged(self, client, clean_db):
        clean_db.save_audit("OLD-3", "Downtown", [
            {"ReferenceValue": "2.1", "Title": "Sinks clean", "Coeff": 4, "SelectedChoice": "No",
             "SectionName": "Hygiene", "SectionNumber": 2},
        ], cycle="C3", audit_date="2024-05-01")

        data = client.get(f"/api/reports/{DOC}").get_json()
        entry = data["corrective_actions"]["entries"][0]
        hygiene = data["sections"][1]

        assert entry["repeat_count"] == 1
        assert entry["repeat_documents"] == ["OLD-3"]
        assert hygiene["repeat_count"] == 1
        assert hygiene["rows"][0]["repeat_documents"] == ["OLD-3"]

    def test_pdf(self, client):
        response = client.get(f"/api/reports/{DOC}/pdf")

        assert response.status_code == 200
        assert response.mimetype == "application/pdf"
        assert response.data.startswith(b"%PDF")


class TestActionExport:

    def test_default_csv(self, client):
        response = client.get(f"/api/reports/{DOC}/actions/export")
        rows = list(csv.DictReader(io.StringIO(response.data.decode("utf-8"))))

        assert response.status_code == 200
        assert response.mimetype == "text/csv"
        assert [r["Reference"] for r in rows] == ["2.1"]
        assert rows[0]["Finding"] == "Sink blocked"

    def test_xlsx(self, client):
        response = client.get(f"/api/reports/{DOC}/actions/export?format=xlsx")
        ws = openpyxl.load_workbook(io.BytesIO(response.data)).active

        assert response.status_code == 200
        assert ws.cell(row=2, column=3).value == "2.1"

    def test_json(self, client):
        response = client.get(f"/api/reports/{DOC}/actions/export?format=json")

        assert response.status_code == 200
        assert response.get_json()["none_required"] is False

    def test_unknown_format(self, client):
        response = client.get(f"/api/reports/{DOC}/actions/export?format=docx")
        assert response.status_code == 400

    def test_overall_history_from_stored_score(self, client, clean_db):
        clean_db.save_audit("OLD-2", "Downtown", cycle="C2", total_score=72.4)

        data = client.get(f"/api/reports/{DOC}").get_json()

        assert data["trend_table"]["result"]["historical"][1] == "72%"
        assert OVERALL_KEY not in [row["label"] for row in data["trend_table"]["rows"]]
