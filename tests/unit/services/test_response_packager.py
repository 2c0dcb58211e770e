import json

from submission_intake.services.extraction.models import FieldExtractionRecord
from submission_intake.services.qa.submission_qa import QAFlags
from submission_intake.services.response_packager import ResponsePackager

DATA = {
    "submission": {"namedInsured": "Acme Holdings LLC", "effectiveDate": "2025-04-01"},
    "locations": [{"address": "100 Main St"}, {"address": "200 Oak Ave"}],
    "coverage": {"buildingLimit": "$5,000,000"},
}

RECORDS = [
    FieldExtractionRecord("submission.namedInsured", "namedInsured", "Acme Holdings LLC", "email_body"),
    FieldExtractionRecord("submission.effectiveDate", "effectiveDate", "2025-04-01", "acord"),
    FieldExtractionRecord("coverage.deductible", "deductible", None, "other"),
]


class TestResponsePackager:

    def test_summary(self):
        flags = QAFlags()
        flags.flag("missing_deductible", "Deductible was not found")

        summary = ResponsePackager.summarize(DATA, flags, RECORDS)

        assert summary == (
            "Submission for Acme Holdings LLC effective 2025-04-01: "
            "2 location(s), building limit $5,000,000. "
            "Extracted 2 of 3 fields; 0 QA warning(s), 1 confidence flag(s)."
        )

    def test_summary_without_data(self):
        summary = ResponsePackager.summarize({}, QAFlags(), [])
        assert summary.startswith("Submission for Unknown insured: 0 location(s).")

    def test_table_lists_found_fields_only(self):
        table = ResponsePackager.render_table(RECORDS)
        lines = table.splitlines()

        assert len(lines) == 2
        assert lines[0].startswith("submission.namedInsured ")
        assert lines[0].endswith("Acme Holdings LLC  [email_body]")
        assert "deductible" not in table

    def test_empty_table(self):
        assert ResponsePackager.render_table([]) == "No fields extracted."

    def test_package_json(self):
        packaged = ResponsePackager().package(DATA, QAFlags(), RECORDS)
        assert json.loads(packaged.json) == DATA
        assert set(packaged.to_dict()) == {"summary", "table", "json"}
