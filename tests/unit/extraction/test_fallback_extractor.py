from submission_intake.services.extraction.context_builder import build_context
from submission_intake.services.extraction.fallback_extractor import FallbackExtractor, merge_fallback
from submission_intake.services.extraction.field_schema import load_field_schema
from submission_intake.services.extraction.models import EmailContent, FieldExtractionRecord


def _context(body, documents=None):
    email = EmailContent(from_address="broker@brokerage.example", subject="Submission", body=body)
    return build_context(email, documents or {})


class TestFallbackExtractor:

    def test_extracts_covered_fields(self):
        context = _context(
            "Named Insured: Harbor Cove Apartments\n"
            "Carrier: Zenith Mutual\n"
            "Broker: Dana Lee\n"
            "Effective Date: 04/01/2025\n"
            "Expiration Date - April 1, 2026\n",
            {"sov": "Bldg 1 totals 24,000 sq ft\nBuilding Limit: $3,500,000"},
        )
        found = FallbackExtractor().extract(context, load_field_schema().flatten())

        assert found["submission.namedInsured"].field_value == "Harbor Cove Apartments"
        assert found["submission.carrierName"].field_value == "Zenith Mutual"
        assert found["submission.brokerName"].field_value == "Dana Lee"
        assert found["submission.effectiveDate"].field_value == "2025-04-01"
        assert found["submission.expirationDate"].field_value == "2026-04-01"
        assert found["locations[0].buildings[0].buildingSqFt"].field_value == 24000
        assert found["coverage.buildingLimit"].field_value == 3500000

        sqft = found["locations[0].buildings[0].buildingSqFt"]
        assert sqft.source == "sov"
        assert "<mark>24,000</mark>" in sqft.evidence_snippet
        assert sqft.reasoning == "Deterministic fallback: pattern match in sov"

    def test_prior_carrier_is_not_the_carrier(self):
        found = FallbackExtractor().extract(_context("Prior Carrier: Old Mutual"), load_field_schema().flatten())
        assert "submission.carrierName" not in found

    def test_fields_outside_requested_specs_are_ignored(self):
        specs = [s for s in load_field_schema().flatten() if s.path == "submission.namedInsured"]
        found = FallbackExtractor().extract(_context("Named Insured: Acme\nCarrier: Zenith"), specs)
        assert list(found) == ["submission.namedInsured"]


class TestMergeFallback:

    def test_only_null_records_in_scope_are_replaced(self):
        records = [
            FieldExtractionRecord("a.x", "x", None),
            FieldExtractionRecord("a.y", "y", "model value"),
            FieldExtractionRecord("a.z", "z", None),
        ]
        fallback = {
            "a.x": FieldExtractionRecord("a.x", "x", "fx", source="email_body"),
            "a.y": FieldExtractionRecord("a.y", "y", "fy", source="email_body"),
            "a.z": FieldExtractionRecord("a.z", "z", "fz", source="email_body"),
        }
        merged = merge_fallback(records, fallback, paths=["a.x", "a.y"])
        assert [r.field_value for r in merged] == ["fx", "model value", None]
