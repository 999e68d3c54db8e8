"""Tests for the Field Normalizer."""

from dual_anon.domain import fields
from dual_anon.domain.services.field_normalizer import (
    FIELD_ALIASES,
    normalize_key,
    normalize_record,
)


class TestNormalizeKey:
    """Test alias key folding."""

    def test_separators_and_case_fold(self):
        """Underscores, hyphens and repeated spaces fold to a single space."""
        assert normalize_key("date_of_birth") == "date of birth"
        assert normalize_key("Date-Of-Birth") == "date of birth"
        assert normalize_key("  DATE   OF  BIRTH ") == "date of birth"


class TestNormalizeRecord:
    """Test canonical field resolution."""

    def test_synonyms_resolve_to_canonical_names(self):
        """Common export headers map to canonical fields."""
        normalized = normalize_record({
            "DOB": "1980-01-15",
            "sex": "F",
            "patient_id": "P001",
            "Job Title": "Teacher",
            "Test Name": "Glucose",
            "zip": "00256",
        })
        assert normalized == {
            fields.DATE_OF_BIRTH: "1980-01-15",
            fields.GENDER: "F",
            fields.PATIENT_ID: "P001",
            fields.OCCUPATION: "Teacher",
            fields.LAB_TEST: "Glucose",
            fields.POSTAL_CODE: "00256",
        }

    def test_first_declared_synonym_wins(self):
        """The canonical name takes precedence over later synonyms."""
        normalized = normalize_record({
            "Birth Date": "1990-01-01",
            "Date of Birth": "1980-01-01",
        })
        assert normalized[fields.DATE_OF_BIRTH] == "1980-01-01"

    def test_empty_synonym_falls_through(self):
        """A blank higher-priority synonym does not hide a filled one."""
        normalized = normalize_record({"Date of Birth": "  ", "DOB": "1975-05-05"})
        assert normalized[fields.DATE_OF_BIRTH] == "1975-05-05"

    def test_unresolved_fields_are_absent(self):
        """Canonical fields without a non-empty synonym are not present."""
        normalized = normalize_record({"Patient ID": "P1", "Age": "", "Gender": None})
        assert fields.AGE not in normalized
        assert fields.GENDER not in normalized

    def test_unknown_fields_pass_through(self):
        """Fields that match no alias keep their name and a stripped value."""
        normalized = normalize_record({" Lab Notes ": " fasting "})
        assert normalized == {"Lab Notes": "fasting"}

    def test_values_are_strings(self):
        """Non-string values are converted to text."""
        normalized = normalize_record({"Age": 45, "Result": 5.5})
        assert normalized[fields.AGE] == "45"
        assert normalized[fields.RESULT] == "5.5"

    def test_input_is_not_mutated(self):
        """Normalization returns a new mapping."""
        raw = {"DOB": "1980-01-15"}
        normalize_record(raw)
        assert raw == {"DOB": "1980-01-15"}

    def test_alias_table_lists_canonical_name_first(self):
        """Each alias list starts with its canonical field."""
        for canonical, aliases in FIELD_ALIASES.items():
            assert aliases[0] == canonical
