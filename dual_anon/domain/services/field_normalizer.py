"""Field Normalizer.

Resolves the loosely-named field vocabulary of source systems ("DOB",
"Birth Date", "sex", "patient_id", ...) to the canonical field names every
later stage works against. The alias table is applied once at ingestion so
downstream code never needs fallback lookups.

Architecture:
    - Pure function, no side effects
    - Declared alias table: canonical field → ordered synonyms
"""

import re
from typing import Any, Mapping, Optional

from dual_anon.domain import fields

# Canonical field → synonyms, in priority order. The canonical name comes first.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    fields.PATIENT_NAME: (fields.PATIENT_NAME, "Name", "Full Name", "Patient Full Name"),
    fields.PATIENT_ID: (fields.PATIENT_ID, "PatientID", "Patient Number", "MRN", "Medical Record Number"),
    fields.ADDRESS: (fields.ADDRESS, "Street Address", "Home Address", "Residence"),
    fields.CITY: (fields.CITY, "Town", "Village"),
    fields.LOCATION: (fields.LOCATION,),
    fields.REGION: (fields.REGION, "State", "Province"),
    fields.DISTRICT: (fields.DISTRICT, "County", "Sub County"),
    fields.POSTAL_CODE: (fields.POSTAL_CODE, "Zip Code", "ZIP", "Postcode"),
    fields.PHONE_NUMBER: (fields.PHONE_NUMBER, "Phone", "Telephone", "Mobile", "Contact Number"),
    fields.EMAIL: (fields.EMAIL, "Email Address", "E Mail"),
    fields.DATE_OF_BIRTH: (fields.DATE_OF_BIRTH, "DOB", "Birth Date", "Birthdate"),
    fields.AGE: (fields.AGE, "Age Years", "Age (years)"),
    fields.GENDER: (fields.GENDER, "Sex"),
    fields.OCCUPATION: (fields.OCCUPATION, "Job", "Profession", "Job Title"),
    fields.LAB_TEST: (fields.LAB_TEST, "Test Name", "Test", "Lab Test Name"),
    fields.TEST_DATE: (fields.TEST_DATE, "Date of Test", "Sample Date"),
    fields.DIAGNOSIS_DATE: (fields.DIAGNOSIS_DATE, "Date of Diagnosis"),
    fields.ENCOUNTER_DATE: (fields.ENCOUNTER_DATE, "Visit Date", "Date of Visit"),
    fields.RESULT: (fields.RESULT, "Test Result", "Value", "Result Value"),
    fields.UNIT: (fields.UNIT, "Units", "Result Unit"),
    fields.REFERENCE_RANGE: (fields.REFERENCE_RANGE, "Normal Range", "Ref Range"),
}

_SEPARATOR_PATTERN = re.compile(r"[\s_\-]+")


def normalize_key(key: str) -> str:
    """Fold a field name for alias matching.

    Case is ignored and runs of whitespace, underscores and hyphens count as a
    single space: "date_of_birth", "Date-Of-Birth" and " DATE OF  BIRTH" all
    fold to "date of birth".
    """
    return _SEPARATOR_PATTERN.sub(" ", str(key)).strip().lower()


# Folded synonym → canonical field
_ALIAS_LOOKUP: dict[str, str] = {
    normalize_key(alias): canonical
    for canonical, aliases in FIELD_ALIASES.items()
    for alias in aliases
}


def _clean_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_record(raw: Mapping[str, Any]) -> dict[str, str]:
    """Rename a raw record's fields to canonical names.

    For each canonical field, the first synonym (in the declared order) with a
    non-empty value wins. Canonical fields with no non-empty synonym are
    absent from the output. Fields matching no alias keep their original name.
    Values are returned as stripped strings.

    Parameters:
        raw: Raw record from a source collaborator

    Returns:
        dict[str, str]: Record keyed by canonical field names
    """
    # Canonical field → {folded alias: value}
    candidates: dict[str, dict[str, str]] = {}
    passthrough: dict[str, str] = {}

    for key, value in raw.items():
        cleaned = _clean_value(value)
        folded = normalize_key(key)
        canonical = _ALIAS_LOOKUP.get(folded)
        if canonical is None:
            if cleaned is not None:
                passthrough[str(key).strip()] = cleaned
            continue
        if cleaned is not None:
            candidates.setdefault(canonical, {}).setdefault(folded, cleaned)

    normalized: dict[str, str] = {}
    for canonical, aliases in FIELD_ALIASES.items():
        found = candidates.get(canonical)
        if not found:
            continue
        for alias in aliases:
            value = found.get(normalize_key(alias))
            if value is not None:
                normalized[canonical] = value
                break

    for key, value in passthrough.items():
        normalized.setdefault(key, value)
    return normalized
