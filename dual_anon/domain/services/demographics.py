"""Demographic Generalizer (Stage-1 storage anonymization).

Derives the four quasi-identifiers attached to every Stage-1 record (age
range, country, gender, occupation category) and strips direct identifiers.

Security Impact:
    - Exact age and birth date are replaced by a 5-year bucket
    - Address/city text is replaced by a country name
    - Free-text occupation is replaced by a fixed bucket
    - Error messages name the missing attribute, never the record's values

Architecture:
    - Pure domain functions operating on normalized (canonical) records
    - The reference date for age computation is injectable for determinism
"""

from datetime import date
from typing import Mapping, Optional

from dual_anon.domain import fields
from dual_anon.domain.enums import Gender, OccupationCategory
from dual_anon.domain.ports import MissingRequiredAttributeError
from dual_anon.domain.records import HospitalContext, Stage1Record
from dual_anon.domain.utils import parse_age, parse_date

# Country → lowercase city/keyword substrings. First match wins.
COUNTRY_PATTERNS: dict[str, tuple[str, ...]] = {
    "Uganda": ("kampala", "entebbe", "jinja", "gulu", "mbale", "mbarara", "masaka", "uganda"),
    "Kenya": ("nairobi", "mombasa", "kisumu", "nakuru", "kenya"),
    "Tanzania": ("dar es salaam", "arusha", "dodoma", "tanzania"),
    "Rwanda": ("kigali", "rwanda"),
    "Ghana": ("accra", "kumasi", "ghana"),
    "Nigeria": ("lagos", "abuja", "kano", "nigeria"),
    "South Africa": ("johannesburg", "cape town", "pretoria", "south africa"),
    "Ethiopia": ("addis ababa", "ethiopia"),
    "Zimbabwe": ("harare", "zimbabwe"),
    "Zambia": ("lusaka", "zambia"),
}

# Checked in order; the first bucket with a matching keyword wins.
OCCUPATION_KEYWORDS: tuple[tuple[OccupationCategory, tuple[str, ...]], ...] = (
    (OccupationCategory.HEALTHCARE, ("doctor", "nurse", "medical", "healthcare", "physician", "surgeon")),
    (OccupationCategory.EDUCATION, ("teacher", "professor", "educator", "lecturer")),
    (OccupationCategory.GOVERNMENT, ("government", "civil service", "public servant")),
    (OccupationCategory.BUSINESS, ("business", "entrepreneur", "merchant", "trader")),
    (OccupationCategory.AGRICULTURE, ("farmer", "agriculture", "farming")),
    (OccupationCategory.TECHNOLOGY, ("tech", "software", "engineer", "developer", "programmer")),
    (OccupationCategory.SERVICE, ("service", "retail", "sales")),
    (OccupationCategory.STUDENT, ("student", "pupil")),
    (OccupationCategory.NOT_EMPLOYED, ("unemployed", "retired")),
)

_GENDER_MAPPING = {
    "male": Gender.MALE,
    "m": Gender.MALE,
    "female": Gender.FEMALE,
    "f": Gender.FEMALE,
    "other": Gender.OTHER,
    "o": Gender.OTHER,
}


def generalize_age(age: int) -> str:
    """Map an age in years to its 5-year bucket.

    Returns "<1" below one year, "90+" from ninety, otherwise "L-U" where
    L = floor(age / 5) * 5 and U = L + 4.
    """
    if age < 1:
        return "<1"
    if age >= 90:
        return "90+"
    lower = (age // 5) * 5
    return f"{lower}-{lower + 4}"


def calculate_age_from_dob(dob: date, as_of: Optional[date] = None) -> int:
    """Whole years between a birth date and a reference date.

    The year difference is decremented when the birthday has not yet occurred
    in the reference year.
    """
    today = as_of or date.today()
    age = today.year - dob.year
    if (today.month, today.day) < (dob.month, dob.day):
        age -= 1
    return age


def calculate_age_range(record: Mapping[str, str], as_of: Optional[date] = None) -> str:
    """Resolve a record's age bucket (required attribute).

    A numeric Age field is used first; otherwise the age is computed from the
    Date of Birth field.

    Parameters:
        record: Normalized record
        as_of: Reference date for birth-date arithmetic (defaults to today)

    Returns:
        str: 5-year age bucket

    Raises:
        MissingRequiredAttributeError: If neither Age nor a usable birth date is present
    """
    age = parse_age(record.get(fields.AGE))

    if age is None:
        dob = parse_date(record.get(fields.DATE_OF_BIRTH))
        if dob is not None:
            computed = calculate_age_from_dob(dob, as_of)
            # A birth date in the future is a data error, not a newborn
            if computed >= 0:
                age = computed

    if age is None:
        raise MissingRequiredAttributeError(
            'Age is required: record must have either "Age" or "Date of Birth" field',
            attribute="age",
        )
    return generalize_age(age)


def extract_country_from_text(text: Optional[str]) -> Optional[str]:
    """Find a known country in free text by case-insensitive keyword match."""
    if not text:
        return None
    lowered = text.lower()
    for country, patterns in COUNTRY_PATTERNS.items():
        for pattern in patterns:
            if pattern in lowered:
                return country
    return None


def extract_country(record: Mapping[str, str], context: Optional[HospitalContext] = None) -> str:
    """Resolve a record's country (required attribute).

    Address, City and Location are searched in that order; the hospital
    country is the fallback.

    Raises:
        MissingRequiredAttributeError: If no field matches and no hospital country is set
    """
    for field_name in fields.COUNTRY_SOURCE_FIELDS:
        country = extract_country_from_text(record.get(field_name))
        if country:
            return country

    if context is not None and context.country:
        return context.country

    raise MissingRequiredAttributeError(
        "Country is required: no country found in address fields and no hospital country set",
        attribute="country",
    )


def normalize_gender(value: Optional[str]) -> str:
    """Normalize free-text gender to Male/Female/Other/Unknown.

    Unrecognized non-empty values are passed through unchanged (stripped).
    """
    if value is None or not str(value).strip():
        return Gender.UNKNOWN.value
    text = str(value).strip()
    gender = _GENDER_MAPPING.get(text.lower())
    return gender.value if gender else text


def generalize_occupation(value: Optional[str]) -> str:
    """Map free-text occupation to a category bucket (optional attribute)."""
    if value is None or not str(value).strip():
        return OccupationCategory.UNKNOWN.value
    lowered = str(value).lower()
    for category, keywords in OCCUPATION_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category.value
    return OccupationCategory.OTHER.value


def anonymize_record(
    record: Mapping[str, str],
    anonymous_pid: str,
    context: Optional[HospitalContext] = None,
    as_of: Optional[date] = None,
) -> Stage1Record:
    """Produce the Stage-1 representation of one normalized record.

    Direct identifiers and the raw Age/Occupation fields are removed; Age
    Range, Country, Gender, Occupation Category and Anonymous PID are attached.

    Parameters:
        record: Normalized record (canonical field names)
        anonymous_pid: Anonymous identifier assigned to the record's patient
        context: Hospital context (country fallback)
        as_of: Reference date for age computation

    Returns:
        Stage1Record: Storage-anonymized record

    Raises:
        MissingRequiredAttributeError: If age or country cannot be resolved
    """
    age_range = calculate_age_range(record, as_of)
    country = extract_country(record, context)

    removed = set(fields.DIRECT_IDENTIFIER_FIELDS) | set(fields.SUPERSEDED_FIELDS)
    clinical = {
        key: value
        for key, value in record.items()
        if key not in removed and key not in fields.QUASI_IDENTIFIER_FIELDS and key != fields.ANONYMOUS_PID
    }

    return Stage1Record.model_validate({
        fields.ANONYMOUS_PID: anonymous_pid,
        fields.AGE_RANGE: age_range,
        fields.COUNTRY: country,
        fields.GENDER: normalize_gender(record.get(fields.GENDER)),
        fields.OCCUPATION_CATEGORY: generalize_occupation(record.get(fields.OCCUPATION)),
        **clinical,
    })
