"""Canonical Field Vocabulary.

Every stage after the Field Normalizer works against these names only. Raw
sources may use any of the aliases declared in
``dual_anon.domain.services.field_normalizer``.

Security Impact:
    - DIRECT_IDENTIFIER_FIELDS is the single list of fields removed in Stage-1
    - Stage-1/Stage-2 record models reject these names outright
"""

# Direct identifiers
PATIENT_NAME = "Patient Name"
PATIENT_ID = "Patient ID"
ADDRESS = "Address"
CITY = "City"
PHONE_NUMBER = "Phone Number"
EMAIL = "Email"
POSTAL_CODE = "Postal Code"
DATE_OF_BIRTH = "Date of Birth"

# Demographic inputs (replaced by generalized attributes in Stage-1)
AGE = "Age"
GENDER = "Gender"
OCCUPATION = "Occupation"

# Sub-country location (kept in Stage-1, dropped in Stage-2)
LOCATION = "Location"
REGION = "Region"
DISTRICT = "District"

# Clinical fields
LAB_TEST = "Lab Test"
TEST_DATE = "Test Date"
DIAGNOSIS_DATE = "Diagnosis Date"
ENCOUNTER_DATE = "Encounter Date"
RESULT = "Result"
UNIT = "Unit"
REFERENCE_RANGE = "Reference Range"

# Generalized attributes attached in Stage-1
ANONYMOUS_PID = "Anonymous PID"
AGE_RANGE = "Age Range"
COUNTRY = "Country"
OCCUPATION_CATEGORY = "Occupation Category"

DIRECT_IDENTIFIER_FIELDS = (
    PATIENT_NAME,
    PATIENT_ID,
    ADDRESS,
    CITY,
    PHONE_NUMBER,
    EMAIL,
    POSTAL_CODE,
    DATE_OF_BIRTH,
)

# Raw demographic fields superseded by their generalized counterparts
SUPERSEDED_FIELDS = (AGE, OCCUPATION)

# Searched in this order when extracting a country
COUNTRY_SOURCE_FIELDS = (ADDRESS, CITY, LOCATION)

SUB_COUNTRY_LOCATION_FIELDS = (REGION, DISTRICT, CITY, LOCATION)

QUASI_IDENTIFIER_FIELDS = (COUNTRY, AGE_RANGE, GENDER, OCCUPATION_CATEGORY)

DATE_FIELDS = (
    TEST_DATE,
    DIAGNOSIS_DATE,
    ENCOUNTER_DATE,
    "Onset Date",
    "Admission Date",
    "Discharge Date",
    "Collection Date",
    "Performed Date",
    "Effective Date",
)
