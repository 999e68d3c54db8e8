"""Domain Enumerations.

Value sets used by the generalizers. Members subclass ``str`` so they serialize
to their plain label in CSV/JSON output and in record hashes.
"""

from enum import Enum


class Gender(str, Enum):
    """Normalized gender labels for Stage-1 and Stage-2 records."""
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"
    UNKNOWN = "Unknown"


class OccupationCategory(str, Enum):
    """Stage-1 occupation buckets (fine-grained)."""
    HEALTHCARE = "Healthcare Worker"
    EDUCATION = "Education Worker"
    GOVERNMENT = "Government Worker"
    BUSINESS = "Business Professional"
    AGRICULTURE = "Agriculture Worker"
    TECHNOLOGY = "Technology Worker"
    SERVICE = "Service Worker"
    STUDENT = "Student"
    NOT_EMPLOYED = "Not Employed"
    OTHER = "Other"
    UNKNOWN = "Unknown"


class ChainOccupationCategory(str, Enum):
    """Stage-2 occupation buckets (coarse)."""
    HEALTHCARE = "Healthcare"
    EDUCATION = "Education"
    AGRICULTURE = "Agriculture"
    TECHNOLOGY = "Technology"
    BUSINESS = "Business"
    OTHER = "Other"
    UNKNOWN = "Unknown"


class AnonymizationLevel(str, Enum):
    """Trust domain a record representation is prepared for."""
    STORAGE = "storage"
    CHAIN = "chain"


class EventLevel(str, Enum):
    """Severity of a pipeline event."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
