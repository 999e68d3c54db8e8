"""Shared fixtures for the Dual-Anon test suite."""

import logging
from datetime import date, datetime, timezone

import pytest

from dual_anon.domain.events import AnonymizationEvent, EventSinkPort
from dual_anon.domain.records import HospitalContext, Stage1Record


class RecordingSink(EventSinkPort):
    """Event sink that keeps every event for assertions."""

    def __init__(self):
        self.events: list[AnonymizationEvent] = []

    def emit(self, event: AnonymizationEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[AnonymizationEvent]:
        return [event for event in self.events if event.event_type == event_type]


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def context() -> HospitalContext:
    return HospitalContext(country="Uganda", location="Kampala", hospital_id="HOSP-001")


@pytest.fixture
def reference_date() -> date:
    return date(2024, 6, 1)


@pytest.fixture
def fixed_clock():
    timestamp = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
    return lambda: timestamp


@pytest.fixture
def raw_record():
    """Factory for raw lab-result rows in the loose export vocabulary."""

    def _make(patient_id: str = "P100", **overrides) -> dict:
        record = {
            "patient_id": patient_id,
            "Patient Name": f"Name of {patient_id}",
            "Age": "45",
            "Sex": "M",
            "Address": "Plot 5, Kampala Road",
            "Phone": "+256700000000",
            "Job": "Nurse",
            "Lab Test": "Hemoglobin",
            "Test Date": "2024-03-15",
            "Result": "13.46",
            "Unit": "g/dL",
            "Reference Range": "12-16",
        }
        record.update(overrides)
        return {key: value for key, value in record.items() if value is not None}

    return _make


@pytest.fixture
def stage1_record():
    """Factory for Stage-1 records with a default quasi-identifier tuple."""

    def _make(anonymous_pid: str = "PID-001", **overrides) -> Stage1Record:
        data = {
            "Anonymous PID": anonymous_pid,
            "Age Range": "45-49",
            "Country": "Uganda",
            "Gender": "Male",
            "Occupation Category": "Healthcare Worker",
            "Region": "Central",
            "Lab Test": "Hemoglobin",
            "Test Date": "2024-03-15",
            "Result": "13.46",
        }
        data.update(overrides)
        return Stage1Record.model_validate(
            {key: value for key, value in data.items() if value is not None}
        )

    return _make


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Remove handlers installed by setup_logging() and restore the root level."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)
