"""Privacy Report Generator.

Summarizes what a batch released: record counts, failures, k-anonymity
outcome, quasi-identifier group sizes and the batch digests. Reports are kept
for compliance review alongside the Stage-1 files.

Security Impact:
    - Reports contain counts, generalized values and digests only
    - The identity map is reduced to a count; original identifiers never appear
"""

import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dual_anon.domain.pipeline import BatchResult
from dual_anon.domain.ports import Result
from dual_anon.domain.services.k_anonymity import quasi_identifier_tuple
from dual_anon.infrastructure.audit.event_logger import AuditEventLogger


def build_privacy_report(
    batch_result: BatchResult,
    audit_logger: Optional[AuditEventLogger] = None,
) -> dict:
    """Build the report dictionary for one batch."""
    group_sizes = Counter(quasi_identifier_tuple(record) for record in batch_result.stage1_records)
    failures_by_type = Counter(failure.error_type for failure in batch_result.failures)

    report = {
        "batch_id": batch_result.batch_id,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "summary": {
            "input_records": batch_result.input_count,
            "released_records": batch_result.record_count,
            "failed_records": len(batch_result.failures),
            "suppressed_records": batch_result.suppressed_count,
            "unique_patients": len(batch_result.identity_map),
        },
        "k_anonymity": {
            "k": batch_result.k,
            "skipped": batch_result.k_anonymity_skipped,
            "group_count": len(group_sizes),
            "min_group_size": min(group_sizes.values()) if group_sizes else 0,
            "suppressed_groups": [
                {
                    "country": group.country,
                    "age_range": group.age_range,
                    "gender": group.gender,
                    "occupation_category": group.occupation_category,
                    "size": group.size,
                }
                for group in batch_result.suppressed_groups
            ],
        },
        "failures_by_type": dict(failures_by_type),
        "failures": [
            {
                "record_index": failure.record_index,
                "anonymous_id": failure.anonymous_id,
                "error_type": failure.error_type,
                "message": failure.message,
            }
            for failure in batch_result.failures
        ],
        "warnings": [str(warning) for warning in batch_result.warnings],
        "distributions": {
            "age_range": dict(Counter(r.age_range for r in batch_result.stage1_records)),
            "country": dict(Counter(r.country for r in batch_result.stage1_records)),
            "gender": dict(Counter(r.gender for r in batch_result.stage1_records)),
            "occupation_category": dict(
                Counter(r.occupation_category for r in batch_result.stage1_records)
            ),
        },
        "digests": {
            "storage_batch_hash": batch_result.storage_hash,
            "chain_batch_hash": batch_result.chain_hash,
            "provenance_records": len(batch_result.provenance_records),
        },
    }

    if audit_logger is not None:
        batch_events = audit_logger.get_events(batch_id=batch_result.batch_id)
        report["events_by_type"] = dict(Counter(event.event_type for event in batch_events))

    return report


def generate_privacy_report(
    batch_result: BatchResult,
    output_path: Optional[str] = None,
    audit_logger: Optional[AuditEventLogger] = None,
) -> Result[dict]:
    """Generate a privacy report and optionally save it as JSON.

    Parameters:
        batch_result: Pipeline output for one batch
        output_path: Optional path of the JSON file to write
        audit_logger: Optional audit sink whose events are counted into the report

    Returns:
        Result[dict]: Report dictionary (with "saved_to" when written) or error
    """
    report = build_privacy_report(batch_result, audit_logger)

    if output_path:
        try:
            output_file = Path(output_path)
            output_file.parent.mkdir(parents=True, exist_ok=True)
            with open(output_file, "w", encoding="utf-8") as f:
                json.dump(report, f, indent=2, default=str)
            return Result.success_result({**report, "saved_to": str(output_file)})
        except OSError as e:
            return Result.failure_result(
                ValueError(f"Failed to save report to {output_path}: {e}"),
                error_type="ValueError",
            )

    return Result.success_result(report)


def print_privacy_report_summary(report: dict) -> None:
    """Print a human-readable summary of a privacy report."""
    print("=" * 70)
    print("PRIVACY REPORT - Two-Stage Anonymization Summary")
    print("=" * 70)

    print(f"\nBatch ID: {report.get('batch_id')}")
    summary = report.get("summary", {})
    print(f"Input Records: {summary.get('input_records', 0)}")
    print(f"Released Records: {summary.get('released_records', 0)}")
    print(f"Failed Records: {summary.get('failed_records', 0)}")
    print(f"Suppressed Records: {summary.get('suppressed_records', 0)}")

    k_info = report.get("k_anonymity", {})
    print(f"\nk-Anonymity (k={k_info.get('k')}):")
    if k_info.get("skipped"):
        print("  WARNING: batch smaller than k, enforcement skipped.")
    else:
        print(f"  Groups: {k_info.get('group_count', 0)}")
        print(f"  Smallest group: {k_info.get('min_group_size', 0)}")
        print(f"  Suppressed groups: {len(k_info.get('suppressed_groups', []))}")

    failures_by_type = report.get("failures_by_type", {})
    if failures_by_type:
        print("\nFailures by Type:")
        for error_type, count in sorted(failures_by_type.items()):
            print(f"  {error_type}: {count}")

    for warning in report.get("warnings", []):
        print(f"\nWARNING: {warning}")

    digests = report.get("digests", {})
    if digests.get("storage_batch_hash"):
        print(f"\nStorage batch hash: {digests['storage_batch_hash']}")
        print(f"Chain batch hash:   {digests['chain_batch_hash']}")

    if report.get("saved_to"):
        print(f"\nSaved to: {report['saved_to']}")

    print("\n" + "=" * 70)
