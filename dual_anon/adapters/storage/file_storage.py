"""File Storage Adapter for Stage-1 output.

Writes each batch of Stage-1 records to its own CSV or JSON file.

Security Impact:
    - Accepts Stage1Record instances only, which cannot hold direct identifiers
    - One file per batch; existing files are never appended to

Architecture:
    - Implements StoragePort (Hexagonal Architecture)
    - Reports failures through Result instead of raising
"""

import json
import logging
from pathlib import Path
from typing import Union

import pandas as pd

from dual_anon.domain import fields
from dual_anon.domain.ports import Result, StoragePort
from dual_anon.domain.records import Stage1Record

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("csv", "json")

# Leading columns of every Stage-1 file; clinical columns follow in first-seen order
LEADING_COLUMNS = (
    fields.ANONYMOUS_PID,
    fields.AGE_RANGE,
    fields.COUNTRY,
    fields.GENDER,
    fields.OCCUPATION_CATEGORY,
)


def stage1_columns(rows: list[dict]) -> list[str]:
    """Column order for a Stage-1 file."""
    columns = list(LEADING_COLUMNS)
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)
    return columns


class FileStorageAdapter(StoragePort):
    """Persists Stage-1 batches as files under an output directory.

    Parameters:
        output_dir: Directory receiving one file per batch
        output_format: "csv" or "json"
    """

    def __init__(self, output_dir: Union[str, Path], output_format: str = "csv"):
        output_format = output_format.lower()
        if output_format not in SUPPORTED_FORMATS:
            raise ValueError(
                f"Unsupported output format: {output_format}. "
                f"Supported: {', '.join(SUPPORTED_FORMATS)}"
            )
        self.output_dir = Path(output_dir)
        self.output_format = output_format

    def persist(self, records: list[Stage1Record], batch_id: str) -> Result[str]:
        """Write one batch of Stage-1 records.

        Returns:
            Result[str]: Path of the written file, or the write error
        """
        path = self.output_dir / f"stage1_{batch_id}.{self.output_format}"
        rows = [record.to_dict() for record in records]

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            if path.exists():
                return Result.failure_result(
                    f"Refusing to overwrite existing batch file: {path.name}",
                    error_type="StorageError",
                    error_details={"path": str(path), "batch_id": batch_id},
                )
            if self.output_format == "csv":
                df = pd.DataFrame(rows, columns=stage1_columns(rows))
                df.to_csv(path, index=False)
            else:
                with open(path, "w", encoding="utf-8") as f:
                    json.dump(rows, f, ensure_ascii=False, indent=2, default=str)
        except OSError as e:
            logger.error(f"Failed to persist batch {batch_id}: {e}")
            return Result.failure_result(
                e,
                error_type="StorageError",
                error_details={"path": str(path), "batch_id": batch_id},
            )

        logger.info(f"Persisted {len(rows)} Stage-1 records to {path}")
        return Result.success_result(str(path))
