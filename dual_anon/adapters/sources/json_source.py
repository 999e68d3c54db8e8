"""JSON Record Source.

Accepts an array of records, a single record object, or an object wrapping
the array under "records" or "data".

Architecture:
    - Implements RecordSourcePort (Hexagonal Architecture)
    - Nested values are flattened to strings with pandas.json_normalize
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from dual_anon.domain.ports import InvalidInputError, RecordSourcePort, SourceNotFoundError

logger = logging.getLogger(__name__)


class JSONRecordSource(RecordSourcePort):
    """Reads JSON files into raw records."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self.adapter_name = "json_source"

    def can_read(self, source: str) -> bool:
        if not source:
            return False
        return Path(source).suffix.lower() == ".json"

    def read_batch(self, source: str) -> list[dict[str, str]]:
        """Read the file as one ordered batch.

        Raises:
            SourceNotFoundError: If the file does not exist or cannot be opened
            InvalidInputError: If the JSON is malformed, has an unsupported
                shape or contains no records
        """
        source_path = Path(source)
        if not source_path.exists():
            raise SourceNotFoundError(f"JSON source not found: {source}", source=source)

        try:
            with open(source_path, "r", encoding=self.encoding) as f:
                raw_data = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidInputError(f"Invalid JSON format in {source}: {e}", source=source) from e
        except OSError as e:
            raise SourceNotFoundError(f"Cannot read JSON source {source}: {e}", source=source) from e

        raw_records = self._extract_records(raw_data, source)
        if not raw_records:
            raise InvalidInputError(f"JSON source contains no records: {source}", source=source)

        for index, record in enumerate(raw_records):
            if not isinstance(record, dict):
                raise InvalidInputError(
                    f"Row {index} in {source} is not a JSON object",
                    source=source,
                    details={"row_index": index},
                )

        records = [self._flatten(record) for record in raw_records]
        logger.info(f"Read {len(records)} records from {source}")
        return records

    def _flatten(self, record: dict) -> dict[str, str]:
        # One row per frame: a shared column would coerce large ints with gaps to float64
        rows = pd.json_normalize([record], sep=" ").to_dict(orient="records")
        flattened = {}
        for key, value in (rows[0] if rows else {}).items():
            text = _to_text(value)
            if text is not None:
                flattened[str(key)] = text
        return flattened

    def _extract_records(self, raw_data: Any, source: str) -> list:
        if isinstance(raw_data, list):
            return raw_data
        if isinstance(raw_data, dict):
            for key in ("records", "data"):
                if isinstance(raw_data.get(key), list):
                    return raw_data[key]
            return [raw_data]
        raise InvalidInputError(
            f"Unsupported JSON structure: expected array or object, got {type(raw_data).__name__}",
            source=source,
        )


def _to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)
