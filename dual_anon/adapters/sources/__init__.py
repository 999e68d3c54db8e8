"""Record source adapters.

Implementations of RecordSourcePort for the file formats hospitals export.
"""

from pathlib import Path

from dual_anon.adapters.sources.csv_source import CSVRecordSource
from dual_anon.adapters.sources.json_source import JSONRecordSource
from dual_anon.domain.ports import InvalidInputError, RecordSourcePort

__all__ = ["CSVRecordSource", "JSONRecordSource", "get_source"]


def get_source(source: str) -> RecordSourcePort:
    """Select the source adapter for a file by its extension.

    Example Usage:
        ```python
        records = get_source("export.csv").read_batch("export.csv")
        ```

    Raises:
        InvalidInputError: If no adapter can read the source
    """
    for adapter in (CSVRecordSource(), JSONRecordSource()):
        if adapter.can_read(source):
            return adapter
    raise InvalidInputError(
        f"No source adapter for {Path(source).name}. Supported formats: CSV, TSV, JSON",
        source=source,
    )
