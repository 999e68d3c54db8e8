"""CSV Record Source.

Reads a CSV (or TSV) export into a batch of raw records for the pipeline.

Security Impact:
    - Every cell is read as text; nothing is type-coerced or inferred, so
      identifiers with leading zeros and dates survive unchanged
    - Rows are never logged; only counts and the source path are

Architecture:
    - Implements RecordSourcePort (Hexagonal Architecture)
    - pandas does the parsing; the domain receives plain dicts
"""

import logging
from pathlib import Path
from typing import Optional

import pandas as pd

from dual_anon.domain.ports import InvalidInputError, RecordSourcePort, SourceNotFoundError

logger = logging.getLogger(__name__)


class CSVRecordSource(RecordSourcePort):
    """Reads delimited text files into raw records.

    Parameters:
        delimiter: Column delimiter (default: detected from extension, "," or tab)
        encoding: File encoding
    """

    def __init__(self, delimiter: Optional[str] = None, encoding: str = "utf-8"):
        self.delimiter = delimiter
        self.encoding = encoding
        self.adapter_name = "csv_source"

    def can_read(self, source: str) -> bool:
        if not source:
            return False
        return Path(source).suffix.lower() in (".csv", ".tsv")

    def read_batch(self, source: str) -> list[dict[str, str]]:
        """Read the whole file as one ordered batch.

        Raises:
            SourceNotFoundError: If the file does not exist or cannot be opened
            InvalidInputError: If the file cannot be parsed or has no data rows
        """
        source_path = Path(source)
        if not source_path.exists():
            raise SourceNotFoundError(f"CSV source not found: {source}", source=source)

        delimiter = self.delimiter
        if delimiter is None:
            delimiter = "\t" if source_path.suffix.lower() == ".tsv" else ","

        try:
            df = pd.read_csv(
                source_path,
                sep=delimiter,
                dtype=str,
                keep_default_na=False,
                encoding=self.encoding,
            )
        except pd.errors.EmptyDataError as e:
            raise InvalidInputError(f"CSV source is empty: {source}", source=source) from e
        except (pd.errors.ParserError, UnicodeDecodeError) as e:
            raise InvalidInputError(
                f"Cannot parse CSV source {source}: {e}",
                source=source,
                details={"adapter": self.adapter_name},
            ) from e
        except OSError as e:
            raise SourceNotFoundError(f"Cannot read CSV source {source}: {e}", source=source) from e

        if df.empty:
            raise InvalidInputError(f"CSV source has no data rows: {source}", source=source)

        records = df.to_dict(orient="records")
        logger.info(f"Read {len(records)} records from {source}")
        return records
