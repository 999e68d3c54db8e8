"""JSON-Lines Ledger Adapter.

Append-only local stand-in for a public ledger: each provenance message is
written as one line of JSON.

Security Impact:
    - Append-only: existing lines are never rewritten or removed
    - Messages contain digests and anonymous identifiers only

Architecture:
    - Implements LedgerPort (Hexagonal Architecture)
    - Thread-safe: concurrent batches may share one ledger file
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from dual_anon.domain.ports import InvalidInputError, LedgerPort, Result, SourceNotFoundError

logger = logging.getLogger(__name__)


class JsonlLedgerAdapter(LedgerPort):
    """Appends provenance messages to a JSON-lines file.

    The submission reference is ``<file name>#<line number>`` (1-based).
    """

    def __init__(self, ledger_path: Union[str, Path]):
        self.ledger_path = Path(ledger_path)
        self._lock = threading.Lock()
        self._line_count: Optional[int] = None

    def submit(self, message: dict[str, Any]) -> Result[str]:
        try:
            line = json.dumps(message, sort_keys=True, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            return Result.failure_result(e, error_type="LedgerSubmissionError")

        with self._lock:
            try:
                self.ledger_path.parent.mkdir(parents=True, exist_ok=True)
                if self._line_count is None:
                    self._line_count = self._count_lines()
                with open(self.ledger_path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
                self._line_count += 1
                reference = f"{self.ledger_path.name}#{self._line_count}"
            except OSError as e:
                logger.error(f"Ledger write failed: {e}")
                return Result.failure_result(
                    e,
                    error_type="LedgerSubmissionError",
                    error_details={"path": str(self.ledger_path)},
                )

        logger.debug(f"Submitted provenance for {message.get('anonymousPatientId')} as {reference}")
        return Result.success_result(reference)

    def read_messages(self) -> Iterator[dict[str, Any]]:
        """Yield every message in the ledger, in submission order.

        Raises:
            SourceNotFoundError: If the ledger file does not exist
            InvalidInputError: If a line is not a JSON object
        """
        if not self.ledger_path.exists():
            raise SourceNotFoundError(
                f"Ledger file not found: {self.ledger_path}", source=str(self.ledger_path)
            )
        with open(self.ledger_path, "r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    message = json.loads(line)
                except json.JSONDecodeError as e:
                    raise InvalidInputError(
                        f"Ledger line {line_number} is not valid JSON",
                        source=str(self.ledger_path),
                        details={"line": line_number},
                    ) from e
                if not isinstance(message, dict):
                    raise InvalidInputError(
                        f"Ledger line {line_number} is not a JSON object",
                        source=str(self.ledger_path),
                        details={"line": line_number},
                    )
                yield message

    def _count_lines(self) -> int:
        if not self.ledger_path.exists():
            return 0
        with open(self.ledger_path, "r", encoding="utf-8") as f:
            return sum(1 for _ in f)
