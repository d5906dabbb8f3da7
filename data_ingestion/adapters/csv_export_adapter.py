"""
============================================================================
CSV Export Adapter - Flat Delimited-Text Source
============================================================================

Reliability Level: L5 Core
Traceability: All operations include correlation_id for audit

SHARED CSV EXPORT:
    One unauthenticated GET of a shared-view CSV link. The export carries no
    change-watermark semantics, so this adapter always returns the complete
    set and the scheduler always performs a full replace with it.

PARSER RULES:
    - Quoted fields may contain the delimiter and line breaks
    - A doubled quote inside a quoted field is a literal quote
    - CRLF and LF line endings; stray CR outside quotes is ignored
    - First row is the header (cells trimmed)
    - Rows with no non-blank cell are skipped
    - Extra cells beyond the header are dropped, missing ones become ""
============================================================================
"""

from collections import OrderedDict
from typing import Dict, List, Optional
import logging

import requests

from data_ingestion.adapters.base_adapter import (
    AdapterErrorCode,
    BaseAdapter,
    UpstreamFetchError,
)
from data_ingestion.schemas import RawRecord, SourceKind

# Configure module logger
logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 30
MAX_ERROR_BODY_CHARS = 2000


# =============================================================================
# Parser
# =============================================================================

def split_rows(text: str, delimiter: str = ",") -> List[List[str]]:
    """Split delimited text into raw cell rows (no header handling)."""
    rows = []  # type: List[List[str]]
    row = []  # type: List[str]
    cell = []  # type: List[str]
    in_quotes = False
    i = 0
    length = len(text)

    while i < length:
        ch = text[i]
        if in_quotes:
            if ch == '"':
                if i + 1 < length and text[i + 1] == '"':
                    cell.append('"')
                    i += 1
                else:
                    in_quotes = False
            else:
                cell.append(ch)
        elif ch == '"':
            in_quotes = True
        elif ch == delimiter:
            row.append("".join(cell))
            cell = []
        elif ch == "\n":
            row.append("".join(cell))
            rows.append(row)
            row = []
            cell = []
        elif ch != "\r":
            cell.append(ch)
        i += 1

    row.append("".join(cell))
    rows.append(row)
    return rows


def parse_delimited_text(text: str, delimiter: str = ",") -> List[Dict[str, str]]:
    """
    Parse delimited tabular text into header-keyed rows.

    Args:
        text: Whole document
        delimiter: Single-character cell separator

    Returns:
        One ordered mapping per data row, keyed by trimmed header names
    """
    if len(delimiter) != 1 or delimiter in ('"', "\n", "\r"):
        raise ValueError(f"Unsupported delimiter: {delimiter!r}")

    rows = split_rows(text or "", delimiter)
    header = [h.strip() for h in rows.pop(0)] if rows else []

    parsed = []  # type: List[Dict[str, str]]
    for cells in rows:
        if not any(c.strip() for c in cells):
            continue
        record = OrderedDict()  # type: Dict[str, str]
        for index, name in enumerate(header):
            record[name] = cells[index].strip() if index < len(cells) else ""
        parsed.append(record)
    return parsed


# =============================================================================
# CSV Export Adapter Class
# =============================================================================

class CsvExportAdapter(BaseAdapter):
    """
    Shared CSV export reader.

    Reliability Level: L5 Core
    Input Constraints: csv_url required
    Side Effects: Network I/O
    """

    def __init__(
        self,
        csv_url: str,
        delimiter: str = ",",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            source_kind=SourceKind.CSV,
            correlation_id=correlation_id
        )
        if len(delimiter) != 1 or delimiter in ('"', "\n", "\r"):
            raise ValueError(f"Unsupported delimiter: {delimiter!r}")

        self._csv_url = csv_url
        self._delimiter = delimiter
        self._timeout = timeout_seconds
        self._session = session or requests.Session()

        logger.info(
            f"CsvExportAdapter initialized | "
            f"delimiter={delimiter!r} | "
            f"correlation_id={self._correlation_id}"
        )

    def _fetch(self, since_ms: Optional[int] = None) -> List[RawRecord]:
        # No watermark support: since_ms is ignored
        text = self.download()
        rows = parse_delimited_text(text, self._delimiter)
        return [RawRecord(source=SourceKind.CSV, fields=row) for row in rows]

    def download(self) -> str:
        """
        Fetch the export document.

        Raises:
            UpstreamFetchError: On transport failure or non-2xx response
        """
        try:
            response = self._session.get(self._csv_url, timeout=self._timeout)
        except requests.Timeout as e:
            raise UpstreamFetchError(
                f"CSV fetch timed out: {e}",
                error_code=AdapterErrorCode.TIMEOUT,
            ) from e
        except requests.RequestException as e:
            raise UpstreamFetchError(f"CSV fetch failed: {e}") from e

        if not response.ok:
            body = (response.text or "")[:MAX_ERROR_BODY_CHARS]
            raise UpstreamFetchError(
                f"CSV fetch failed: {response.status_code} {response.reason} - {body}",
                status=response.status_code,
                body=body,
            )

        # Shared exports are UTF-8; requests guesses ISO-8859-1 without a charset
        if not response.encoding or response.encoding.lower() == "iso-8859-1":
            response.encoding = "utf-8"
        text = response.text
        if text.startswith("\ufeff"):
            text = text[1:]
        return text
