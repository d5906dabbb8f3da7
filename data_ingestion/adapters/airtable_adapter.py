"""
============================================================================
Airtable Adapter - Paged Token API Source
============================================================================

Reliability Level: L5 Core
Traceability: All operations include correlation_id for audit

PAGED FETCH:
    GET {api_url}/{base_id}/{table}?pageSize=100[&view=..][&fields[]=..][&offset=..]

    Each page carries an opaque 'offset' continuation token; the loop ends
    when a page arrives without one. Pages are concatenated in order.

INCREMENTAL FETCH:
    A server-side filterByFormula restricts the result to records whose
    LAST_MODIFIED_TIME() is after the watermark.

PRIVACY GUARDRAIL:
    - Token loaded from configuration (AIRTABLE_API_TOKEN), never logged
============================================================================
"""

from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote
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


# =============================================================================
# Constants
# =============================================================================

AIRTABLE_API_URL = "https://api.airtable.com/v0"

# Upstream page size cap
PAGE_SIZE = 100

# Safety net against a server that never stops handing out offsets
MAX_PAGES = 10000

DEFAULT_TIMEOUT_SECONDS = 30

# Body text kept in error messages
MAX_ERROR_BODY_CHARS = 2000


# =============================================================================
# Helpers
# =============================================================================

def format_watermark(since_ms: int) -> str:
    """
    Render epoch millis as a UTC ISO-8601 string with millisecond precision.

    >>> format_watermark(0)
    '1970-01-01T00:00:00.000Z'
    """
    seconds, millis = divmod(int(since_ms), 1000)
    dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{millis:03d}Z"


def build_since_formula(since_iso: str) -> str:
    """Build the 'modified after T' filter expression."""
    return (
        f"IS_AFTER(LAST_MODIFIED_TIME(), "
        f"DATETIME_PARSE('{since_iso}', 'YYYY-MM-DDTHH:mm:ss.SSS[Z]'))"
    )


# =============================================================================
# Airtable Adapter Class
# =============================================================================

class AirtableAdapter(BaseAdapter):
    """
    Bearer-token authenticated, paged table reader.

    Reliability Level: L5 Core
    Input Constraints: base_id, table_name and api_token required
    Side Effects: Network I/O
    """

    def __init__(
        self,
        base_id: str,
        table_name: str,
        api_token: str,
        view_name: str = "",
        fields: Optional[Sequence[str]] = None,
        api_url: str = AIRTABLE_API_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            source_kind=SourceKind.AIRTABLE,
            correlation_id=correlation_id
        )

        self._base_id = base_id
        self._table_name = table_name
        self._api_token = api_token
        self._view_name = view_name
        self._fields = [f for f in (fields or []) if f]
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = session or requests.Session()

        logger.info(
            f"AirtableAdapter initialized | "
            f"base_id={base_id} | "
            f"table={table_name} | "
            f"view={view_name or '-'} | "
            f"fields={len(self._fields)} | "
            f"has_token={bool(api_token)} | "
            f"correlation_id={self._correlation_id}"
        )

    @property
    def table_url(self) -> str:
        return f"{self._api_url}/{self._base_id}/{quote(self._table_name, safe='')}"

    def _fetch(self, since_ms: Optional[int] = None) -> List[RawRecord]:
        extra_params = {}  # type: Dict[str, str]
        if since_ms is not None:
            extra_params["filterByFormula"] = build_since_formula(
                format_watermark(since_ms)
            )

        records = []  # type: List[RawRecord]
        for raw in self.fetch_all_pages(extra_params):
            fields = raw.get("fields") or {}
            records.append(RawRecord(
                source=SourceKind.AIRTABLE,
                fields=OrderedDict(fields.items()) if isinstance(fields, dict) else OrderedDict(),
                native_id=raw.get("id") or None,
            ))
        return records

    def fetch_all_pages(
        self,
        extra_params: Optional[Dict[str, str]] = None
    ) -> List[Dict[str, Any]]:
        """
        Follow continuation tokens until the last page.

        Args:
            extra_params: Additional query parameters; blank values are skipped

        Returns:
            Upstream record objects ({"id", "fields", ...}) in page order

        Raises:
            UpstreamFetchError: On any non-success response
        """
        headers = {"Authorization": f"Bearer {self._api_token}"}
        records = []  # type: List[Dict[str, Any]]
        offset = None  # type: Optional[str]
        pages = 0

        while True:
            params = self._build_params(offset, extra_params)
            payload = self._get_page(params, headers)
            pages += 1

            page_records = payload.get("records") or []
            if not isinstance(page_records, list) or not all(
                isinstance(r, dict) for r in page_records
            ):
                raise UpstreamFetchError(
                    f"Airtable page {pages} has malformed 'records' "
                    f"(expected a list of objects)"
                )
            records.extend(page_records)

            offset = payload.get("offset") or None
            if offset is not None and not isinstance(offset, str):
                raise UpstreamFetchError(
                    f"Airtable page {pages} has a non-string 'offset'"
                )
            logger.debug(
                f"Page fetched | page={pages} | records={len(page_records)} | "
                f"has_offset={offset is not None} | "
                f"correlation_id={self._correlation_id}"
            )
            if offset is None:
                break
            if pages >= MAX_PAGES:
                raise UpstreamFetchError(
                    f"Airtable fetch exceeded {MAX_PAGES} pages without a final page"
                )

        return records

    def _build_params(
        self,
        offset: Optional[str],
        extra_params: Optional[Dict[str, str]]
    ) -> List[Tuple[str, str]]:
        # A list of pairs keeps fields[] repeated and ordered
        params = [("pageSize", str(PAGE_SIZE))]  # type: List[Tuple[str, str]]
        if self._view_name:
            params.append(("view", self._view_name))
        for name in self._fields:
            params.append(("fields[]", name))
        if offset:
            params.append(("offset", offset))
        for key, value in (extra_params or {}).items():
            if value is not None and value != "":
                params.append((key, value))
        return params

    def _get_page(
        self,
        params: List[Tuple[str, str]],
        headers: Dict[str, str]
    ) -> Dict[str, Any]:
        try:
            response = self._session.get(
                self.table_url,
                params=params,
                headers=headers,
                timeout=self._timeout,
            )
        except requests.Timeout as e:
            raise UpstreamFetchError(
                f"Airtable fetch timed out: {e}",
                error_code=AdapterErrorCode.TIMEOUT,
            ) from e
        except requests.RequestException as e:
            raise UpstreamFetchError(f"Airtable fetch failed: {e}") from e

        if not response.ok:
            body = (response.text or "")[:MAX_ERROR_BODY_CHARS]
            error_code = (
                AdapterErrorCode.AUTH_FAIL
                if response.status_code in (401, 403)
                else AdapterErrorCode.FETCH_FAIL
            )
            raise UpstreamFetchError(
                f"Airtable fetch failed: {response.status_code} {response.reason} - {body}",
                status=response.status_code,
                body=body,
                error_code=error_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamFetchError(
                f"Airtable fetch returned invalid JSON: {e}",
                status=response.status_code,
            ) from e

        if not isinstance(payload, dict):
            raise UpstreamFetchError(
                "Airtable fetch returned a non-object payload",
                status=response.status_code,
            )
        return payload
