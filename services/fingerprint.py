"""
============================================================================
Centennial Activity Map v1.2.0
View Fingerprint - Change Detection over Record Membership
============================================================================

Reliability Level: L5 Core
Input Constraints: Records (or bare ids) of one full upstream set
Side Effects: None

FINGERPRINT DETERMINISM:
    digest = SHA-1( view_name + ";" + ",".join(sorted(ids)) )

    1. Ids are sorted, so input order never matters
    2. The view name is part of the input, so two views with the same
       members still differ
    3. Only identity is hashed: field edits do not move the fingerprint,
       membership changes do

SHA-1 is used for change detection, not tamper-proofing.
============================================================================
"""

from typing import Iterable, Union
import hashlib
import logging

from data_ingestion.schemas import ProjectRecord

# Configure module logger
logger = logging.getLogger(__name__)


ID_SEPARATOR = ","
VIEW_SEPARATOR = ";"


def _record_id(item: Union[ProjectRecord, str]) -> str:
    return item if isinstance(item, str) else item.id


def compute_view_fingerprint(
    records: Iterable[Union[ProjectRecord, str]],
    view_name: str = ""
) -> str:
    """
    Compute the membership fingerprint of a record set.

    Args:
        records: ProjectRecords or their ids
        view_name: Upstream view the set was read from ("" when none)

    Returns:
        40-character hex digest
    """
    ids = sorted(_record_id(r) for r in records)
    payload = (view_name or "") + VIEW_SEPARATOR + ID_SEPARATOR.join(ids)
    fingerprint = hashlib.sha1(payload.encode("utf-8")).hexdigest()

    logger.debug(
        f"Computed view fingerprint | "
        f"view={view_name or '-'} | "
        f"ids={len(ids)} | "
        f"fingerprint={fingerprint[:12]}..."
    )
    return fingerprint
