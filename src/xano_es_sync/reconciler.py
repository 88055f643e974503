"""Existence Reconciler

Decides which fetched records already have a document in the index.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from elasticsearch import ApiError, TransportError

logger = logging.getLogger(__name__)


class ExistenceReconciler:
    def __init__(self, es: Any, index: str):
        self.es = es
        self.index = index
        self.last_error: Optional[str] = None

    def find_existing(self, ids: Sequence[str]) -> Set[str]:
        """Ids (as strings) that the index reports as found.

        A failed query yields an empty set: re-indexing an existing document
        is preferred over skipping a missing one. The failure message is kept
        in ``last_error`` until the next call.
        """
        self.last_error = None
        ids = [str(i) for i in ids]
        if not ids:
            return set()

        logger.info("Checking for existing records in Elasticsearch: %d IDs", len(ids))
        try:
            response = self.es.mget(index=self.index, ids=ids)
        except (ApiError, TransportError) as e:
            logger.error("Error checking existing records: %s", e)
            self.last_error = f"{type(e).__name__}: {e}"
            return set()

        body = getattr(response, "body", response)
        existing = {str(doc["_id"]) for doc in body.get("docs", []) if doc.get("found")}
        logger.info("✓ Found %d existing records in Elasticsearch", len(existing))
        return existing


def partition_new(records: Iterable[Dict[str, Any]], existing: Set[str]) -> List[Dict[str, Any]]:
    """Records whose id is not in ``existing``, first occurrence only, in fetch order."""
    seen: Set[str] = set()
    new_records: List[Dict[str, Any]] = []
    for record in records:
        record_id = str(record["id"])
        if record_id in existing:
            continue
        if record_id in seen:
            logger.warning("Duplicate record id detected on page: %s. Keeping first occurrence.", record_id)
            continue
        seen.add(record_id)
        new_records.append(record)
    return new_records
