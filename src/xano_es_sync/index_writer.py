"""Index Writer

Bulk-writes mapped documents to Elasticsearch. Each document is indexed
under its record id, so writing the same record twice replaces the earlier
copy instead of duplicating it.
"""

import logging
from typing import Any, Dict, List, Sequence

from elasticsearch import ApiError, TransportError

from .errors import FailureKind
from .failure_log import FailureLog
from .models import BulkWriteResult, IndexDocument

logger = logging.getLogger(__name__)


class IndexWriter:
    def __init__(self, es: Any, index: str, failure_log: FailureLog):
        self.es = es
        self.index = index
        self.failure_log = failure_log

    def build_operations(self, documents: Sequence[IndexDocument]) -> List[Dict[str, Any]]:
        operations: List[Dict[str, Any]] = []
        for doc in documents:
            operations.append({"index": {"_index": self.index, "_id": str(doc.id)}})
            operations.append(doc.model_dump())
        return operations

    def bulk_write(self, documents: Sequence[IndexDocument]) -> BulkWriteResult:
        """Index all documents in a single bulk request.

        Per-item failures go to the failure log and do not affect the other
        items. A failure of the request itself is reported through
        ``transport_error`` and nothing is counted as written.
        """
        result = BulkWriteResult(attempted=len(documents))
        if not documents:
            return result

        logger.info("Sending bulk insert of %d records to index %s", len(documents), self.index)
        try:
            response = self.es.bulk(operations=self.build_operations(documents))
        except (ApiError, TransportError) as e:
            logger.error("Bulk insert to Elasticsearch failed: %s", e)
            result.transport_error = f"{type(e).__name__}: {e}"
            return result

        body = getattr(response, "body", response)
        items = body.get("items", [])
        for position, (doc, item) in enumerate(zip(documents, items)):
            action = item.get("index") or next(iter(item.values()), {})
            error = action.get("error")
            if error:
                doc_id = action.get("_id") or f"unknown-{position}"
                reason = error.get("reason") if isinstance(error, dict) else str(error)
                self.failure_log.record(doc_id, f"Elasticsearch Error: {reason}", FailureKind.INDEX)
                result.failed_ids.append(str(doc_id))
            else:
                result.written_ids.append(str(action.get("_id") or doc.id))

        if result.failed_ids:
            logger.warning(
                "Some records failed to index: %d failed, %d written",
                len(result.failed_ids),
                len(result.written_ids),
            )
        else:
            logger.info("✓ Successfully inserted %d records to Elasticsearch", len(result.written_ids))
        return result
