"""Data Models Module

Defines Pydantic models for the records and state that flow through the
sync: the Elasticsearch document shape, the persisted checkpoint, failure
log entries, and the structured results returned by the I/O components.

Source records are kept as the raw dictionaries returned by Xano; only the
destination side is modelled so that the index never sees null values.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import FailureKind


def utc_now_iso() -> str:
    """Current time as an ISO-8601 string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def empty_values() -> Dict[str, List[Any]]:
    return {"values": []}


class IndexDocument(BaseModel):
    """Flattened, defaulted projection of a Xano record.

    Field order matches the source field projection so the serialized
    document keeps a stable shape.
    """
    id: int
    job_title: str = ""
    company: str = ""
    location: str = ""
    location_bundesland: str = ""
    location_zip: str = ""
    job_date: str = ""
    url: str = ""
    website: str = ""
    branche: str = ""
    description: str = ""
    berufsgruppe: Dict[str, Any] = Field(default_factory=empty_values)
    properties: Dict[str, Any] = Field(default_factory=empty_values)
    combined_embeddings: List[float] = Field(default_factory=list)


class Checkpoint(BaseModel):
    """Durable marker of sync progress.

    Serialized with the camelCase keys used by the checkpoint file.
    """
    model_config = ConfigDict(populate_by_name=True)

    last_processed_page: int = Field(default=0, ge=0, alias="lastProcessedPage")
    last_processed_record_id: int = Field(default=0, ge=0, alias="lastProcessedRecordId")
    timestamp: Optional[str] = None


class FailureEntry(BaseModel):
    """One append-only failure log entry."""
    id: str
    error: str
    time: str = Field(default_factory=utc_now_iso)
    # entries written before kinds existed have none
    kind: Optional[FailureKind] = None


class FetchResult(BaseModel):
    """Outcome of fetching one page from the source table.

    `error` is set when the request failed; `records` is empty in that case.
    """
    page: int
    records: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class BulkWriteResult(BaseModel):
    """Outcome of a single bulk request against the index."""
    attempted: int = 0
    written_ids: List[str] = Field(default_factory=list)
    failed_ids: List[str] = Field(default_factory=list)
    transport_error: Optional[str] = None
