"""Document Transformation Module

Pure transforms from raw Xano records to the Elasticsearch document schema.

Key responsibilities:
  - Default every missing field to a type-stable empty value
  - Coerce the record id to an integer
  - Decode embeddings that arrive as serialized JSON strings
"""

import json
import logging
from typing import Any, Dict, List

from .errors import EmbeddingDecodeError
from .models import IndexDocument, empty_values

logger = logging.getLogger(__name__)

STRING_FIELDS = [
    "job_title",
    "company",
    "location",
    "location_bundesland",
    "location_zip",
    "job_date",
    "url",
    "website",
    "branche",
    "description",
]

COLLECTION_FIELDS = ["berufsgruppe", "properties"]


def normalize_str(value: Any) -> str:
    """Empty string for missing/falsy values, str() for everything else."""
    if not value:
        return ""
    return value if isinstance(value, str) else str(value)


def normalize_collection(value: Any) -> Dict[str, Any]:
    """Always returns a ``{"values": [...]}`` wrapper."""
    if not value:
        return empty_values()
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        return {"values": value}
    return empty_values()


def is_number_list(value: Any) -> bool:
    """True for a list of int/float values (bools excluded)."""
    return isinstance(value, list) and all(
        isinstance(v, (int, float)) and not isinstance(v, bool) for v in value
    )


def decode_embedding(value: Any) -> List[float]:
    """
    Return the embedding as a list of numbers.

    Lists of numbers pass through; strings are parsed as JSON arrays; missing
    values become [].

    Raises:
        EmbeddingDecodeError: If the value does not hold a list of numbers
    """
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        if not is_number_list(list(value)):
            raise EmbeddingDecodeError("Embedding list holds non-numeric values")
        return list(value)
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError as e:
            raise EmbeddingDecodeError(f"Embedding string is not valid JSON: {e}") from e
        if not is_number_list(decoded):
            raise EmbeddingDecodeError("Embedding string does not hold a list of numbers")
        return decoded
    raise EmbeddingDecodeError(f"Unsupported embedding type: {type(value).__name__}")


def to_index_document(record: Dict[str, Any]) -> IndexDocument:
    """Map one Xano record to the index document schema.

    ``combined_embeddings`` is expected to be decoded already; anything that
    is not a list of numbers is mapped to [].
    """
    embedding = record.get("combined_embeddings")
    if isinstance(embedding, tuple):
        embedding = list(embedding)
    fields: Dict[str, Any] = {"id": int(record["id"])}
    for name in STRING_FIELDS:
        fields[name] = normalize_str(record.get(name))
    for name in COLLECTION_FIELDS:
        fields[name] = normalize_collection(record.get(name))
    fields["combined_embeddings"] = embedding if is_number_list(embedding) else []
    return IndexDocument(**fields)
