"""Embeddings Module

Computes the ``combined_embeddings`` vector for records that arrive without
one, using OpenAI's embedding API, and writes the result back to Xano.

Key features:
  - Token-based truncation that never splits a multi-byte character
  - Exponential backoff retry on rate limiting
  - Strict validation of the returned vector's dimensionality
  - Every failure is recorded per record and never aborts the page
"""

import logging
import math
import time
from typing import Any, Dict, List, Optional, Protocol, Sequence

import openai
import tiktoken

from .errors import EmbeddingError, FailureKind, SourceWriteError
from .failure_log import FailureLog

logger = logging.getLogger(__name__)

EMBEDDING_FIELD = "combined_embeddings"


class Tokenizer(Protocol):
    def encode(self, text: str) -> List[int]: ...

    def decode_bytes(self, tokens: Sequence[int]) -> bytes: ...


class EmbeddingTarget(Protocol):
    """Where computed vectors are persisted (the Xano table)."""

    def update_field(self, record_id: Any, field: str, value: Any) -> None: ...


def get_tokenizer(model: str) -> Tokenizer:
    """Return the tiktoken encoding for ``model``.

    Models tiktoken does not know about use ``cl100k_base``, the encoding of
    OpenAI's embedding models.
    """
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        logger.debug("No tiktoken mapping for %s, using cl100k_base", model)
        return tiktoken.get_encoding("cl100k_base")


def has_embedding(record: Dict[str, Any]) -> bool:
    """True if the record already carries a non-empty embedding (list or string)."""
    value = record.get(EMBEDDING_FIELD)
    if isinstance(value, str):
        return bool(value.strip())
    return bool(value)


def build_embedding_text(record: Dict[str, Any]) -> Optional[str]:
    """Text fed to the embedding model, or None if the record has no title."""
    title = str(record.get("job_title") or "").strip()
    if not title:
        return None
    description = str(record.get("description") or "").strip()
    return f"{title}: {description}"


def truncate_to_tokens(text: str, tokenizer: Tokenizer, max_tokens: int) -> str:
    """
    Truncate text so that it encodes to at most ``max_tokens`` tokens.

    The kept tokens are decoded back to bytes and then to UTF-8 with
    incomplete trailing sequences dropped, so the result is always a clean
    prefix of the original text.
    """
    tokens = tokenizer.encode(text)
    if len(tokens) <= max_tokens:
        return text

    keep = max_tokens
    while keep > 0:
        truncated = tokenizer.decode_bytes(tokens[:keep]).decode("utf-8", errors="ignore")
        # re-encoding a cut prefix can merge differently
        if len(tokenizer.encode(truncated)) <= max_tokens:
            logger.info(
                "Truncated embedding input: %d -> %d tokens (%d -> %d chars)",
                len(tokens),
                keep,
                len(text),
                len(truncated),
            )
            return truncated
        keep -= 1
    return ""


def validate_vector(vector: Any, dimensions: int) -> List[float]:
    """Check that the provider returned exactly ``dimensions`` finite numbers."""
    if not isinstance(vector, (list, tuple)):
        raise EmbeddingError(f"Embedding is not a sequence (got {type(vector).__name__})")
    if len(vector) != dimensions:
        raise EmbeddingError(
            f"Invalid embedding dimension: expected {dimensions}, got {len(vector)}"
        )
    for idx, v in enumerate(vector):
        if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
            raise EmbeddingError(f"Embedding value at index {idx} is not a finite number: {v!r}")
    return [float(v) for v in vector]


def embed_text_with_retry(
    client: Any,
    text: str,
    model: str,
    dimensions: int,
    max_retries: int = 5,
) -> List[float]:
    """
    Request one embedding, retrying on rate limiting.
    Retries up to `max_retries` times with exponential backoff.
    """
    retries = 0
    while True:
        try:
            response = client.embeddings.create(
                model=model,
                input=text,
                dimensions=dimensions,
            )
            return list(response.data[0].embedding)
        except openai.RateLimitError as e:
            retries += 1
            # quota exhaustion will not clear up by waiting
            if getattr(e, "code", None) == "insufficient_quota" or "insufficient_quota" in str(e):
                logger.error("Insufficient quota, cannot retry. Error: %s", e)
                raise

            if retries > max_retries:
                logger.error("Max retries exceeded (%d). Last error: %s", max_retries, e)
                raise

            wait_time = 2 ** retries
            logger.warning(
                "Rate limit error from OpenAI (attempt %d/%d). "
                "Sleeping for %d seconds before retry. Error: %s",
                retries,
                max_retries,
                wait_time,
                e,
            )
            time.sleep(wait_time)


class EmbeddingEnricher:
    def __init__(
        self,
        client: Any,
        target: EmbeddingTarget,
        failure_log: FailureLog,
        model: str,
        dimensions: int,
        max_input_tokens: int,
        delay_seconds: float = 0.0,
        tokenizer: Optional[Tokenizer] = None,
    ):
        self.client = client
        self.target = target
        self.failure_log = failure_log
        self.model = model
        self.dimensions = dimensions
        self.max_input_tokens = max_input_tokens
        self.delay_seconds = delay_seconds
        self._tokenizer = tokenizer

    @property
    def tokenizer(self) -> Tokenizer:
        if self._tokenizer is None:
            self._tokenizer = get_tokenizer(self.model)
        return self._tokenizer

    def enrich(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Attach an embedding to ``record`` if it has none.

        Returns the same record object, mutated on success. Failures are
        recorded and the record is returned without an embedding.
        """
        record_id = record.get("id")
        if has_embedding(record):
            logger.debug("Record %s already has an embedding, skipping", record_id)
            return record

        text = build_embedding_text(record)
        if text is None:
            self.failure_log.record(
                record_id, "Missing job_title, cannot build embedding input", FailureKind.EMBEDDING
            )
            return record

        text = truncate_to_tokens(text, self.tokenizer, self.max_input_tokens)

        try:
            raw_vector = embed_text_with_retry(
                self.client, text, model=self.model, dimensions=self.dimensions
            )
            vector = validate_vector(raw_vector, self.dimensions)
        except (openai.OpenAIError, EmbeddingError, IndexError, AttributeError) as e:
            self.failure_log.record(record_id, f"Embedding Error: {e}", FailureKind.EMBEDDING)
            return record

        try:
            self.target.update_field(record_id, EMBEDDING_FIELD, vector)
        except SourceWriteError as e:
            self.failure_log.record(record_id, f"Embedding write-back Error: {e}", FailureKind.EMBEDDING)
            return record

        record[EMBEDDING_FIELD] = vector
        logger.info("✓ Generated embedding for record %s (dim=%d)", record_id, len(vector))

        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        return record
