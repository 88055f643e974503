import copy
from typing import Any, Dict, List, Optional

import pytest

from src.xano_es_sync.checkpoint import InMemoryCheckpointStore
from src.xano_es_sync.config import SyncConfig
from src.xano_es_sync.embeddings import EmbeddingEnricher
from src.xano_es_sync.errors import SourceWriteError
from src.xano_es_sync.failure_log import InMemoryFailureLog
from src.xano_es_sync.index_writer import IndexWriter
from src.xano_es_sync.models import FetchResult
from src.xano_es_sync.pipeline import SyncContext
from src.xano_es_sync.reconciler import ExistenceReconciler

INDEX = "jobs"
DIMS = 3072


class ByteTokenizer:
    """One token per UTF-8 byte, so multi-byte characters span several tokens."""

    def encode(self, text):
        return list(text.encode("utf-8"))

    def decode_bytes(self, tokens):
        return bytes(tokens)


class DummyEmbeddingItem:
    def __init__(self, vec):
        self.embedding = vec


class DummyResponse:
    def __init__(self, vec):
        self.data = [DummyEmbeddingItem(vec)]


class RecordingEmbeddingClient:
    """
    Fake OpenAI client that records calls to embeddings.create and returns
    a vector of the requested dimensionality (or a configured one).
    """

    def __init__(self, vector: Optional[List[float]] = None, error: Optional[Exception] = None):
        self.vector = vector
        self.error = error
        self.calls: List[Dict[str, Any]] = []

        class _Embeddings:
            def __init__(self, outer):
                self._outer = outer

            def create(self, model, input, dimensions):
                self._outer.calls.append({"model": model, "input": input, "dimensions": dimensions})
                if self._outer.error is not None:
                    raise self._outer.error
                vec = self._outer.vector if self._outer.vector is not None else [0.5] * dimensions
                return DummyResponse(vec)

        self.embeddings = _Embeddings(self)


class FakeSource:
    """In-memory stand-in for the Xano table."""

    def __init__(self, pages: Optional[Dict[int, List[Dict[str, Any]]]] = None):
        self.pages = pages or {}
        self.failing_pages: Dict[int, str] = {}
        self.fail_updates = False
        self.fetched_pages: List[int] = []
        self.updates: List[Dict[str, Any]] = []
        self.closed = False

    def fetch(self, page):
        self.fetched_pages.append(page)
        if page in self.failing_pages:
            return FetchResult(page=page, error=self.failing_pages[page])
        return FetchResult(page=page, records=copy.deepcopy(self.pages.get(page, [])))

    def update_field(self, record_id, field, value):
        if self.fail_updates:
            raise SourceWriteError(f"Failed to update '{field}' for record {record_id}: 500")
        self.updates.append({"id": record_id, "field": field, "value": value})

    def close(self):
        self.closed = True


class FakeElasticsearch:
    """Minimal mget/bulk fake with upsert-by-_id semantics."""

    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.mget_calls: List[List[str]] = []
        self.bulk_calls: List[List[Dict[str, Any]]] = []
        self.mget_error: Optional[Exception] = None
        self.bulk_error: Optional[Exception] = None
        self.reject_ids: Dict[str, str] = {}
        self.closed = False

    def mget(self, index, ids):
        self.mget_calls.append(list(ids))
        if self.mget_error is not None:
            raise self.mget_error
        return {
            "docs": [
                {"_index": index, "_id": i, "found": i in self.docs}
                for i in ids
            ]
        }

    def bulk(self, operations):
        self.bulk_calls.append(operations)
        if self.bulk_error is not None:
            raise self.bulk_error
        items = []
        for action, doc in zip(operations[::2], operations[1::2]):
            doc_id = action["index"]["_id"]
            if doc_id in self.reject_ids:
                items.append({"index": {
                    "_index": action["index"]["_index"],
                    "_id": doc_id,
                    "status": 400,
                    "error": {"type": "mapper_parsing_exception", "reason": self.reject_ids[doc_id]},
                }})
            else:
                self.docs[doc_id] = doc
                items.append({"index": {"_index": action["index"]["_index"], "_id": doc_id, "status": 201}})
        return {"errors": any("error" in i["index"] for i in items), "items": items}

    def close(self):
        self.closed = True


def make_record(record_id, **fields):
    record = {
        "id": record_id,
        "job_title": f"Job {record_id}",
        "company": "ACME",
        "description": f"Description {record_id}",
    }
    record.update(fields)
    return record


@pytest.fixture
def config_factory():
    def _make(**overrides):
        values = dict(
            xano_api_key="xano-key",
            xano_workspace_id="1",
            xano_meta_base_url="https://xano.example.com/api:meta",
            elasticsearch_url="http://localhost:9200",
            elasticsearch_index=INDEX,
            openai_api_key="sk-test",
            records_per_page=3,
            expected_total_records=9,
            embedding_delay_seconds=0,
        )
        values.update(overrides)
        return SyncConfig(**values)

    return _make


@pytest.fixture
def fake_es():
    return FakeElasticsearch()


@pytest.fixture
def failure_log():
    return InMemoryFailureLog()


@pytest.fixture
def embedding_client():
    return RecordingEmbeddingClient()


@pytest.fixture
def context_factory(config_factory, fake_es, failure_log, embedding_client):
    """Build a SyncContext around in-memory fakes."""

    def _make(pages=None, checkpoint=None, with_embeddings=True, **config_overrides):
        config = config_factory(**config_overrides)
        source = FakeSource(pages)
        enricher = None
        if with_embeddings:
            enricher = EmbeddingEnricher(
                client=embedding_client,
                target=source,
                failure_log=failure_log,
                model=config.embedding_model,
                dimensions=config.embedding_dimensions,
                max_input_tokens=config.max_input_tokens,
                tokenizer=ByteTokenizer(),
            )
        return SyncContext(
            config=config,
            source=source,
            reconciler=ExistenceReconciler(fake_es, INDEX),
            writer=IndexWriter(fake_es, INDEX, failure_log),
            checkpoint_store=InMemoryCheckpointStore(checkpoint),
            failure_log=failure_log,
            enricher=enricher,
        )

    return _make
