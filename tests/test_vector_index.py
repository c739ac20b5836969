"""Tests for the relational vector index backend."""

import pytest

from study_engine.config import AppConfig
from study_engine.schemas import ChunkRecord, Document
from study_engine.vector_index import (
    FailoverVectorIndex,
    IndexItem,
    SQLiteVectorIndex,
    build_vector_index,
)


@pytest.fixture
def seeded(store):
    """Two sets with one document each and unembedded chunks."""
    ids = {}
    for name in ("alpha", "beta"):
        study_set = store.create_set(name)
        doc = store.insert_document(Document(id=f"doc-{name}", set_id=study_set.id, filename=f"{name}.txt"))
        store.insert_chunks(
            [
                ChunkRecord(
                    id=f"{name}-{i}",
                    document_id=doc.id,
                    set_id=study_set.id,
                    content=f"{name} chunk {i}",
                    chunk_index=i,
                )
                for i in range(2)
            ]
        )
        ids[name] = study_set.id
    return ids


def test_query_ranks_by_cosine(store, seeded):
    index = SQLiteVectorIndex(store)
    index.upsert(
        [
            IndexItem(id="alpha-0", vector=[1.0, 0.0], text="alpha chunk 0"),
            IndexItem(id="alpha-1", vector=[0.6, 0.8], text="alpha chunk 1"),
            IndexItem(id="beta-0", vector=[0.0, 1.0], text="beta chunk 0"),
        ]
    )
    hits = index.query([1.0, 0.0], k=3)
    assert [h["id"] for h in hits] == ["alpha-0", "alpha-1", "beta-0"]
    assert hits[0]["similarity"] == pytest.approx(1.0)
    assert hits[1]["similarity"] == pytest.approx(0.6)
    assert index.count() == 3


def test_query_filters_by_set(store, seeded):
    index = SQLiteVectorIndex(store)
    index.upsert(
        [
            IndexItem(id="alpha-0", vector=[1.0, 0.0], text=""),
            IndexItem(id="beta-0", vector=[1.0, 0.0], text=""),
        ]
    )
    hits = index.query([1.0, 0.0], k=5, where={"set_id": seeded["beta"]})
    assert [h["id"] for h in hits] == ["beta-0"]
    assert hits[0]["metadata"]["set_id"] == seeded["beta"]


def test_query_skips_mismatched_dimensions_and_zero_query(store, seeded):
    index = SQLiteVectorIndex(store)
    index.upsert(
        [
            IndexItem(id="alpha-0", vector=[1.0, 0.0], text=""),
            IndexItem(id="alpha-1", vector=[1.0, 0.0, 0.0], text=""),
        ]
    )
    assert [h["id"] for h in index.query([1.0, 0.0], k=5)] == ["alpha-0"]
    assert index.query([0.0, 0.0], k=5) == []


def test_delete_clears_vectors_for_document(store, seeded):
    index = SQLiteVectorIndex(store)
    index.upsert([IndexItem(id=f"alpha-{i}", vector=[1.0, 0.0], text="") for i in range(2)])
    index.delete({"document_id": "doc-alpha"})
    assert index.count() == 0
    # chunk rows survive; only their vectors are gone
    assert store.count_chunks(seeded["alpha"]) == 2


def test_delete_requires_filter(store):
    with pytest.raises(ValueError):
        SQLiteVectorIndex(store).delete({})


def test_unknown_filter_key_rejected(store):
    with pytest.raises(ValueError):
        SQLiteVectorIndex(store).query([1.0], k=1, where={"filename": "x"})


class BrokenIndex:
    name = "broken"

    def upsert(self, items):
        raise RuntimeError("down")

    def query(self, vector, k, where=None):
        raise RuntimeError("down")

    def delete(self, where):
        raise RuntimeError("down")

    def count(self):
        raise RuntimeError("down")


def test_failover_reads_relational_copy_when_primary_fails(store, seeded):
    index = FailoverVectorIndex(BrokenIndex(), SQLiteVectorIndex(store))
    index.upsert([IndexItem(id="alpha-0", vector=[1.0, 0.0], text="")])
    assert [h["id"] for h in index.query([1.0, 0.0], k=1)] == ["alpha-0"]
    assert index.count() == 1
    assert index.name == "broken+sqlite"


class WriteFailingIndex:
    """Primary that accepts reads but rejects writes until ``writable`` is set."""

    name = "flaky"

    def __init__(self):
        self.writable = False
        self.items = {}

    def upsert(self, items):
        if not self.writable:
            raise RuntimeError("write rejected")
        self.items.update({item.id: item for item in items})

    def query(self, vector, k, where=None):
        return [
            {"id": item.id, "similarity": 1.0, "text": item.text, "metadata": item.metadata}
            for item in list(self.items.values())[:k]
        ]

    def delete(self, where):
        self.items.clear()

    def count(self):
        return len(self.items)


def test_failover_serves_chunks_the_primary_failed_to_store(store, seeded):
    """A rejected primary write must not hide the chunk while the primary still answers reads."""
    primary = WriteFailingIndex()
    index = FailoverVectorIndex(primary, SQLiteVectorIndex(store))
    index.upsert([IndexItem(id="alpha-0", vector=[1.0, 0.0], text="", metadata={"document_id": "doc-alpha"})])

    assert index.pending_count == 1
    assert [h["id"] for h in index.query([1.0, 0.0], k=1)] == ["alpha-0"]
    assert index.count() == 1
    assert primary.items == {}


def test_failover_flushes_pending_writes_once_primary_recovers(store, seeded):
    primary = WriteFailingIndex()
    index = FailoverVectorIndex(primary, SQLiteVectorIndex(store))
    index.upsert([IndexItem(id="alpha-0", vector=[1.0, 0.0], text="alpha chunk 0")])

    primary.writable = True
    hits = index.query([1.0, 0.0], k=1)

    assert index.pending_count == 0
    assert list(primary.items) == ["alpha-0"]
    assert [h["id"] for h in hits] == ["alpha-0"]


def test_failover_delete_drops_pending_writes(store, seeded):
    primary = WriteFailingIndex()
    index = FailoverVectorIndex(primary, SQLiteVectorIndex(store))
    index.upsert(
        [
            IndexItem(id="alpha-0", vector=[1.0, 0.0], text="", metadata={"document_id": "doc-alpha"}),
            IndexItem(id="beta-0", vector=[0.0, 1.0], text="", metadata={"document_id": "doc-beta"}),
        ]
    )
    index.delete({"document_id": "doc-alpha"})

    assert index.pending_count == 1
    primary.writable = True
    index.query([1.0, 0.0], k=2)
    assert list(primary.items) == ["beta-0"]


def test_engine_retrieves_chunks_missing_from_primary(config, store, embedder, completer):
    from study_engine.pipeline import StudyEngine

    index = FailoverVectorIndex(WriteFailingIndex(), SQLiteVectorIndex(store))
    engine = StudyEngine(config, store=store, embedder=embedder, completer=completer, vector_index=index)
    study_set = engine.create_set("Calculus")
    engine.ingest_document(
        study_set.id, "The derivative of a polynomial uses the power rule.", filename="calculus.txt"
    )

    response = engine.retrieve("derivative of a polynomial", study_set.id)
    assert [r["source"] for r in response["results"]] == ["calculus.txt"]
    assert response["results"][0]["semantic_score"] > 0


def test_build_vector_index_sqlite_backend(store, config):
    assert isinstance(build_vector_index(config, store), SQLiteVectorIndex)


def test_build_vector_index_default_is_chroma_with_failover(store, tmp_path):
    config = AppConfig.from_dict({"paths": {"sqlite_path": ":memory:", "chroma_dir": str(tmp_path / "chroma")}})
    index = build_vector_index(config, store)
    assert isinstance(index, FailoverVectorIndex)
    assert index.count() == 0
