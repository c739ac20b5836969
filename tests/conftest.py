"""Pytest configuration and fixtures."""

import pytest

from study_engine.config import AppConfig
from study_engine.pipeline import StudyEngine
from study_engine.storage import SQLiteStore
from tests.fakes import FakeCompleter, FakeEmbedder


@pytest.fixture
def config(tmp_path):
    """Config wired for tests: in-memory SQLite, relational vector scan, no retry delay."""
    return AppConfig.from_dict(
        {
            "paths": {"sqlite_path": ":memory:", "chroma_dir": str(tmp_path / "chroma")},
            "vector_index": {"backend": "sqlite"},
            "providers": {"retry_delay_seconds": 0},
            "graph": {"rebuild_on_ingest": False},
        },
        base_dir=tmp_path,
    )


@pytest.fixture
def store():
    store = SQLiteStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def completer():
    return FakeCompleter()


@pytest.fixture
def engine(config, store, embedder, completer):
    """StudyEngine backed by fakes; no network."""
    engine = StudyEngine(config, store=store, embedder=embedder, completer=completer)
    yield engine


@pytest.fixture
def calculus_set(engine):
    """A set with one derivative document and one unrelated document."""
    study_set = engine.create_set("Calculus I", subject="Mathematics", level="Year 12")
    engine.ingest_document(
        study_set.id,
        "The derivative of a polynomial is computed term by term with the power rule.",
        filename="calculus.txt",
    )
    engine.ingest_document(
        study_set.id,
        "Photosynthesis converts light energy into chemical energy inside chloroplasts.",
        filename="biology.txt",
    )
    return study_set
