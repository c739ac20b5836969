"""Tests for the SQLite store: shared-connection writes and keyword matching."""

import threading

from study_engine.schemas import ChunkRecord, Document, LearningProfile


def _profile(set_id, minutes):
    return LearningProfile(
        set_id=set_id,
        set_name="Calculus",
        subject="Math",
        level=None,
        baseline_difficulty=None,
        avg_session_minutes=minutes,
        best_time_slot="evening",
        preferred_modality="reading",
        mastery_score=50,
        recommended_daily_minutes=45,
        adaptation_notes="",
    )


def _run_concurrently(target, workers=8):
    barrier = threading.Barrier(workers)
    errors = []

    def run(n):
        barrier.wait()
        try:
            for i in range(20):
                target(n, i)
        except Exception as exc:  # collected for the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(n,)) for n in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return errors


def test_concurrent_profile_upserts_keep_one_row(store):
    study_set = store.create_set("Calculus")
    errors = _run_concurrently(lambda n, i: store.upsert_learning_profile(_profile(study_set.id, n * 100 + i)))

    assert errors == []
    count = store.conn.execute(
        "SELECT COUNT(*) FROM learning_profiles WHERE set_id = ?", (study_set.id,)
    ).fetchone()[0]
    assert count == 1
    assert store.get_learning_profile(study_set.id) is not None


def test_concurrent_connection_upserts_keep_one_edge(store):
    source = store.create_set("Algebra")
    target = store.create_set("Calculus")
    errors = _run_concurrently(
        lambda n, i: store.upsert_connection(source.id, target.id, "related", (n + i) / 100)
    )

    assert errors == []
    count = store.conn.execute(
        "SELECT COUNT(*) FROM connections WHERE source_set_id = ? AND target_set_id = ?",
        (source.id, target.id),
    ).fetchone()[0]
    assert count == 1


def _seed_chunks(store, *contents):
    study_set = store.create_set("Notes")
    doc = store.insert_document(Document(id="doc-1", set_id=study_set.id, filename="notes.txt"))
    store.insert_chunks(
        [
            ChunkRecord(id=f"c{i}", document_id=doc.id, set_id=study_set.id, content=text, chunk_index=i)
            for i, text in enumerate(contents)
        ]
    )
    return study_set


def test_keyword_search_escapes_wildcards(store):
    _seed_chunks(store, "1000 items", "a 100% score", "snake_case", "snakeXcase", "C:\\temp")

    def found(keyword):
        return [row["content"] for row in store.keyword_search([keyword], limit=10)]

    assert found("100%") == ["a 100% score"]
    assert found("snake_case") == ["snake_case"]
    assert found("C:\\temp") == ["C:\\temp"]
    assert found("%") == ["a 100% score"]


def test_keyword_search_unembedded_only(store):
    study_set = _seed_chunks(store, "limits one", "limits two")
    store.update_chunk_embeddings({"c0": [1.0, 0.0]})
    rows = store.keyword_search(["limits"], set_id=study_set.id, unembedded_only=True)
    assert [row["id"] for row in rows] == ["c1"]
