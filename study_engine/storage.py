"""SQLite storage for sets, documents, chunks and study-activity logs."""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .schemas import (
    ChunkRecord,
    Connection,
    Document,
    ExamQuestion,
    ExamSession,
    LearningProfile,
    QuizResult,
    StudySession,
    StudySet,
    UserInteraction,
    WeakAreas,
    new_id,
    utc_now_iso,
)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS sets (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        subject TEXT,
        level TEXT,
        difficulty TEXT,
        description TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS documents (
        id TEXT PRIMARY KEY,
        set_id TEXT NOT NULL REFERENCES sets(id) ON DELETE CASCADE,
        filename TEXT NOT NULL,
        filepath TEXT NOT NULL DEFAULT '',
        media_type TEXT,
        size INTEGER NOT NULL DEFAULT 0,
        uploaded_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chunks (
        id TEXT PRIMARY KEY,
        document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
        set_id TEXT NOT NULL REFERENCES sets(id) ON DELETE CASCADE,
        content TEXT NOT NULL,
        chunk_index INTEGER NOT NULL,
        page_number INTEGER,
        start_token INTEGER,
        end_token INTEGER,
        embedding TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS connections (
        id TEXT PRIMARY KEY,
        source_set_id TEXT NOT NULL REFERENCES sets(id) ON DELETE CASCADE,
        target_set_id TEXT NOT NULL REFERENCES sets(id) ON DELETE CASCADE,
        connection_type TEXT NOT NULL,
        strength REAL NOT NULL,
        created_at TEXT NOT NULL,
        UNIQUE (source_set_id, target_set_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS study_sessions (
        id TEXT PRIMARY KEY,
        set_id TEXT NOT NULL REFERENCES sets(id) ON DELETE CASCADE,
        duration_minutes REAL NOT NULL,
        activities TEXT NOT NULL DEFAULT '',
        notes TEXT NOT NULL DEFAULT '',
        session_date TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quiz_results (
        id TEXT PRIMARY KEY,
        set_id TEXT NOT NULL REFERENCES sets(id) ON DELETE CASCADE,
        topic TEXT NOT NULL DEFAULT '',
        score REAL NOT NULL,
        total_questions INTEGER NOT NULL DEFAULT 0,
        correct_answers INTEGER NOT NULL DEFAULT 0,
        time_taken REAL,
        weak_areas TEXT,
        completed_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS learning_profiles (
        id TEXT PRIMARY KEY,
        set_id TEXT NOT NULL UNIQUE REFERENCES sets(id) ON DELETE CASCADE,
        profile_json TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS exam_sessions (
        id TEXT PRIMARY KEY,
        set_id TEXT NOT NULL REFERENCES sets(id) ON DELETE CASCADE,
        questions_json TEXT NOT NULL,
        answer_key_json TEXT NOT NULL,
        total_questions INTEGER NOT NULL,
        answers_json TEXT,
        score REAL,
        created_at TEXT NOT NULL,
        submitted_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_interactions (
        id TEXT PRIMARY KEY,
        set_id TEXT REFERENCES sets(id) ON DELETE SET NULL,
        interaction_type TEXT NOT NULL,
        query TEXT NOT NULL DEFAULT '',
        result_quality REAL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_chunks_set ON chunks(set_id)",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_set ON study_sessions(set_id)",
    "CREATE INDEX IF NOT EXISTS idx_quiz_set ON quiz_results(set_id, completed_at)",
]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_chunk(row: sqlite3.Row) -> ChunkRecord:
    raw = row["embedding"]
    return ChunkRecord(
        id=row["id"],
        document_id=row["document_id"],
        set_id=row["set_id"],
        content=row["content"],
        chunk_index=row["chunk_index"],
        page_number=row["page_number"],
        start_token=row["start_token"],
        end_token=row["end_token"],
        embedding=json.loads(raw) if raw else None,
        created_at=row["created_at"],
    )


class SQLiteStore:
    """Relational persistence for every engine entity."""

    def __init__(self, db_path: str):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        # one connection shared across threads; writes and read-then-write run under this lock
        self._lock = threading.RLock()
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def _init_schema(self) -> None:
        for statement in SCHEMA:
            self.conn.execute(statement)
        self.conn.commit()

    # Sets

    def create_set(
        self,
        name: str,
        subject: Optional[str] = None,
        level: Optional[str] = None,
        difficulty: Optional[str] = None,
        description: Optional[str] = None,
        set_id: Optional[str] = None,
    ) -> StudySet:
        now = utc_now_iso()
        record = StudySet(
            id=set_id or new_id(),
            name=name,
            subject=subject,
            level=level,
            difficulty=difficulty,
            description=description,
            created_at=now,
            updated_at=now,
        )
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO sets (id, name, subject, level, difficulty, description, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.name,
                    record.subject,
                    record.level,
                    record.difficulty,
                    record.description,
                    record.created_at,
                    record.updated_at,
                ),
            )
        return record

    def get_set(self, set_id: str) -> Optional[StudySet]:
        row = self.conn.execute("SELECT * FROM sets WHERE id = ?", (set_id,)).fetchone()
        return StudySet(**dict(row)) if row else None

    def list_sets(self, exclude_id: Optional[str] = None) -> List[StudySet]:
        if exclude_id is None:
            rows = self.conn.execute("SELECT * FROM sets ORDER BY created_at").fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM sets WHERE id != ? ORDER BY created_at", (exclude_id,)
            ).fetchall()
        return [StudySet(**dict(row)) for row in rows]

    def touch_set(self, set_id: str) -> None:
        with self._lock, self.conn:
            self.conn.execute("UPDATE sets SET updated_at = ? WHERE id = ?", (utc_now_iso(), set_id))

    def delete_set(self, set_id: str) -> None:
        with self._lock, self.conn:
            self.conn.execute("DELETE FROM sets WHERE id = ?", (set_id,))

    # Documents and chunks

    def insert_document(self, document: Document) -> Document:
        document.uploaded_at = document.uploaded_at or utc_now_iso()
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO documents (id, set_id, filename, filepath, media_type, size, uploaded_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    document.id,
                    document.set_id,
                    document.filename,
                    document.filepath,
                    document.media_type,
                    int(document.size),
                    document.uploaded_at,
                ),
            )
        return document

    def get_document(self, document_id: str) -> Optional[Document]:
        row = self.conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
        return Document(**dict(row)) if row else None

    def list_documents(self, set_id: str) -> List[Document]:
        rows = self.conn.execute(
            "SELECT * FROM documents WHERE set_id = ? ORDER BY uploaded_at", (set_id,)
        ).fetchall()
        return [Document(**dict(row)) for row in rows]

    def delete_document(self, document_id: str) -> None:
        with self._lock, self.conn:
            self.conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))

    def insert_chunks(self, chunks: List[ChunkRecord]) -> None:
        if not chunks:
            return
        now = utc_now_iso()
        payload = [
            (
                chunk.id,
                chunk.document_id,
                chunk.set_id,
                chunk.content,
                int(chunk.chunk_index),
                chunk.page_number,
                chunk.start_token,
                chunk.end_token,
                chunk.embedding_json(),
                chunk.created_at or now,
            )
            for chunk in chunks
        ]
        with self._lock, self.conn:
            self.conn.executemany(
                """
                INSERT INTO chunks (
                    id, document_id, set_id, content, chunk_index, page_number,
                    start_token, end_token, embedding, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                payload,
            )

    def update_chunk_embeddings(self, embeddings: Dict[str, Optional[List[float]]]) -> None:
        if not embeddings:
            return
        payload = [
            (json.dumps([float(v) for v in vec]) if vec is not None else None, chunk_id)
            for chunk_id, vec in embeddings.items()
        ]
        with self._lock, self.conn:
            self.conn.executemany("UPDATE chunks SET embedding = ? WHERE id = ?", payload)

    def clear_chunk_embeddings(self, where: Dict[str, Any]) -> None:
        where_sql, params = self._chunk_where(where)
        with self._lock, self.conn:
            self.conn.execute(f"UPDATE chunks SET embedding = NULL {where_sql}", params)

    def list_chunks(
        self,
        set_id: Optional[str] = None,
        limit: Optional[int] = None,
        with_embedding: bool = False,
    ) -> List[ChunkRecord]:
        where = []
        params: List[Any] = []
        if set_id is not None:
            where.append("set_id = ?")
            params.append(set_id)
        if with_embedding:
            where.append("embedding IS NOT NULL")
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""
        query = f"SELECT * FROM chunks {where_sql} ORDER BY created_at, document_id, chunk_index"
        if limit is not None:
            query += " LIMIT ?"
            params.append(max(0, int(limit)))
        rows = self.conn.execute(query, params).fetchall()
        return [_row_to_chunk(row) for row in rows]

    def list_embedded_chunks(self, where: Optional[Dict[str, Any]] = None) -> List[ChunkRecord]:
        where_sql, params = self._chunk_where(where or {})
        extra = "embedding IS NOT NULL"
        where_sql = f"{where_sql} AND {extra}" if where_sql else f"WHERE {extra}"
        rows = self.conn.execute(f"SELECT * FROM chunks {where_sql}", params).fetchall()
        return [_row_to_chunk(row) for row in rows]

    def count_embedded_chunks(self) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS n FROM chunks WHERE embedding IS NOT NULL"
        ).fetchone()
        return int(row["n"]) if row else 0

    def count_chunks(self, set_id: Optional[str] = None) -> int:
        if set_id is None:
            row = self.conn.execute("SELECT COUNT(*) AS n FROM chunks").fetchone()
        else:
            row = self.conn.execute(
                "SELECT COUNT(*) AS n FROM chunks WHERE set_id = ?", (set_id,)
            ).fetchone()
        return int(row["n"]) if row else 0

    def set_text(self, set_id: str) -> str:
        """All chunk text of a set joined with spaces."""
        rows = self.conn.execute(
            "SELECT content FROM chunks WHERE set_id = ? ORDER BY document_id, chunk_index",
            (set_id,),
        ).fetchall()
        return " ".join(row["content"] for row in rows)

    def fetch_chunk_context(self, ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """Chunk index, document filename and set name for each chunk id."""
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        rows = self.conn.execute(
            f"""
            SELECT c.id, c.chunk_index, d.filename, s.name AS set_name
            FROM chunks c
            JOIN documents d ON c.document_id = d.id
            JOIN sets s ON c.set_id = s.id
            WHERE c.id IN ({placeholders})
            """,
            ids,
        ).fetchall()
        return {row["id"]: dict(row) for row in rows}

    def keyword_search(
        self,
        keywords: List[str],
        set_id: Optional[str] = None,
        limit: int = 5,
        unembedded_only: bool = False,
    ) -> List[Dict[str, Any]]:
        """Chunks whose text contains any keyword as a literal substring (case-insensitive LIKE)."""
        if not keywords:
            return []
        conditions = " OR ".join("c.content LIKE ? ESCAPE '\\'" for _ in keywords)
        params: List[Any] = [f"%{_escape_like(k)}%" for k in keywords]
        query = f"""
            SELECT c.id, c.content, c.chunk_index, d.filename, s.name AS set_name
            FROM chunks c
            JOIN documents d ON c.document_id = d.id
            JOIN sets s ON c.set_id = s.id
            WHERE ({conditions})
        """
        if set_id:
            query += " AND c.set_id = ?"
            params.append(set_id)
        if unembedded_only:
            query += " AND c.embedding IS NULL"
        query += " ORDER BY c.created_at, c.chunk_index LIMIT ?"
        params.append(max(1, int(limit)))
        rows = self.conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    @staticmethod
    def _chunk_where(where: Dict[str, Any]) -> tuple:
        clauses = []
        params: List[Any] = []
        for key in ("set_id", "document_id", "id"):
            value = where.get(key)
            if value is not None:
                clauses.append(f"{key} = ?")
                params.append(value)
        unknown = set(where) - {"set_id", "document_id", "id"}
        if unknown:
            raise ValueError(f"Unsupported chunk filter keys: {sorted(unknown)}")
        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where_sql, params

    # Connections

    def get_connection(self, source_set_id: str, target_set_id: str) -> Optional[Connection]:
        row = self.conn.execute(
            "SELECT * FROM connections WHERE source_set_id = ? AND target_set_id = ?",
            (source_set_id, target_set_id),
        ).fetchone()
        return Connection(**dict(row)) if row else None

    def upsert_connection(
        self, source_set_id: str, target_set_id: str, connection_type: str, strength: float
    ) -> Connection:
        """Replace the edge for a source/target pair, keeping its id."""
        now = utc_now_iso()
        with self._lock, self.conn:
            row = self.conn.execute(
                "SELECT id FROM connections WHERE source_set_id = ? AND target_set_id = ?",
                (source_set_id, target_set_id),
            ).fetchone()
            if row:
                conn_id = row["id"]
                self.conn.execute(
                    """
                    UPDATE connections SET connection_type = ?, strength = ?, created_at = ?
                    WHERE id = ?
                    """,
                    (connection_type, float(strength), now, conn_id),
                )
            else:
                conn_id = new_id()
                self.conn.execute(
                    """
                    INSERT INTO connections (id, source_set_id, target_set_id, connection_type, strength, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (conn_id, source_set_id, target_set_id, connection_type, float(strength), now),
                )
        return Connection(
            id=conn_id,
            source_set_id=source_set_id,
            target_set_id=target_set_id,
            connection_type=connection_type,
            strength=float(strength),
            created_at=now,
        )

    def delete_connection(self, source_set_id: str, target_set_id: str) -> None:
        with self._lock, self.conn:
            self.conn.execute(
                "DELETE FROM connections WHERE source_set_id = ? AND target_set_id = ?",
                (source_set_id, target_set_id),
            )

    def list_connections(self, set_id: Optional[str] = None) -> List[Dict[str, Any]]:
        query = """
            SELECT c.*, s1.name AS source_name, s1.subject AS source_subject,
                   s2.name AS target_name, s2.subject AS target_subject
            FROM connections c
            JOIN sets s1 ON c.source_set_id = s1.id
            JOIN sets s2 ON c.target_set_id = s2.id
        """
        params: List[Any] = []
        if set_id is not None:
            query += " WHERE c.source_set_id = ? OR c.target_set_id = ?"
            params.extend([set_id, set_id])
        query += " ORDER BY c.strength DESC"
        return [dict(row) for row in self.conn.execute(query, params).fetchall()]

    # Study activity logs

    def insert_study_session(self, session: StudySession) -> StudySession:
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO study_sessions (id, set_id, duration_minutes, activities, notes, session_date)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    session.id,
                    session.set_id,
                    float(session.duration_minutes),
                    session.activities or "",
                    session.notes or "",
                    session.session_date,
                ),
            )
        return session

    def list_study_sessions(self, set_id: str) -> List[StudySession]:
        rows = self.conn.execute(
            "SELECT * FROM study_sessions WHERE set_id = ? ORDER BY session_date DESC",
            (set_id,),
        ).fetchall()
        return [StudySession(**dict(row)) for row in rows]

    def insert_quiz_result(self, result: QuizResult, raw_weak_areas: Optional[WeakAreas] = None) -> QuizResult:
        weak = raw_weak_areas or WeakAreas(result.weak_areas)
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO quiz_results (
                    id, set_id, topic, score, total_questions, correct_answers,
                    time_taken, weak_areas, completed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result.id,
                    result.set_id,
                    result.topic,
                    float(result.score),
                    int(result.total_questions),
                    int(result.correct_answers),
                    result.time_taken,
                    weak.to_storage(),
                    result.completed_at,
                ),
            )
        return result

    def list_quiz_results(self, set_id: str, limit: Optional[int] = None) -> List[QuizResult]:
        query = "SELECT * FROM quiz_results WHERE set_id = ? ORDER BY completed_at DESC"
        params: List[Any] = [set_id]
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))
        rows = self.conn.execute(query, params).fetchall()
        results = []
        for row in rows:
            data = dict(row)
            data["weak_areas"] = WeakAreas.parse(data.get("weak_areas"))
            results.append(QuizResult(**data))
        return results

    def insert_interaction(self, interaction: UserInteraction) -> UserInteraction:
        interaction.created_at = interaction.created_at or utc_now_iso()
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO user_interactions (id, set_id, interaction_type, query, result_quality, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    interaction.id,
                    interaction.set_id,
                    interaction.interaction_type,
                    interaction.query or "",
                    interaction.result_quality,
                    interaction.created_at,
                ),
            )
        return interaction

    def list_interactions(self, set_id: Optional[str] = None) -> List[UserInteraction]:
        if set_id is None:
            rows = self.conn.execute(
                "SELECT * FROM user_interactions ORDER BY created_at"
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM user_interactions WHERE set_id = ? ORDER BY created_at", (set_id,)
            ).fetchall()
        return [UserInteraction(**dict(row)) for row in rows]

    def progress_rows(self) -> List[Dict[str, Any]]:
        """Per-set study time and quiz aggregates for sets with any activity."""
        rows = self.conn.execute(
            """
            SELECT s.id, s.name AS topic, s.subject, s.difficulty,
                   COALESCE(ss.total_minutes, 0) / 60.0 AS time_hours,
                   COALESCE(ss.session_count, 0) AS session_count,
                   ss.last_studied AS last_studied,
                   COALESCE(qr.avg_score, 0) AS avg_score,
                   COALESCE(qr.quiz_count, 0) AS quiz_count
            FROM sets s
            LEFT JOIN (
                SELECT set_id, SUM(duration_minutes) AS total_minutes,
                       COUNT(*) AS session_count, MAX(session_date) AS last_studied
                FROM study_sessions GROUP BY set_id
            ) ss ON ss.set_id = s.id
            LEFT JOIN (
                SELECT set_id, AVG(score) AS avg_score, COUNT(*) AS quiz_count
                FROM quiz_results GROUP BY set_id
            ) qr ON qr.set_id = s.id
            WHERE COALESCE(ss.session_count, 0) > 0 OR COALESCE(qr.quiz_count, 0) > 0
            ORDER BY time_hours DESC
            """
        ).fetchall()
        return [dict(row) for row in rows]

    def list_exam_scores(self, limit: int = 30) -> List[Dict[str, Any]]:
        """Most recent submitted exam sessions with their set name as ``topic``."""
        rows = self.conn.execute(
            """
            SELECT es.id, es.set_id, es.score, es.total_questions, es.submitted_at, s.name AS topic
            FROM exam_sessions es
            JOIN sets s ON s.id = es.set_id
            WHERE es.submitted_at IS NOT NULL AND es.score IS NOT NULL
            ORDER BY es.submitted_at DESC
            LIMIT ?
            """,
            (int(limit),),
        ).fetchall()
        return [dict(row) for row in rows]

    def list_quiz_scores(self, limit: int = 30) -> List[Dict[str, Any]]:
        """Most recent quiz results across sets, shaped like ``list_exam_scores`` rows."""
        rows = self.conn.execute(
            """
            SELECT qr.id, qr.set_id, qr.score, qr.total_questions,
                   qr.completed_at AS submitted_at, s.name AS topic
            FROM quiz_results qr
            JOIN sets s ON s.id = qr.set_id
            ORDER BY qr.completed_at DESC
            LIMIT ?
            """,
            (int(limit),),
        ).fetchall()
        return [dict(row) for row in rows]

    # Learning profiles

    def get_learning_profile(self, set_id: str) -> Optional[LearningProfile]:
        row = self.conn.execute(
            "SELECT profile_json, updated_at FROM learning_profiles WHERE set_id = ?", (set_id,)
        ).fetchone()
        if not row:
            return None
        data = json.loads(row["profile_json"])
        data["updated_at"] = row["updated_at"]
        return LearningProfile(**data)

    def upsert_learning_profile(self, profile: LearningProfile) -> LearningProfile:
        """Last write wins; one row per set."""
        now = utc_now_iso()
        payload = profile.to_dict()
        payload.pop("updated_at", None)
        body = json.dumps(payload)
        with self._lock, self.conn:
            row = self.conn.execute(
                "SELECT id FROM learning_profiles WHERE set_id = ?", (profile.set_id,)
            ).fetchone()
            if row:
                self.conn.execute(
                    "UPDATE learning_profiles SET profile_json = ?, updated_at = ? WHERE set_id = ?",
                    (body, now, profile.set_id),
                )
            else:
                self.conn.execute(
                    "INSERT INTO learning_profiles (id, set_id, profile_json, updated_at) VALUES (?, ?, ?, ?)",
                    (new_id(), profile.set_id, body, now),
                )
        profile.updated_at = now
        return profile

    # Exam sessions

    def insert_exam_session(self, session: ExamSession) -> ExamSession:
        session.created_at = session.created_at or utc_now_iso()
        questions = [
            {
                "id": q.id,
                "question": q.question,
                "options": q.options,
                "answer": q.answer,
                "explanation": q.explanation,
            }
            for q in session.questions
        ]
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO exam_sessions (id, set_id, questions_json, answer_key_json, total_questions, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    session.id,
                    session.set_id,
                    json.dumps(questions),
                    json.dumps(session.answer_key),
                    len(session.questions),
                    session.created_at,
                ),
            )
        return session

    def get_exam_session(self, session_id: str) -> Optional[ExamSession]:
        row = self.conn.execute("SELECT * FROM exam_sessions WHERE id = ?", (session_id,)).fetchone()
        if not row:
            return None
        questions = [ExamQuestion(**q) for q in json.loads(row["questions_json"] or "[]")]
        return ExamSession(
            id=row["id"],
            set_id=row["set_id"],
            questions=questions,
            answer_key=json.loads(row["answer_key_json"] or "{}"),
            answers=json.loads(row["answers_json"]) if row["answers_json"] else None,
            score=row["score"],
            created_at=row["created_at"],
            submitted_at=row["submitted_at"],
        )

    def record_exam_submission(
        self, session_id: str, answers: Dict[str, Optional[str]], score: float
    ) -> Optional[str]:
        """Store answers and score once; None when the session was already submitted."""
        now = utc_now_iso()
        with self._lock, self.conn:
            cursor = self.conn.execute(
                """
                UPDATE exam_sessions SET answers_json = ?, score = ?, submitted_at = ?
                WHERE id = ? AND submitted_at IS NULL
                """,
                (json.dumps(answers), float(score), now, session_id),
            )
        return now if cursor.rowcount == 1 else None

    def close(self) -> None:
        self.conn.close()
