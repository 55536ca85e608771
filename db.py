"""SQLite persistence for assessment sessions.

Knowledge states are upserted by ``(session_id, topic)``; attempts are
append-only and identified by their position in the session history.
"""

import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from db_pool import SQLiteConnectionPool
from session_state import SessionState
from topic_graph import TopicGraph

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _query(sql: str, params: Iterable = ()) -> List[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def init() -> None:
    if os.path.dirname(DB_PATH):
        Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;

            CREATE TABLE IF NOT EXISTS assessment_sessions (
              session_id    TEXT PRIMARY KEY,
              user_id       TEXT NOT NULL,
              current_topic TEXT,
              created_at    TEXT NOT NULL,
              completed_at  TEXT,
              updated_at    TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_sessions_user ON assessment_sessions(user_id);

            CREATE TABLE IF NOT EXISTS knowledge_states (
              session_id     TEXT NOT NULL,
              topic          TEXT NOT NULL,
              mastery        REAL NOT NULL CHECK (mastery >= 0 AND mastery <= 1),
              streak         INTEGER NOT NULL DEFAULT 0,
              last_practiced TEXT,
              PRIMARY KEY (session_id, topic),
              FOREIGN KEY(session_id) REFERENCES assessment_sessions(session_id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS attempts (
              id          INTEGER PRIMARY KEY AUTOINCREMENT,
              session_id  TEXT NOT NULL,
              seq         INTEGER NOT NULL,
              topic       TEXT NOT NULL,
              question    TEXT,
              answer      TEXT,
              score       REAL NOT NULL CHECK (score >= 0 AND score <= 1),
              difficulty  TEXT NOT NULL,
              time_spent  REAL DEFAULT 0,
              feedback    TEXT,
              attempted_at TEXT NOT NULL,
              UNIQUE (session_id, seq),
              FOREIGN KEY(session_id) REFERENCES assessment_sessions(session_id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_attempts_session ON attempts(session_id, topic);

            CREATE TABLE IF NOT EXISTS topic_stats (
              session_id  TEXT NOT NULL,
              topic       TEXT NOT NULL,
              streak      INTEGER NOT NULL DEFAULT 0,
              velocity    REAL NOT NULL DEFAULT 0,
              PRIMARY KEY (session_id, topic),
              FOREIGN KEY(session_id) REFERENCES assessment_sessions(session_id) ON DELETE CASCADE
            );
            """
        )
        con.commit()


# -------------- sessions --------------
def save_session(session: SessionState) -> Dict[str, Any]:
    """Persist ``session``; returns counts of what was written."""

    payload = session.to_dict()
    session_id = payload["session_id"]
    with _pool.transaction() as con:
        con.execute(
            """
            INSERT INTO assessment_sessions
              (session_id, user_id, current_topic, created_at, completed_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(session_id) DO UPDATE SET
              current_topic = excluded.current_topic,
              completed_at  = excluded.completed_at,
              updated_at    = excluded.updated_at
            """,
            (
                session_id,
                payload["user_id"],
                payload["current_topic"],
                payload["created_at"],
                payload["completed_at"],
                _now_iso(),
            ),
        )
        owner = con.execute(
            "SELECT user_id FROM assessment_sessions WHERE session_id = ?", (session_id,)
        ).fetchone()
        if owner and owner["user_id"] != payload["user_id"]:
            raise ValueError(f"session {session_id} belongs to another user")

        for state in payload["knowledge_states"]:
            con.execute(
                """
                INSERT INTO knowledge_states (session_id, topic, mastery, streak, last_practiced)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(session_id, topic) DO UPDATE SET
                  mastery        = excluded.mastery,
                  streak         = excluded.streak,
                  last_practiced = excluded.last_practiced
                """,
                (
                    session_id,
                    state["topic"],
                    state["mastery"],
                    state["streak"],
                    state["last_practiced"],
                ),
            )

        stored = con.execute(
            "SELECT COALESCE(MAX(seq), -1) AS last_seq FROM attempts WHERE session_id = ?",
            (session_id,),
        ).fetchone()["last_seq"]
        new_attempts = [
            (seq, attempt)
            for seq, attempt in enumerate(payload["attempts"])
            if seq > stored
        ]
        con.executemany(
            """
            INSERT INTO attempts
              (session_id, seq, topic, question, answer, score, difficulty,
               time_spent, feedback, attempted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    session_id,
                    seq,
                    attempt["topic"],
                    attempt["question"],
                    attempt["answer"],
                    attempt["score"],
                    attempt["difficulty"],
                    attempt["time_spent"],
                    attempt["feedback"],
                    attempt["timestamp"],
                )
                for seq, attempt in new_attempts
            ],
        )

        topics = set(payload["streaks"]) | set(payload["velocity"])
        for topic in sorted(topics):
            con.execute(
                """
                INSERT INTO topic_stats (session_id, topic, streak, velocity)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(session_id, topic) DO UPDATE SET
                  streak   = excluded.streak,
                  velocity = excluded.velocity
                """,
                (
                    session_id,
                    topic,
                    int(payload["streaks"].get(topic, 0)),
                    float(payload["velocity"].get(topic, 0.0)),
                ),
            )

    logger.debug(
        "saved session %s (%d knowledge states, %d new attempts)",
        session_id,
        len(payload["knowledge_states"]),
        len(new_attempts),
    )
    return {
        "session_id": session_id,
        "knowledge_states": len(payload["knowledge_states"]),
        "new_attempts": len(new_attempts),
    }


def _session_payload(row: sqlite3.Row) -> Dict[str, Any]:
    session_id = row["session_id"]
    knowledge = _query(
        "SELECT topic, mastery, streak, last_practiced FROM knowledge_states WHERE session_id = ?",
        (session_id,),
    )
    attempts = _query(
        """
        SELECT topic, question, answer, score, difficulty, time_spent, feedback, attempted_at
        FROM attempts WHERE session_id = ? ORDER BY seq ASC
        """,
        (session_id,),
    )
    stats = _query(
        "SELECT topic, streak, velocity FROM topic_stats WHERE session_id = ?",
        (session_id,),
    )
    return {
        "session_id": session_id,
        "user_id": row["user_id"],
        "current_topic": row["current_topic"],
        "created_at": row["created_at"],
        "completed_at": row["completed_at"],
        "knowledge_states": [dict(item) for item in knowledge],
        "attempts": [
            {
                "topic": item["topic"],
                "question": item["question"],
                "answer": item["answer"],
                "score": item["score"],
                "difficulty": item["difficulty"],
                "time_spent": item["time_spent"],
                "feedback": item["feedback"],
                "timestamp": item["attempted_at"],
            }
            for item in attempts
        ],
        "streaks": {item["topic"]: item["streak"] for item in stats},
        "velocity": {item["topic"]: item["velocity"] for item in stats},
    }


def load_session(user_id: str, session_id: str, graph: TopicGraph) -> Optional[SessionState]:
    rows = _query(
        "SELECT * FROM assessment_sessions WHERE session_id = ? AND user_id = ?",
        (session_id, user_id),
    )
    if not rows:
        return None
    return SessionState.from_dict(graph, _session_payload(rows[0]))


def latest_session(
    user_id: str,
    graph: TopicGraph,
    *,
    include_completed: bool = False,
) -> Optional[SessionState]:
    sql = "SELECT * FROM assessment_sessions WHERE user_id = ?"
    if not include_completed:
        sql += " AND completed_at IS NULL"
    sql += " ORDER BY created_at DESC, rowid DESC LIMIT 1"
    rows = _query(sql, (user_id,))
    if not rows:
        return None
    return SessionState.from_dict(graph, _session_payload(rows[0]))


def list_sessions(user_id: str) -> List[Dict[str, Any]]:
    rows = _query(
        """
        SELECT s.session_id, s.user_id, s.current_topic, s.created_at, s.completed_at,
               (SELECT COUNT(*) FROM attempts a WHERE a.session_id = s.session_id) AS attempts
        FROM assessment_sessions s
        WHERE s.user_id = ?
        ORDER BY s.created_at DESC, s.rowid DESC
        """,
        (user_id,),
    )
    return [dict(row) for row in rows]


def load_sessions(user_id: str, graph: TopicGraph) -> List[SessionState]:
    rows = _query(
        "SELECT * FROM assessment_sessions WHERE user_id = ? ORDER BY created_at ASC, rowid ASC",
        (user_id,),
    )
    return [SessionState.from_dict(graph, _session_payload(row)) for row in rows]
