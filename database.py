"""
database.py – SQLite connection scope and schema for the mock test server.

Every request gets its own connection through ``get_db``; nothing holds a
module-level handle. Connections run in autocommit mode and multi-statement
writes are grouped with ``transaction()``, which takes SQLite's write lock
up front (BEGIN IMMEDIATE) so a read-then-write sequence cannot interleave
with another writer.
"""

import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

import config

logger = logging.getLogger(__name__)


def get_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    conn = sqlite3.connect(
        db_path or config.DB_PATH,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def get_db() -> Iterator[sqlite3.Connection]:
    """FastAPI dependency: one connection per request, always closed."""
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


# ── Schema ────────────────────────────────────────────────────────────────────

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id         INTEGER PRIMARY KEY AUTOINCREMENT,
        name       TEXT    NOT NULL,
        email      TEXT    NOT NULL UNIQUE,
        created_at TEXT    NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pdfs (
        id            INTEGER PRIMARY KEY AUTOINCREMENT,
        original_name TEXT    NOT NULL,
        stored_name   TEXT    NOT NULL,
        file_size     INTEGER NOT NULL DEFAULT 0,
        page_count    INTEGER NOT NULL DEFAULT 0,
        file_path     TEXT    NOT NULL,
        created_at    TEXT    NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS crops (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        pdf_id      INTEGER NOT NULL REFERENCES pdfs(id) ON DELETE CASCADE,
        page_number INTEGER NOT NULL,
        crop_x      REAL    NOT NULL,
        crop_y      REAL    NOT NULL,
        crop_width  REAL    NOT NULL,
        crop_height REAL    NOT NULL,
        image_path  TEXT    NOT NULL,
        created_at  TEXT    NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tests (
        id           INTEGER PRIMARY KEY AUTOINCREMENT,
        name         TEXT    NOT NULL,
        duration     INTEGER NOT NULL DEFAULT 180,
        instructions TEXT,
        total_marks  REAL    NOT NULL DEFAULT 0,
        is_published INTEGER NOT NULL DEFAULT 0,
        created_at   TEXT    NOT NULL DEFAULT (datetime('now')),
        updated_at   TEXT    NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS questions (
        id             INTEGER PRIMARY KEY AUTOINCREMENT,
        test_id        INTEGER NOT NULL REFERENCES tests(id) ON DELETE CASCADE,
        crop_id        INTEGER REFERENCES crops(id) ON DELETE SET NULL,
        subject        TEXT    NOT NULL,
        question_type  TEXT    NOT NULL DEFAULT 'mcq',
        option_a       TEXT,
        option_b       TEXT,
        option_c       TEXT,
        option_d       TEXT,
        correct_answer TEXT    NOT NULL CHECK(correct_answer IN ('A','B','C','D')),
        marks          REAL    NOT NULL CHECK(marks >= 0),
        negative_marks REAL    NOT NULL CHECK(negative_marks >= 0),
        difficulty     TEXT,
        solution       TEXT,
        created_at     TEXT    NOT NULL DEFAULT (datetime('now')),
        updated_at     TEXT    NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS percentile_mappings (
        id              INTEGER PRIMARY KEY AUTOINCREMENT,
        test_id         INTEGER NOT NULL REFERENCES tests(id) ON DELETE CASCADE,
        marks_threshold REAL    NOT NULL,
        percentile      REAL    NOT NULL,
        UNIQUE(test_id, marks_threshold)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS submissions (
        id                INTEGER PRIMARY KEY AUTOINCREMENT,
        test_id           INTEGER NOT NULL REFERENCES tests(id),
        user_id           INTEGER NOT NULL REFERENCES users(id),
        status            TEXT    NOT NULL DEFAULT 'in_progress'
                                  CHECK(status IN ('in_progress','completed')),
        started_at        TEXT    NOT NULL DEFAULT (datetime('now')),
        completed_at      TEXT,
        total_score       REAL,
        correct_count     INTEGER,
        incorrect_count   INTEGER,
        unattempted_count INTEGER,
        accuracy          REAL,
        percentile        REAL,
        rank              INTEGER,
        total_time        INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS responses (
        id              INTEGER PRIMARY KEY AUTOINCREMENT,
        submission_id   INTEGER NOT NULL REFERENCES submissions(id),
        question_id     INTEGER NOT NULL REFERENCES questions(id),
        selected_answer TEXT,
        time_spent      INTEGER NOT NULL DEFAULT 0 CHECK(time_spent >= 0),
        status          TEXT    NOT NULL
                                CHECK(status IN ('not_visited','not_answered','answered')),
        created_at      TEXT    NOT NULL DEFAULT (datetime('now')),
        updated_at      TEXT    NOT NULL DEFAULT (datetime('now')),
        UNIQUE(submission_id, question_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS analysis_records (
        id              INTEGER PRIMARY KEY AUTOINCREMENT,
        submission_id   INTEGER NOT NULL REFERENCES submissions(id),
        subject         TEXT    NOT NULL,
        score           REAL    NOT NULL,
        correct_count   INTEGER NOT NULL,
        incorrect_count INTEGER NOT NULL,
        time_spent      INTEGER NOT NULL,
        accuracy        REAL    NOT NULL,
        created_at      TEXT    NOT NULL DEFAULT (datetime('now'))
    )
    """,
]

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_question_test ON questions(test_id)",
    "CREATE INDEX IF NOT EXISTS idx_submission_test ON submissions(test_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_response_submission ON responses(submission_id)",
    "CREATE INDEX IF NOT EXISTS idx_analysis_submission ON analysis_records(submission_id)",
    "CREATE INDEX IF NOT EXISTS idx_crop_pdf ON crops(pdf_id)",
]


def init_db(db_path: Optional[str] = None) -> None:
    """Create every table and index if missing (idempotent).

    Also seeds the placeholder guest user that anonymous attempts belong to.
    """
    conn = get_connection(db_path)
    try:
        with transaction(conn):
            for ddl in _SCHEMA:
                conn.execute(ddl)
            for ddl in _INDEXES:
                conn.execute(ddl)
            conn.execute(
                """
                INSERT INTO users (id, name, email)
                SELECT ?, 'Guest', 'guest@localhost'
                WHERE NOT EXISTS (SELECT 1 FROM users WHERE id = ?)
                """,
                (config.DEFAULT_USER_ID, config.DEFAULT_USER_ID),
            )
    finally:
        conn.close()
    logger.info("Database ready at %s", db_path or config.DB_PATH)
