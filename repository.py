"""
repository.py – SQL accessors for users, PDFs, crops, tests, questions,
percentile tables, submissions, responses and analysis records.

Helpers take an open connection and return plain dicts. They do no business
validation; the lifecycle layer and the API models do that.
"""

import sqlite3
from typing import Iterable, Optional

from scoring import ScoringResult


def _one(row: Optional[sqlite3.Row]) -> Optional[dict]:
    return dict(row) if row else None


def _all(rows: Iterable[sqlite3.Row]) -> list[dict]:
    return [dict(r) for r in rows]


# ── Users ─────────────────────────────────────────────────────────────────────

def db_create_user(conn, name: str, email: str) -> dict:
    cur = conn.execute(
        "INSERT INTO users (name, email) VALUES (?,?)", (name, email)
    )
    return db_get_user(conn, cur.lastrowid)


def db_get_user(conn, user_id: int) -> Optional[dict]:
    return _one(conn.execute(
        "SELECT id, name, email, created_at FROM users WHERE id = ?", (user_id,)
    ).fetchone())


def db_get_user_by_email(conn, email: str) -> Optional[dict]:
    return _one(conn.execute(
        "SELECT id, name, email, created_at FROM users WHERE email = ?", (email,)
    ).fetchone())


# ── PDFs and crops ────────────────────────────────────────────────────────────

def db_create_pdf(conn, original_name: str, stored_name: str, file_size: int,
                  page_count: int, file_path: str) -> dict:
    cur = conn.execute(
        """INSERT INTO pdfs (original_name, stored_name, file_size, page_count, file_path)
           VALUES (?,?,?,?,?)""",
        (original_name, stored_name, file_size, page_count, file_path),
    )
    return db_get_pdf(conn, cur.lastrowid)


def db_get_pdf(conn, pdf_id: int) -> Optional[dict]:
    return _one(conn.execute("SELECT * FROM pdfs WHERE id = ?", (pdf_id,)).fetchone())


def db_list_pdfs(conn) -> list[dict]:
    return _all(conn.execute("SELECT * FROM pdfs ORDER BY created_at DESC, id DESC"))


def db_delete_pdf(conn, pdf_id: int) -> None:
    conn.execute("DELETE FROM pdfs WHERE id = ?", (pdf_id,))


def db_create_crop(conn, pdf_id: int, page_number: int, x: float, y: float,
                   width: float, height: float, image_path: str) -> dict:
    cur = conn.execute(
        """INSERT INTO crops
               (pdf_id, page_number, crop_x, crop_y, crop_width, crop_height, image_path)
           VALUES (?,?,?,?,?,?,?)""",
        (pdf_id, page_number, x, y, width, height, image_path),
    )
    return db_get_crop(conn, cur.lastrowid)


def db_get_crop(conn, crop_id: int) -> Optional[dict]:
    return _one(conn.execute("SELECT * FROM crops WHERE id = ?", (crop_id,)).fetchone())


def db_list_crops(conn, pdf_id: Optional[int] = None) -> list[dict]:
    if pdf_id is not None:
        return _all(conn.execute(
            "SELECT * FROM crops WHERE pdf_id = ? ORDER BY created_at, id", (pdf_id,)
        ))
    return _all(conn.execute("SELECT * FROM crops ORDER BY created_at DESC, id DESC"))


# ── Tests ─────────────────────────────────────────────────────────────────────

def db_create_test(conn, name: str, duration: int, instructions: Optional[str],
                   total_marks: float) -> dict:
    cur = conn.execute(
        "INSERT INTO tests (name, duration, instructions, total_marks) VALUES (?,?,?,?)",
        (name, duration, instructions, total_marks),
    )
    return db_get_test(conn, cur.lastrowid)


def db_get_test(conn, test_id: int) -> Optional[dict]:
    return _one(conn.execute("SELECT * FROM tests WHERE id = ?", (test_id,)).fetchone())


def db_list_tests(conn) -> list[dict]:
    """Every test with its question count and the marks its questions add up to."""
    return _all(conn.execute(
        """
        SELECT t.*,
               COUNT(q.id)               AS question_count,
               COALESCE(SUM(q.marks), 0) AS question_marks
        FROM   tests t
        LEFT JOIN questions q ON q.test_id = t.id
        GROUP  BY t.id
        ORDER  BY t.created_at DESC, t.id DESC
        """
    ))


def db_update_test(conn, test_id: int, name: str, duration: int,
                   instructions: Optional[str], is_published: bool) -> Optional[dict]:
    conn.execute(
        """UPDATE tests
           SET name = ?, duration = ?, instructions = ?, is_published = ?,
               updated_at = datetime('now')
           WHERE id = ?""",
        (name, duration, instructions, int(is_published), test_id),
    )
    return db_get_test(conn, test_id)


def db_delete_test(conn, test_id: int) -> None:
    conn.execute("DELETE FROM tests WHERE id = ?", (test_id,))


# ── Questions ─────────────────────────────────────────────────────────────────

_QUESTION_COLUMNS = (
    "test_id", "crop_id", "subject", "question_type",
    "option_a", "option_b", "option_c", "option_d",
    "correct_answer", "marks", "negative_marks", "difficulty", "solution",
)


def db_create_question(conn, fields: dict) -> dict:
    cols = ", ".join(_QUESTION_COLUMNS)
    placeholders = ", ".join(f":{c}" for c in _QUESTION_COLUMNS)
    cur = conn.execute(
        f"INSERT INTO questions ({cols}) VALUES ({placeholders})",
        {c: fields.get(c) for c in _QUESTION_COLUMNS},
    )
    return db_get_question(conn, cur.lastrowid)


def db_get_question(conn, question_id: int) -> Optional[dict]:
    return _one(conn.execute(
        """SELECT q.*, c.image_path FROM questions q
           LEFT JOIN crops c ON c.id = q.crop_id
           WHERE q.id = ?""",
        (question_id,),
    ).fetchone())


def db_list_questions(conn) -> list[dict]:
    return _all(conn.execute("SELECT * FROM questions ORDER BY id"))


def db_list_questions_by_test(conn, test_id: int) -> list[dict]:
    return _all(conn.execute(
        """SELECT q.*, c.image_path FROM questions q
           LEFT JOIN crops c ON c.id = q.crop_id
           WHERE q.test_id = ?
           ORDER BY q.id""",
        (test_id,),
    ))


def db_update_question(conn, question_id: int, fields: dict) -> Optional[dict]:
    editable = [c for c in _QUESTION_COLUMNS if c not in ("test_id", "crop_id")]
    assignments = ", ".join(f"{c} = :{c}" for c in editable)
    params = {c: fields.get(c) for c in editable}
    params["id"] = question_id
    conn.execute(
        f"UPDATE questions SET {assignments}, updated_at = datetime('now') WHERE id = :id",
        params,
    )
    return db_get_question(conn, question_id)


def db_question_has_responses(conn, question_id: int) -> bool:
    row = conn.execute(
        "SELECT 1 FROM responses WHERE question_id = ? LIMIT 1", (question_id,)
    ).fetchone()
    return row is not None


# ── Percentile tables ─────────────────────────────────────────────────────────

def db_list_percentile_thresholds(conn, test_id: int) -> list[dict]:
    return _all(conn.execute(
        """SELECT * FROM percentile_mappings
           WHERE test_id = ?
           ORDER BY marks_threshold DESC""",
        (test_id,),
    ))


def db_replace_percentile_thresholds(conn, test_id: int, rows: list[tuple]) -> None:
    """Swap the whole table of a test. Call inside a transaction."""
    conn.execute("DELETE FROM percentile_mappings WHERE test_id = ?", (test_id,))
    conn.executemany(
        """INSERT INTO percentile_mappings (test_id, marks_threshold, percentile)
           VALUES (?,?,?)""",
        [(test_id, threshold, percentile) for threshold, percentile in rows],
    )


# ── Submissions ───────────────────────────────────────────────────────────────

def db_create_submission(conn, test_id: int, user_id: int) -> dict:
    cur = conn.execute(
        "INSERT INTO submissions (test_id, user_id, status) VALUES (?,?,'in_progress')",
        (test_id, user_id),
    )
    return db_get_submission(conn, cur.lastrowid)


def db_get_submission(conn, submission_id: int) -> Optional[dict]:
    return _one(conn.execute(
        "SELECT * FROM submissions WHERE id = ?", (submission_id,)
    ).fetchone())


def db_get_submission_with_test(conn, submission_id: int) -> Optional[dict]:
    return _one(conn.execute(
        """SELECT s.*, t.name AS test_name, t.duration
           FROM   submissions s
           JOIN   tests t ON t.id = s.test_id
           WHERE  s.id = ?""",
        (submission_id,),
    ).fetchone())


def db_count_submissions_for_test(conn, test_id: int) -> int:
    return conn.execute(
        "SELECT COUNT(*) FROM submissions WHERE test_id = ?", (test_id,)
    ).fetchone()[0]


def db_list_completed_scores(conn, test_id: int, exclude_submission_id: int) -> list[float]:
    rows = conn.execute(
        """SELECT total_score FROM submissions
           WHERE test_id = ? AND status = 'completed' AND id != ?""",
        (test_id, exclude_submission_id),
    ).fetchall()
    return [r["total_score"] for r in rows]


def db_complete_submission(conn, submission_id: int, result: ScoringResult) -> bool:
    """Write every scoring field and flip status in one statement.

    Only an in-progress row is touched; returns False when the row was
    already completed (or missing), so a second writer never overwrites.
    """
    cur = conn.execute(
        """UPDATE submissions
           SET status            = 'completed',
               completed_at      = datetime('now'),
               total_score       = ?,
               correct_count     = ?,
               incorrect_count   = ?,
               unattempted_count = ?,
               accuracy          = ?,
               percentile        = ?,
               rank              = ?,
               total_time        = ?
           WHERE id = ? AND status = 'in_progress'""",
        (
            result.total_score, result.correct, result.incorrect, result.unattempted,
            result.accuracy, result.percentile, result.rank, result.total_time,
            submission_id,
        ),
    )
    return cur.rowcount == 1


# ── Responses ─────────────────────────────────────────────────────────────────

def db_upsert_response(conn, submission_id: int, question_id: int,
                       selected_answer: Optional[str], time_spent: int, status: str) -> dict:
    conn.execute(
        """INSERT INTO responses (submission_id, question_id, selected_answer, time_spent, status)
           VALUES (?,?,?,?,?)
           ON CONFLICT(submission_id, question_id) DO UPDATE SET
               selected_answer = excluded.selected_answer,
               time_spent      = excluded.time_spent,
               status          = excluded.status,
               updated_at      = datetime('now')""",
        (submission_id, question_id, selected_answer, time_spent, status),
    )
    return _one(conn.execute(
        "SELECT * FROM responses WHERE submission_id = ? AND question_id = ?",
        (submission_id, question_id),
    ).fetchone())


def db_list_responses_by_submission(conn, submission_id: int) -> list[dict]:
    return _all(conn.execute(
        "SELECT * FROM responses WHERE submission_id = ? ORDER BY question_id",
        (submission_id,),
    ))


# ── Analysis records ──────────────────────────────────────────────────────────

def db_insert_analysis_records(conn, submission_id: int, result: ScoringResult) -> None:
    conn.executemany(
        """INSERT INTO analysis_records
               (submission_id, subject, score, correct_count, incorrect_count,
                time_spent, accuracy)
           VALUES (?,?,?,?,?,?,?)""",
        [
            (submission_id, s.subject, s.score, s.correct, s.incorrect,
             s.time_spent, s.accuracy)
            for s in result.subjects
        ],
    )


def db_list_analysis_records(conn, submission_id: int) -> list[dict]:
    return _all(conn.execute(
        "SELECT * FROM analysis_records WHERE submission_id = ? ORDER BY id",
        (submission_id,),
    ))


def db_list_questions_with_responses(conn, submission_id: int, test_id: int) -> list[dict]:
    """Questions of a test joined with this attempt's response and crop image."""
    return _all(conn.execute(
        """SELECT q.*, r.selected_answer, r.time_spent, r.status AS response_status,
                  c.image_path
           FROM   questions q
           LEFT JOIN responses r ON r.question_id = q.id AND r.submission_id = ?
           LEFT JOIN crops     c ON c.id = q.crop_id
           WHERE  q.test_id = ?
           ORDER  BY q.id""",
        (submission_id, test_id),
    ))
