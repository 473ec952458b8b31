"""
lifecycle.py – state transitions of a test attempt ("submission").

    start            -> in_progress
    record response  (in_progress only)
    submit           in_progress -> completed, scored exactly once

Submitting runs in a single write transaction: the scoring fields, the
status flip and the per-subject analysis records are committed together or
not at all. Submitting an attempt that is already completed returns the
stored result without recomputing.
"""

import logging
import sqlite3
from typing import Optional

import repository as repo
import scoring
from database import transaction
from errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

IN_PROGRESS = "in_progress"
COMPLETED   = "completed"


def start_attempt(conn: sqlite3.Connection, test_id: int, user_id: int) -> dict:
    if not repo.db_get_test(conn, test_id):
        raise NotFoundError("Test not found")
    if not repo.db_get_user(conn, user_id):
        raise NotFoundError("User not found")
    submission = repo.db_create_submission(conn, test_id, user_id)
    logger.info("Submission %s started: test=%s user=%s", submission["id"], test_id, user_id)
    return submission


def record_response(
    conn: sqlite3.Connection,
    submission_id: int,
    question_id: int,
    selected_answer: Optional[str],
    time_spent: int,
    status: str,
) -> dict:
    """Upsert the response to one question of an in-progress attempt."""
    if status not in scoring.RESPONSE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(scoring.RESPONSE_STATUSES)}")
    with transaction(conn):
        submission = repo.db_get_submission(conn, submission_id)
        if not submission:
            raise NotFoundError("Submission not found")
        question = repo.db_get_question(conn, question_id)
        if not question:
            raise NotFoundError("Question not found")
        if question["test_id"] != submission["test_id"]:
            raise ValidationError("Question does not belong to this submission's test")
        if submission["status"] != IN_PROGRESS:
            logger.warning("Rejected response to completed submission %s", submission_id)
            raise ConflictError("Submission is already completed")
        return repo.db_upsert_response(
            conn, submission_id, question_id, selected_answer, time_spent, status
        )


def submit_attempt(conn: sqlite3.Connection, submission_id: int) -> dict:
    """Score an attempt and lock it.

    Holds the database write lock from the first read to the commit, so two
    concurrent submits serialize: the second sees 'completed' and returns
    the stored row.
    """
    with transaction(conn):
        submission = repo.db_get_submission(conn, submission_id)
        if not submission:
            raise NotFoundError("Submission not found")
        if submission["status"] == COMPLETED:
            logger.warning("Submission %s already completed; returning stored result", submission_id)
            return submission

        test_id = submission["test_id"]
        questions = [
            scoring.QuestionKey.from_row(r)
            for r in repo.db_list_questions_by_test(conn, test_id)
        ]
        responses = [
            scoring.ResponseEntry.from_row(r)
            for r in repo.db_list_responses_by_submission(conn, submission_id)
        ]
        thresholds = [
            scoring.PercentileThreshold.from_row(r)
            for r in repo.db_list_percentile_thresholds(conn, test_id)
        ]
        prior_scores = repo.db_list_completed_scores(conn, test_id, submission_id)

        result = scoring.score_attempt(questions, responses, thresholds, prior_scores)

        if not repo.db_complete_submission(conn, submission_id, result):
            # completed by another writer in the meantime
            return repo.db_get_submission(conn, submission_id)
        repo.db_insert_analysis_records(conn, submission_id, result)

    logger.info(
        "Submission %s completed: score=%s correct=%d incorrect=%d rank=%d percentile=%s",
        submission_id, result.total_score, result.correct, result.incorrect,
        result.rank, result.percentile,
    )
    return repo.db_get_submission(conn, submission_id)


def get_analysis(conn: sqlite3.Connection, submission_id: int) -> dict:
    """Attempt, per-subject records and questions with this attempt's responses."""
    submission = repo.db_get_submission_with_test(conn, submission_id)
    if not submission:
        raise NotFoundError("Submission not found")
    return {
        "submission":      submission,
        "subjectAnalysis": repo.db_list_analysis_records(conn, submission_id),
        "questions":       repo.db_list_questions_with_responses(
            conn, submission_id, submission["test_id"]
        ),
    }
