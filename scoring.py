"""
scoring.py – pure scoring and analysis for a submitted test attempt.

Given the question bank of a test, the responses of one attempt, the test's
percentile table and the scores of other completed attempts, produce the
total score, correct / incorrect / unattempted counts, accuracy, total time,
percentile, rank and one breakdown entry per subject.

No I/O happens here; the lifecycle layer reads the inputs and persists the
result.

Classification (one predicate for both the overall and the per-subject pass):
    correct       status 'answered', selected answer == correct answer   +marks
    incorrect     status 'answered', selected answer != correct answer   -negative_marks
    unattempted   no response, status not 'answered', or no selection    0

Time: every stored response adds its time_spent, whatever its status.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping, Optional

# ── Response statuses ─────────────────────────────────────────────────────────

NOT_VISITED  = "not_visited"
NOT_ANSWERED = "not_answered"
ANSWERED     = "answered"

RESPONSE_STATUSES = (NOT_VISITED, NOT_ANSWERED, ANSWERED)

CORRECT     = "correct"
INCORRECT   = "incorrect"
UNATTEMPTED = "unattempted"


# ── Inputs ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class QuestionKey:
    """The parts of a question that scoring needs."""
    id: int
    subject: str
    correct_answer: str
    marks: float
    negative_marks: float

    @classmethod
    def from_row(cls, row: Mapping) -> "QuestionKey":
        return cls(
            id=row["id"],
            subject=row["subject"],
            correct_answer=row["correct_answer"],
            marks=float(row["marks"]),
            negative_marks=float(row["negative_marks"]),
        )


@dataclass(frozen=True)
class ResponseEntry:
    question_id: int
    selected_answer: Optional[str]
    time_spent: int
    status: str

    @classmethod
    def from_row(cls, row: Mapping) -> "ResponseEntry":
        return cls(
            question_id=row["question_id"],
            selected_answer=row["selected_answer"],
            time_spent=row["time_spent"] or 0,
            status=row["status"],
        )


@dataclass(frozen=True)
class PercentileThreshold:
    marks_threshold: float
    percentile: float

    @classmethod
    def from_row(cls, row: Mapping) -> "PercentileThreshold":
        return cls(float(row["marks_threshold"]), float(row["percentile"]))


# ── Outputs ───────────────────────────────────────────────────────────────────

@dataclass
class SubjectBreakdown:
    subject: str
    score: float = 0.0
    correct: int = 0
    incorrect: int = 0
    unattempted: int = 0
    time_spent: int = 0
    accuracy: float = 0.0


@dataclass
class ScoringResult:
    total_score: float
    correct: int
    incorrect: int
    unattempted: int
    accuracy: float
    total_time: int
    percentile: float
    rank: int
    subjects: list[SubjectBreakdown] = field(default_factory=list)


# ── Building blocks ───────────────────────────────────────────────────────────

def to_decimal(value) -> Decimal:
    """Exact decimal form of a mark value, via its shortest repr for floats."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def classify(question: QuestionKey, response: Optional[ResponseEntry]) -> str:
    """Return 'correct', 'incorrect' or 'unattempted' for one question."""
    if (
        response is None
        or response.status != ANSWERED
        or response.selected_answer is None
    ):
        return UNATTEMPTED
    if response.selected_answer == question.correct_answer:
        return CORRECT
    return INCORRECT


def marks_for(question: QuestionKey, outcome: str) -> Decimal:
    if outcome == CORRECT:
        return to_decimal(question.marks)
    if outcome == INCORRECT:
        return -to_decimal(question.negative_marks)
    return Decimal(0)


def accuracy(correct: int, incorrect: int) -> float:
    """Percentage of attempted questions answered correctly; 0 when none attempted."""
    attempted = correct + incorrect
    if attempted == 0:
        return 0.0
    return correct / attempted * 100


def lookup_percentile(score, thresholds: Iterable[PercentileThreshold]) -> float:
    """Highest satisfied floor: the percentile of the largest threshold <= score.

    Thresholds may arrive in any order. A score below every threshold, or an
    empty table, maps to 0. Comparison is done on exact decimals so that a
    score of 0.7 + 0.1 meets a 0.8 threshold.
    """
    score = to_decimal(score)
    ordered = sorted(thresholds, key=lambda t: to_decimal(t.marks_threshold), reverse=True)
    for row in ordered:
        if score >= to_decimal(row.marks_threshold):
            return row.percentile
    return 0.0


def compute_rank(score, prior_scores: Iterable[float]) -> int:
    """1 + number of completed scores strictly above ``score``.

    Equal scores share a rank. Ranks of earlier attempts are not revisited.
    """
    score = to_decimal(score)
    return 1 + sum(
        1 for other in prior_scores
        if other is not None and to_decimal(other) > score
    )


# ── Engine ────────────────────────────────────────────────────────────────────

def score_attempt(
    questions: Iterable[QuestionKey],
    responses: Iterable[ResponseEntry],
    thresholds: Iterable[PercentileThreshold] = (),
    prior_scores: Iterable[float] = (),
) -> ScoringResult:
    """Score one attempt.

    ``questions`` is the full bank of the attempt's test; every question is
    classified whether or not a response exists. ``responses`` belong to this
    attempt only (at most one per question). ``prior_scores`` are the total
    scores of the other completed attempts on the same test.

    Marks are summed as decimals and handed back as floats, so 0.1 + 0.2
    comes out as 0.3 for storage, percentile lookup and rank.
    """
    by_question = {r.question_id: r for r in responses}
    subjects: dict[str, SubjectBreakdown] = {}
    subject_scores: dict[str, Decimal] = {}

    total_score = Decimal(0)
    correct = incorrect = unattempted = 0
    total_time = 0

    for question in questions:
        response = by_question.get(question.id)
        outcome  = classify(question, response)
        delta    = marks_for(question, outcome)
        spent    = response.time_spent if response is not None else 0

        bucket = subjects.setdefault(question.subject, SubjectBreakdown(question.subject))
        subject_scores[question.subject] = subject_scores.get(question.subject, Decimal(0)) + delta
        bucket.time_spent += spent
        total_score       += delta
        total_time        += spent

        if outcome == CORRECT:
            correct += 1
            bucket.correct += 1
        elif outcome == INCORRECT:
            incorrect += 1
            bucket.incorrect += 1
        else:
            unattempted += 1
            bucket.unattempted += 1

    for name, bucket in subjects.items():
        bucket.score = float(subject_scores[name])
        bucket.accuracy = accuracy(bucket.correct, bucket.incorrect)

    return ScoringResult(
        total_score=float(total_score),
        correct=correct,
        incorrect=incorrect,
        unattempted=unattempted,
        accuracy=accuracy(correct, incorrect),
        total_time=total_time,
        percentile=lookup_percentile(total_score, thresholds),
        rank=compute_rank(total_score, prior_scores),
        subjects=list(subjects.values()),
    )
