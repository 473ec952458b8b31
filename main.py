"""
Mock Test Platform – FastAPI Backend

Admins upload question-paper PDFs, crop questions out of them as images,
assemble the questions into timed tests and publish a percentile table per
test. Students start an attempt, save a response per question and submit;
the server scores the attempt once (score, accuracy, percentile, rank and a
per-subject breakdown) and serves the analysis for review screens.

One app serves every route. Each request gets its own SQLite connection
through ``database.get_db``; scoring lives in ``scoring.py`` and the attempt
state machine in ``lifecycle.py``.
"""

import logging
import os
import sqlite3
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import lifecycle
import repository as repo
import storage
from database import get_db, init_db, transaction
from errors import ConflictError, MockTestError, NotFoundError, ValidationError
from models import (
    CreateQuestionRequest, CreateTestRequest, CreateUserRequest, CropUploadRequest,
    PercentileTableRequest, QuestionFields, SaveResponseRequest,
    StartSubmissionRequest, SubmitRequest, UpdateTestRequest,
)

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# App setup
# ──────────────────────────────────────────────

def mount_uploads(app: FastAPI):
    """Serve config.UPLOAD_DIR under /uploads, replacing any earlier mount."""
    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    app.router.routes[:] = [r for r in app.router.routes if getattr(r, "name", None) != "uploads"]
    app.mount(storage.PUBLIC_PREFIX, StaticFiles(directory=config.UPLOAD_DIR), name="uploads")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    mount_uploads(app)
    yield


app = FastAPI(title="Mock Test Platform", lifespan=lifespan)


# ──────────────────────────────────────────────
# Error responses  – every error body is {"error": message}
# ──────────────────────────────────────────────

@app.exception_handler(MockTestError)
async def domain_error_handler(request: Request, exc: MockTestError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Validation error", "details": details})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(sqlite3.IntegrityError)
async def integrity_error_handler(request: Request, exc: sqlite3.IntegrityError):
    logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=409, content={"error": "Conflicting data"})


@app.exception_handler(sqlite3.Error)
async def database_error_handler(request: Request, exc: sqlite3.Error):
    logger.exception("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Database error"})


def _found(row: Optional[dict], what: str) -> dict:
    if not row:
        raise NotFoundError(f"{what} not found")
    return row


@app.get("/health")
def health():
    return {"status": "ok"}


# ── Users ─────────────────────────────────────

@app.post("/api/users", status_code=201)
def api_create_user(body: CreateUserRequest, conn: sqlite3.Connection = Depends(get_db)):
    email = body.email.lower().strip()
    if repo.db_get_user_by_email(conn, email):
        raise ConflictError("An account with this email already exists.")
    return repo.db_create_user(conn, body.name.strip(), email)


@app.get("/api/users/{user_id}")
def api_get_user(user_id: int, conn: sqlite3.Connection = Depends(get_db)):
    return _found(repo.db_get_user(conn, user_id), "User")


# ── PDFs ──────────────────────────────────────

@app.post("/api/pdfs/upload", status_code=201)
def api_upload_pdf(
    pdf: UploadFile = File(...),
    page_count: Optional[int] = Form(None, alias="pageCount", ge=0),
    conn: sqlite3.Connection = Depends(get_db),
):
    if not (pdf.filename or "").lower().endswith(".pdf"):
        raise ValidationError("Only PDF files are accepted.")
    data = pdf.file.read()
    if not data:
        raise ValidationError("No file uploaded")
    if len(data) > config.MAX_PDF_BYTES:
        raise ValidationError("PDF exceeds the upload size limit.")

    if page_count is None:
        page_count = storage.count_pdf_pages(data)
    stored_name, file_path = storage.save_pdf(data)
    return repo.db_create_pdf(conn, pdf.filename, stored_name, len(data), page_count, file_path)


@app.get("/api/pdfs")
def api_list_pdfs(conn: sqlite3.Connection = Depends(get_db)):
    return repo.db_list_pdfs(conn)


@app.get("/api/pdfs/{pdf_id}")
def api_get_pdf(pdf_id: int, conn: sqlite3.Connection = Depends(get_db)):
    return _found(repo.db_get_pdf(conn, pdf_id), "PDF")


@app.delete("/api/pdfs/{pdf_id}")
def api_delete_pdf(pdf_id: int, conn: sqlite3.Connection = Depends(get_db)):
    """Delete a PDF with its crops; questions keep their text but lose the image."""
    with transaction(conn):
        pdf = _found(repo.db_get_pdf(conn, pdf_id), "PDF")
        crop_paths = [c["image_path"] for c in repo.db_list_crops(conn, pdf_id)]
        repo.db_delete_pdf(conn, pdf_id)
    for path in [pdf["file_path"], *crop_paths]:
        storage.delete_upload(path)
    return {"success": True}


# ── Crops ─────────────────────────────────────

@app.post("/api/crops/upload", status_code=201)
def api_upload_crop(body: CropUploadRequest, conn: sqlite3.Connection = Depends(get_db)):
    _found(repo.db_get_pdf(conn, body.pdf_id), "PDF")
    image_path = storage.save_crop(body.image_data)
    box = body.crop_data
    return repo.db_create_crop(
        conn, body.pdf_id, body.page_number, box.x, box.y, box.width, box.height, image_path
    )


@app.get("/api/crops")
def api_list_crops(
    pdf_id: Optional[int] = Query(None, alias="pdfId"),
    conn: sqlite3.Connection = Depends(get_db),
):
    return repo.db_list_crops(conn, pdf_id)


@app.get("/api/crops/pdf/{pdf_id}")
def api_list_pdf_crops(pdf_id: int, conn: sqlite3.Connection = Depends(get_db)):
    return repo.db_list_crops(conn, pdf_id)


@app.get("/api/crops/{crop_id}")
def api_get_crop(crop_id: int, conn: sqlite3.Connection = Depends(get_db)):
    return _found(repo.db_get_crop(conn, crop_id), "Crop")


# ── Tests ─────────────────────────────────────

@app.post("/api/tests", status_code=201)
def api_create_test(body: CreateTestRequest, conn: sqlite3.Connection = Depends(get_db)):
    return repo.db_create_test(conn, body.name, body.duration, body.instructions, body.total_marks)


@app.get("/api/tests")
def api_list_tests(conn: sqlite3.Connection = Depends(get_db)):
    return repo.db_list_tests(conn)


@app.get("/api/tests/{test_id}")
def api_get_test(test_id: int, conn: sqlite3.Connection = Depends(get_db)):
    return _found(repo.db_get_test(conn, test_id), "Test")


@app.put("/api/tests/{test_id}")
def api_update_test(test_id: int, body: UpdateTestRequest, conn: sqlite3.Connection = Depends(get_db)):
    with transaction(conn):
        _found(repo.db_get_test(conn, test_id), "Test")
        return repo.db_update_test(
            conn, test_id, body.name, body.duration, body.instructions, body.is_published
        )


@app.delete("/api/tests/{test_id}")
def api_delete_test(test_id: int, conn: sqlite3.Connection = Depends(get_db)):
    """Delete a test with its questions and percentile table.

    Tests that already have attempts are kept; attempts are never deleted here.
    """
    with transaction(conn):
        _found(repo.db_get_test(conn, test_id), "Test")
        if repo.db_count_submissions_for_test(conn, test_id):
            raise ConflictError("Test has submissions and cannot be deleted")
        repo.db_delete_test(conn, test_id)
    return {"success": True}


# ── Questions ─────────────────────────────────

@app.post("/api/questions", status_code=201)
def api_create_question(body: CreateQuestionRequest, conn: sqlite3.Connection = Depends(get_db)):
    with transaction(conn):
        _found(repo.db_get_test(conn, body.test_id), "Test")
        if body.crop_id is not None:
            _found(repo.db_get_crop(conn, body.crop_id), "Crop")
        return repo.db_create_question(conn, body.model_dump())


@app.get("/api/questions")
def api_list_questions(
    test_id: Optional[int] = Query(None, alias="testId"),
    conn: sqlite3.Connection = Depends(get_db),
):
    if test_id is not None:
        return repo.db_list_questions_by_test(conn, test_id)
    return repo.db_list_questions(conn)


@app.get("/api/questions/test/{test_id}")
def api_list_test_questions(test_id: int, conn: sqlite3.Connection = Depends(get_db)):
    return repo.db_list_questions_by_test(conn, test_id)


@app.get("/api/questions/{question_id}")
def api_get_question(question_id: int, conn: sqlite3.Connection = Depends(get_db)):
    return _found(repo.db_get_question(conn, question_id), "Question")


@app.put("/api/questions/{question_id}")
def api_update_question(
    question_id: int,
    body: QuestionFields,
    conn: sqlite3.Connection = Depends(get_db),
):
    """Edit a question. Once any attempt has answered it, it is frozen."""
    with transaction(conn):
        _found(repo.db_get_question(conn, question_id), "Question")
        if repo.db_question_has_responses(conn, question_id):
            raise ConflictError("Question already has responses and cannot be changed")
        return repo.db_update_question(conn, question_id, body.model_dump())


# ── Percentile tables ─────────────────────────

@app.post("/api/percentile-mappings")
def api_replace_percentiles(body: PercentileTableRequest, conn: sqlite3.Connection = Depends(get_db)):
    with transaction(conn):
        _found(repo.db_get_test(conn, body.test_id), "Test")
        repo.db_replace_percentile_thresholds(
            conn, body.test_id, [(m.marks_threshold, m.percentile) for m in body.mappings]
        )
    return {"success": True}


@app.get("/api/percentile-mappings/{test_id}")
def api_list_percentiles(test_id: int, conn: sqlite3.Connection = Depends(get_db)):
    return repo.db_list_percentile_thresholds(conn, test_id)


# ── Submissions and responses ─────────────────

@app.post("/api/submissions/start", status_code=201)
def api_start_submission(
    body: StartSubmissionRequest,
    conn: sqlite3.Connection = Depends(get_db),
):
    user_id = body.user_id if body.user_id is not None else config.DEFAULT_USER_ID
    return lifecycle.start_attempt(conn, body.test_id, user_id)


@app.post("/api/responses")
def api_save_response(body: SaveResponseRequest, conn: sqlite3.Connection = Depends(get_db)):
    return lifecycle.record_response(
        conn,
        body.submission_id,
        body.question_id,
        body.selected_answer,
        body.time_spent,
        body.status,
    )


@app.get("/api/responses/{submission_id}")
def api_list_responses(submission_id: int, conn: sqlite3.Connection = Depends(get_db)):
    _found(repo.db_get_submission(conn, submission_id), "Submission")
    return repo.db_list_responses_by_submission(conn, submission_id)


@app.post("/api/submissions/submit")
def api_submit(body: SubmitRequest, conn: sqlite3.Connection = Depends(get_db)):
    return lifecycle.submit_attempt(conn, body.submission_id)


@app.post("/api/submissions/{submission_id}/submit")
def api_submit_by_id(submission_id: int, conn: sqlite3.Connection = Depends(get_db)):
    return lifecycle.submit_attempt(conn, submission_id)


@app.get("/api/submissions/{submission_id}")
def api_get_submission(submission_id: int, conn: sqlite3.Connection = Depends(get_db)):
    return _found(repo.db_get_submission_with_test(conn, submission_id), "Submission")


@app.get("/api/analysis/{submission_id}")
def api_get_analysis(submission_id: int, conn: sqlite3.Connection = Depends(get_db)):
    return lifecycle.get_analysis(conn, submission_id)


# ──────────────────────────────────────────────
# Local dev entry-point
# ──────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
