import base64
import os

import pytest

import config
import storage

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


@pytest.fixture
def seeded(client):
    """A published two-question test with a percentile table."""
    test = client.post("/api/tests", json={"name": "NEET Mock", "duration": 60}).json()
    q1 = client.post("/api/questions", json={
        "testId": test["id"], "subject": "Biology", "correctAnswer": "A",
        "marks": 4, "negativeMarks": 1, "optionA": "Mitochondria",
    }).json()
    q2 = client.post("/api/questions", json={
        "testId": test["id"], "subject": "Physics", "correctAnswer": "b",
        "marks": 4, "negativeMarks": 1,
    }).json()
    resp = client.post("/api/percentile-mappings", json={
        "testId": test["id"],
        "mappings": [
            {"marksThreshold": 8, "percentile": 99.0},
            {"marksThreshold": 3, "percentile": 70.0},
        ],
    })
    assert resp.status_code == 200
    return test, q1, q2


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_full_attempt_flow(client, seeded):
    test, q1, q2 = seeded
    assert q2["correct_answer"] == "B"

    started = client.post("/api/submissions/start", json={"testId": test["id"]})
    assert started.status_code == 201
    submission = started.json()
    assert submission["user_id"] == config.DEFAULT_USER_ID

    for question, key, secs in ((q1, "A", 30), (q2, "C", 45)):
        resp = client.post("/api/responses", json={
            "submissionId": submission["id"], "questionId": question["id"],
            "selectedAnswer": key, "timeSpent": secs, "status": "answered",
        })
        assert resp.status_code == 200
        assert resp.json()["selected_answer"] == key

    resp = client.post("/api/submissions/submit", json={"submissionId": submission["id"]})
    assert resp.status_code == 200
    result = resp.json()
    assert result["status"] == "completed"
    assert result["total_score"] == 3
    assert result["correct_count"] == 1
    assert result["incorrect_count"] == 1
    assert result["unattempted_count"] == 0
    assert result["accuracy"] == pytest.approx(50.0)
    assert result["percentile"] == 70.0
    assert result["rank"] == 1
    assert result["total_time"] == 75

    fetched = client.get(f"/api/submissions/{submission['id']}").json()
    assert fetched["test_name"] == "NEET Mock"
    assert fetched["duration"] == 60

    analysis = client.get(f"/api/analysis/{submission['id']}").json()
    assert set(analysis) == {"submission", "subjectAnalysis", "questions"}
    subjects = {row["subject"]: row for row in analysis["subjectAnalysis"]}
    assert subjects["Biology"]["score"] == 4
    assert subjects["Physics"]["score"] == -1
    assert [q["selected_answer"] for q in analysis["questions"]] == ["A", "C"]


def test_submit_by_path_and_resubmit(client, seeded):
    test, q1, _ = seeded
    submission = client.post("/api/submissions/start", json={"testId": test["id"]}).json()
    client.post("/api/responses", json={
        "submissionId": submission["id"], "questionId": q1["id"],
        "selectedAnswer": "A", "timeSpent": 5, "status": "answered",
    })

    first = client.post(f"/api/submissions/{submission['id']}/submit")
    second = client.post(f"/api/submissions/{submission['id']}/submit")

    assert first.status_code == second.status_code == 200
    assert first.json() == second.json()
    assert len(client.get(f"/api/analysis/{submission['id']}").json()["subjectAnalysis"]) == 2

    late = client.post("/api/responses", json={
        "submissionId": submission["id"], "questionId": q1["id"],
        "selectedAnswer": "B", "status": "answered",
    })
    assert late.status_code == 409


def test_submit_unknown_submission(client):
    resp = client.post("/api/submissions/submit", json={"submissionId": 12345})
    assert resp.status_code == 404
    assert resp.json() == {"error": "Submission not found"}


def test_validation_errors_are_400(client, seeded):
    test, q1, _ = seeded
    submission = client.post("/api/submissions/start", json={"testId": test["id"]}).json()

    missing = client.post("/api/submissions/submit", json={})
    assert missing.status_code == 400
    assert missing.json()["error"] == "Validation error"

    bad_status = client.post("/api/responses", json={
        "submissionId": submission["id"], "questionId": q1["id"],
        "selectedAnswer": "A", "status": "maybe",
    })
    assert bad_status.status_code == 400

    bad_key = client.post("/api/responses", json={
        "submissionId": submission["id"], "questionId": q1["id"],
        "selectedAnswer": "E", "status": "answered",
    })
    assert bad_key.status_code == 400

    negative_marks = client.post("/api/questions", json={
        "testId": test["id"], "subject": "Biology", "correctAnswer": "A",
        "marks": 4, "negativeMarks": -1,
    })
    assert negative_marks.status_code == 400

    no_marks = client.post("/api/questions", json={
        "testId": test["id"], "subject": "Biology", "correctAnswer": "A",
    })
    assert no_marks.status_code == 400

    duplicate_thresholds = client.post("/api/percentile-mappings", json={
        "testId": test["id"],
        "mappings": [{"marksThreshold": 5, "percentile": 50}, {"marksThreshold": 5, "percentile": 60}],
    })
    assert duplicate_thresholds.status_code == 400


def test_percentile_table_is_replaced(client, seeded):
    test, _, _ = seeded
    client.post("/api/percentile-mappings", json={
        "testId": test["id"], "mappings": [{"marksThreshold": 1, "percentile": 10}],
    })

    rows = client.get(f"/api/percentile-mappings/{test['id']}").json()

    assert [(r["marks_threshold"], r["percentile"]) for r in rows] == [(1, 10)]


def test_tests_listing_and_updates(client, seeded):
    test, _, _ = seeded

    listing = client.get("/api/tests").json()
    assert listing[0]["question_count"] == 2
    assert listing[0]["question_marks"] == 8

    updated = client.put(f"/api/tests/{test['id']}", json={
        "name": "NEET Mock (final)", "duration": 200, "isPublished": True,
    }).json()
    assert updated["name"] == "NEET Mock (final)"
    assert updated["is_published"] == 1

    assert client.get("/api/tests/999").status_code == 404


def test_delete_test_blocked_by_attempts(client, seeded):
    test, _, _ = seeded
    empty = client.post("/api/tests", json={"name": "Scratch"}).json()

    assert client.delete(f"/api/tests/{empty['id']}").json() == {"success": True}
    assert client.get(f"/api/tests/{empty['id']}").status_code == 404

    client.post("/api/submissions/start", json={"testId": test["id"]})
    assert client.delete(f"/api/tests/{test['id']}").status_code == 409


def test_answered_question_is_frozen(client, seeded):
    test, q1, q2 = seeded
    edit = {"subject": "Botany", "correctAnswer": "D", "marks": 4, "negativeMarks": 1}

    assert client.put(f"/api/questions/{q2['id']}", json=edit).json()["subject"] == "Botany"

    submission = client.post("/api/submissions/start", json={"testId": test["id"]}).json()
    client.post("/api/responses", json={
        "submissionId": submission["id"], "questionId": q1["id"],
        "selectedAnswer": "A", "status": "answered",
    })
    assert client.put(f"/api/questions/{q1['id']}", json=edit).status_code == 409


def test_questions_by_test(client, seeded):
    test, q1, q2 = seeded

    by_query = client.get("/api/questions", params={"testId": test["id"]}).json()
    by_path = client.get(f"/api/questions/test/{test['id']}").json()

    assert [q["id"] for q in by_query] == [q["id"] for q in by_path] == [q1["id"], q2["id"]]
    assert client.get("/api/questions/999").status_code == 404


def test_start_for_unknown_test(client):
    resp = client.post("/api/submissions/start", json={"testId": 999})
    assert resp.status_code == 404
    assert resp.json() == {"error": "Test not found"}


def test_user_owns_started_attempt(client, seeded):
    test, _, _ = seeded
    user = client.post("/api/users", json={"name": "Asha", "email": "Asha@Example.com"}).json()
    assert user["email"] == "asha@example.com"
    assert client.get(f"/api/users/{user['id']}").json()["name"] == "Asha"

    duplicate = client.post("/api/users", json={"name": "A", "email": "asha@example.com"})
    assert duplicate.status_code == 409

    started = client.post("/api/submissions/start", json={"testId": test["id"], "userId": user["id"]})
    assert started.json()["user_id"] == user["id"]

    unknown = client.post("/api/submissions/start", json={"testId": test["id"], "userId": 999})
    assert unknown.status_code == 404
    assert client.post("/api/auth/login", json={"email": "asha@example.com"}).status_code == 404


def test_pdf_and_crop_upload(client):
    files = {"pdf": ("paper.pdf", b"%PDF-1.4 fake", "application/pdf")}
    pdf = client.post("/api/pdfs/upload", files=files, data={"pageCount": "12"})
    assert pdf.status_code == 201
    pdf = pdf.json()
    assert pdf["original_name"] == "paper.pdf"
    assert pdf["page_count"] == 12
    assert pdf["file_path"].startswith("/uploads/pdfs/")

    image = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()
    crop = client.post("/api/crops/upload", json={
        "imageData": image, "pdfId": pdf["id"], "pageNumber": 3,
        "cropData": {"x": 10, "y": 20, "width": 300, "height": 120},
    })
    assert crop.status_code == 201
    crop = crop.json()
    assert crop["crop_width"] == 300
    stored = os.path.join(config.UPLOAD_DIR, "crops", crop["image_path"].rsplit("/", 1)[1])
    with open(stored, "rb") as fh:
        assert fh.read() == PNG_BYTES

    assert [c["id"] for c in client.get(f"/api/crops/pdf/{pdf['id']}").json()] == [crop["id"]]
    assert [c["id"] for c in client.get("/api/crops", params={"pdfId": pdf["id"]}).json()] == [crop["id"]]

    assert client.delete(f"/api/pdfs/{pdf['id']}").json() == {"success": True}
    assert client.get(f"/api/crops/{crop['id']}").status_code == 404
    assert not os.path.exists(stored)


def test_pdf_upload_rejects_other_files(client):
    files = {"pdf": ("notes.txt", b"hello", "text/plain")}
    resp = client.post("/api/pdfs/upload", files=files)
    assert resp.status_code == 400


def test_pdf_page_count_from_file(client, monkeypatch):
    monkeypatch.setattr(storage, "count_pdf_pages", lambda data: 7)
    files = {"pdf": ("paper.pdf", b"%PDF-1.4 fake", "application/pdf")}

    assert client.post("/api/pdfs/upload", files=files).json()["page_count"] == 7


def test_crop_requires_base64(client):
    files = {"pdf": ("paper.pdf", b"%PDF-1.4 fake", "application/pdf")}
    pdf = client.post("/api/pdfs/upload", files=files, data={"pageCount": "1"}).json()

    resp = client.post("/api/crops/upload", json={
        "imageData": "not base64!!", "pdfId": pdf["id"], "pageNumber": 1,
        "cropData": {"x": 0, "y": 0, "width": 1, "height": 1},
    })
    assert resp.status_code == 400


def _upload_crop(client):
    files = {"pdf": ("paper.pdf", b"%PDF-1.4 fake", "application/pdf")}
    pdf = client.post("/api/pdfs/upload", files=files, data={"pageCount": "1"}).json()
    image = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()
    return client.post("/api/crops/upload", json={
        "imageData": image, "pdfId": pdf["id"], "pageNumber": 1,
        "cropData": {"x": 0, "y": 0, "width": 5, "height": 5},
    }).json()


def test_uploads_follow_configured_dir_on_restart(db_path, tmp_path, monkeypatch):
    from fastapi.testclient import TestClient

    import main

    with TestClient(main.app) as first:
        crop = _upload_crop(first)
        assert first.get(crop["image_path"]).content == PNG_BYTES

    moved = tmp_path / "moved-uploads"
    monkeypatch.setattr(config, "UPLOAD_DIR", str(moved))
    with TestClient(main.app) as second:
        crop = _upload_crop(second)
        served = second.get(crop["image_path"])

    assert served.status_code == 200
    assert served.content == PNG_BYTES
    assert (moved / "crops" / crop["image_path"].rsplit("/", 1)[1]).exists()


def test_pdf_upload_route_is_sync(client):
    import inspect

    import main

    # sync routes run in the threadpool
    assert not inspect.iscoroutinefunction(main.api_upload_pdf)
