import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import config
import repository as repo
from database import get_connection, init_db


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = str(tmp_path / "mocktest.db")
    monkeypatch.setattr(config, "DB_PATH", path)
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "uploads"))
    return path


@pytest.fixture
def conn(db_path):
    init_db(db_path)
    connection = get_connection(db_path)
    yield connection
    connection.close()


@pytest.fixture
def client(db_path):
    from fastapi.testclient import TestClient

    import main

    with TestClient(main.app) as test_client:
        yield test_client


def add_question(conn, test_id, subject="Physics", correct="A", marks=4.0, negative=1.0):
    return repo.db_create_question(conn, {
        "test_id": test_id,
        "subject": subject,
        "question_type": "mcq",
        "option_a": "1", "option_b": "2", "option_c": "3", "option_d": "4",
        "correct_answer": correct,
        "marks": marks,
        "negative_marks": negative,
    })


@pytest.fixture
def jee_test(conn):
    """Two physics questions and one chemistry question, +4 / -1 each."""
    test = repo.db_create_test(conn, "JEE Mock 1", 180, None, 12)
    questions = [
        add_question(conn, test["id"], "Physics", "A"),
        add_question(conn, test["id"], "Physics", "B"),
        add_question(conn, test["id"], "Chemistry", "C"),
    ]
    return test, questions
