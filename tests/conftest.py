import os
import tempfile
import threading

os.environ["CAREER_DB_PATH"] = os.path.join(tempfile.mkdtemp(prefix="careercoach-tests-"), "import.db")
os.environ["AUTH_TOKEN_SECRET"] = "test-secret"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("RENDER_POSTGRESQL_URL", None)
os.environ["OPENAI_API_KEY"] = ""

import pytest

from backend import settings
from backend.auth import sync_user
from backend.db import db_connection, init_db


SAMPLE_INSIGHTS = {
    "salaryRanges": [
        {"role": "Software Engineer", "min": 90000, "max": 160000, "median": 120000, "location": "US"},
        {"role": "Staff Engineer", "min": 170000, "max": 260000, "median": 210000, "location": "US"},
    ],
    "growthRate": 12.5,
    "demandLevel": "High",
    "topSkills": ["Python", "Go", "Kubernetes"],
    "marketOutlook": "Positive",
    "keyTrends": ["AI tooling", "Platform engineering"],
    "recommendedSkills": ["Rust", "LLM integration"],
}


class FakeGenerator:
    def __init__(self, payload=None, error=None, barrier=None):
        self.payload = SAMPLE_INSIGHTS if payload is None else payload
        self.error = error
        self.barrier = barrier
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, industry):
        with self._lock:
            self.calls.append(industry)
            call_number = len(self.calls)
        if self.barrier is not None:
            self.barrier.wait(timeout=5)
        if self.error is not None:
            raise self.error
        payload = dict(self.payload)
        payload["growthRate"] = float(payload.get("growthRate", 0)) + call_number
        return payload


@pytest.fixture(autouse=True)
def database(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DB_BACKEND", "sqlite")
    monkeypatch.setattr(settings, "DB_PATH", str(tmp_path / "careercoach.db"))
    init_db()
    return settings.DB_PATH


@pytest.fixture
def make_user():
    def _make(identity="user_1", email=None, name="Test User"):
        return sync_user(identity, email or f"{identity}@example.com", name)

    return _make


@pytest.fixture
def fake_generator():
    return FakeGenerator()


def set_user_industry(identity, industry):
    connection = db_connection()
    try:
        connection.execute("UPDATE users SET industry = ? WHERE clerk_user_id = ?", (industry, identity))
        connection.commit()
    finally:
        connection.close()


def count_insights(industry):
    connection = db_connection()
    try:
        row = connection.execute(
            "SELECT COUNT(*) AS total FROM industry_insights WHERE industry = ?",
            (industry,),
        ).fetchone()
    finally:
        connection.close()
    return int(row["total"]) if row else 0


def run_sql(statement, params=()):
    connection = db_connection()
    try:
        connection.execute(statement, params)
        connection.commit()
    finally:
        connection.close()
