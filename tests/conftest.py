"""Pytest configuration shared across the suite."""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path
from types import SimpleNamespace

ROOT = Path(__file__).resolve().parents[1]
API_ROOT = ROOT / "services" / "api"
if str(API_ROOT) not in sys.path:
    sys.path.insert(0, str(API_ROOT))

# settings are read once at import time
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.setdefault("UPLOAD_DIR", str(Path(tempfile.gettempdir()) / "fabtrack_test_uploads"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest


class FakeReader:
    """Stands in for Tesseract: hands out queued (text, confidence) pairs or raises queued exceptions."""

    def __init__(self, results=None):
        self.results = list(results or [])
        self.paths = []

    def read(self, path):
        self.paths.append(path)
        assert os.path.exists(path)
        if not self.results:
            return "", 0.0
        item = self.results.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def mapping(field_name, hint="text", x=0, y=0, width=50, height=50):
    return SimpleNamespace(field_name=field_name, x=x, y=y, width=width, height=height, preprocessing_hint=hint)


@pytest.fixture
def db():
    from fabtrack.db import Base, engine, SessionLocal
    import fabtrack.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_machine(db):
    from fabtrack.models import Machine

    def _make(company_id="acme", number="M1", type="single", is_active=True):
        m = Machine(company_id=company_id, machine_number=number, type=type, is_active=is_active)
        db.add(m)
        db.commit()
        return m

    return _make


@pytest.fixture
def make_worker(db):
    from fabtrack.models import Worker

    def _make(company_id="acme", name="Ravi"):
        w = Worker(company_id=company_id, name=name)
        db.add(w)
        db.commit()
        return w

    return _make


@pytest.fixture
def fake_reader():
    return FakeReader()


@pytest.fixture
def client(db, fake_reader, tmp_path, monkeypatch):
    from fastapi.testclient import TestClient

    from fabtrack.config import settings
    from fabtrack.jobs import InlineDispatcher
    from fabtrack.main import app, get_dispatcher

    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    dispatcher = InlineDispatcher(reader=fake_reader)
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def headers(company_id="acme", user_id="u1"):
    return {"X-Company-Id": company_id, "X-User-Id": user_id}
