"""
Shared fixtures for the portal tests.

Settings are read from the environment at import time, so they are fixed here
before the application is imported.
"""

import io
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["WEBHOOK_URL"] = ""

import pytest
from fastapi.testclient import TestClient
from PyPDF2 import PdfWriter
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from docportal.utils.database import Base, enforce_sqlite_foreign_keys, get_db
from docportal.utils.storage import MemoryObjectStorage, get_storage


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enforce_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def storage():
    return MemoryObjectStorage()


@pytest.fixture
def client(session_factory, storage):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


def build_pdf(pages: int = 1) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=72, height=72)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


@pytest.fixture
def pdf_factory():
    return build_pdf


@pytest.fixture
def pdf_bytes():
    return build_pdf()


def signup(client, email, password="correct-horse", **names):
    response = client.post("/api/signup", json={"email": email, "password": password, **names})
    assert response.status_code == 201, response.text
    body = response.json()
    return body["user"], {"Authorization": f"Bearer {body['token']}"}


@pytest.fixture
def signup_user(client):
    return lambda email, **kwargs: signup(client, email, **kwargs)


@pytest.fixture
def alice(client):
    return signup(client, "alice@example.com", firstName="Alice", lastName="Ng")


@pytest.fixture
def bob(client):
    return signup(client, "bob@example.com", firstName="Bob")


@pytest.fixture
def upload(client, pdf_bytes):
    def _upload(headers, filename="report.pdf", category=None, content=None,
                content_type="application/pdf"):
        data = {"category": category} if category is not None else {}
        return client.post(
            "/api/documents/upload",
            headers=headers,
            files={"file": (filename, content if content is not None else pdf_bytes, content_type)},
            data=data,
        )
    return _upload
