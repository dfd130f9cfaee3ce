import os
os.environ["TESTING"] = "1"
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path
import uuid

sys.path.append(str(Path(__file__).resolve().parents[2]))

from exhibits.main import app
from exhibits.database import Base, get_db
from exhibits import models
from exhibits.auth import create_access_token
from exhibits.search import SearchIndex, set_search_index
from exhibits.services.lifecycle import LifecycleCoordinator
from exhibits.services.republish import RepublishScheduler, run_republish_job

SQLALCHEMY_DATABASE_URL = os.environ["DATABASE_URL"]
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


class FakeSearchIndex(SearchIndex):
    """In-memory index that records every call and can be told to fail."""

    def __init__(self):
        super().__init__(client=None, index_name="exhibits-test")
        self.documents = {}
        self.calls = []
        self.fail_index = False
        self.fail_delete = False

    @property
    def enabled(self):
        return True

    def index_document(self, doc_id, document):
        self.calls.append(("index", str(doc_id)))
        if self.fail_index:
            return False
        self.documents[str(doc_id)] = document
        return True

    def delete_document(self, doc_id):
        self.calls.append(("delete", str(doc_id)))
        if self.fail_delete:
            return False
        self.documents.pop(str(doc_id), None)
        return True

    def get_document(self, doc_id):
        return self.documents.get(str(doc_id))


class FakeQueue:
    """Collects republish dispatches instead of sending them to a broker."""

    def __init__(self):
        self.dispatched = []

    def __call__(self, job_id, token, countdown):
        self.dispatched.append((job_id, token, countdown))

    def run_all(self, db, index):
        statuses = []
        while self.dispatched:
            job_id, token, _ = self.dispatched.pop(0)
            statuses.append(run_republish_job(db, uuid.UUID(job_id), token, index, dispatcher=self))
        return statuses


@pytest.fixture(autouse=True)
def clean_tables():
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture(autouse=True)
def search_index():
    index = FakeSearchIndex()
    set_search_index(index)
    yield index
    set_search_index(None)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory():
    """Independent sessions on the shared test database, one per worker thread."""
    return TestingSessionLocal


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def touched():
    return []


@pytest.fixture
def make_coordinator(db, search_index, queue, touched):
    """
    purpose: coordinator wired to the fake index, fake republish queue and a touch recorder
    outputs: factory(kind) -> LifecycleCoordinator
    """

    def factory(kind):
        scheduler = RepublishScheduler(db, dispatcher=queue, delay=5)
        return LifecycleCoordinator(db, kind, index=search_index, scheduler=scheduler, touch=touched.append)

    return factory


@pytest.fixture
def make_user(db):
    def factory(*, is_admin=False, email=None):
        user = models.User(
            email=email or f"user-{uuid.uuid4()}@example.com",
            full_name="Test Editor",
            is_admin=is_admin,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return factory


@pytest.fixture
def make_exhibit(db):
    def factory(*, published=False, title="Exhibit"):
        exhibit = models.Exhibit(uuid=uuid.uuid4(), title=title, is_published=published)
        db.add(exhibit)
        db.commit()
        db.refresh(exhibit)
        return exhibit

    return factory


@pytest.fixture
def auth_headers(make_user):
    """
    purpose: bearer headers for a freshly created editor (or admin)
    outputs: factory(is_admin=False) -> (headers dict, models.User)
    """

    def factory(*, is_admin=False):
        user = make_user(is_admin=is_admin)
        token = create_access_token({"sub": user.email})
        return {"Authorization": f"Bearer {token}"}, user

    return factory
