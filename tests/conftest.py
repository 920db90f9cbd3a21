import os
import shutil
import tempfile

_TEST_ROOT = tempfile.mkdtemp(prefix="marketindex-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_ROOT, 'test.db')}"
os.environ["UPLOAD_DIRECTORY"] = os.path.join(_TEST_ROOT, "uploads")
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key"
for _key in ("R2_ENDPOINT", "R2_ACCESS_KEY_ID", "R2_SECRET_ACCESS_KEY", "R2_PUBLIC_URL"):
    os.environ[_key] = ""

import pytest

from marketindex.core.storage import MediaCategory, MediaStorage
from marketindex.db.base import Base
from marketindex.db.session import SessionLocal, engine
from marketindex.modules.notifications.services.dispatcher import EventDispatcher
from marketindex.modules.relationships.services.relationship import accept_relationship, request_relationship
from marketindex.modules.user_management.services.user import create_user_profile


@pytest.fixture(autouse=True)
def _fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage(tmp_path):
    return MediaStorage(local_root=str(tmp_path / "media"))


@pytest.fixture
def dispatcher():
    return EventDispatcher()


@pytest.fixture
def make_user(db):
    def _make(name: str):
        return create_user_profile(db, firebase_uid=f"uid-{name}", email=f"{name}@example.com")
    return _make


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob")


@pytest.fixture
def carol(make_user):
    return make_user("carol")


@pytest.fixture
def make_friends(db, dispatcher):
    def _make(user_a, user_b):
        relationship = request_relationship(db, user_a.id, user_b.id, dispatcher=dispatcher)
        return accept_relationship(db, relationship.id, user_b.id, dispatcher=dispatcher)
    return _make


@pytest.fixture
def upload(storage):
    def _upload(owner, category=MediaCategory.TIPS, data=b"chart-bytes"):
        return storage.bind_media(data, owner.id, category, content_type="image/png")
    return _upload


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    shutil.rmtree(_TEST_ROOT, ignore_errors=True)
