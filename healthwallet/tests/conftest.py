import os
import sys
import tempfile
from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure tests use an in-memory SQLite DB and JSON columns stay generic
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("FORCE_GENERIC_JSON", "1")
os.environ.setdefault("UPLOAD_ROOT", tempfile.mkdtemp(prefix="healthwallet-uploads-"))
os.environ["RECORD_WORKERS"] = "0"
# no provider key: uploads go through the pattern extractor
os.environ["OPENROUTER_API_KEY"] = ""
os.environ.pop("AUTO_APPROVE_CONFIDENCE", None)

# Ensure the project root is on sys.path so `import healthwallet` works when
# running pytest from the repository root.
ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from healthwallet.app import app  # noqa: E402
from healthwallet.db.session import Base, get_db  # noqa: E402
from healthwallet.auth.deps import get_current_user  # noqa: E402
from healthwallet.models.health_record import RecordStatus  # noqa: E402
from healthwallet.services import storage  # noqa: E402
from healthwallet.services.record_pipeline import RecordPipeline  # noqa: E402
from healthwallet.services.repository import RecordRepository  # noqa: E402
from healthwallet.tests.helpers import USER_ID, FakeExtractor, report  # noqa: E402


# In-memory SQLite shared across connections
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def create_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


def _override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = _override_get_db
app.dependency_overrides[get_current_user] = lambda: SimpleNamespace(id=USER_ID, email="u@example.com")

# Background work opens sessions through SessionLocal; point it at the test engine
import healthwallet.db.session as session_mod  # noqa: E402
session_mod.engine = engine
session_mod.SessionLocal = TestingSessionLocal
import healthwallet.models as models_mod  # noqa: E402
models_mod.engine = engine


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    # ensure limiter state fresh each test
    app.state.limiter.reset()
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def file_sessions(tmp_path):
    """Session factory on a file database, for tests that hit it from several threads."""
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'records.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=file_engine)
    yield sessionmaker(bind=file_engine, autocommit=False, autoflush=False)
    file_engine.dispose()


@pytest.fixture
def make_pipeline():
    def _make(extractor=None, auto_approve_confidence=None):
        fake = extractor or FakeExtractor()
        return RecordPipeline(
            session_factory=TestingSessionLocal,
            extractor_factory=lambda: fake,
            auto_approve_confidence=auto_approve_confidence,
        )
    return _make


@pytest.fixture
def make_record(db):
    def _make(text="Vitamin D 24 ng/mL", filename="labs.txt", user_id=USER_ID, **kwargs):
        path, _ = storage.store_local_upload(text.encode("utf-8"), filename)
        return RecordRepository(db).create(
            user_id=user_id,
            file_url=path,
            original_filename=filename,
            **kwargs,
        )
    return _make


@pytest.fixture
def pending_record(make_record, make_pipeline):
    """A record already extracted and waiting for review."""
    def _make(*readings, **kwargs):
        readings = readings or (("Vitamin D", 24, "ng/mL", 0.9), ("LDL", 150, "mg/dL", 0.9), ("HDL", 65, "mg/dL", 0.9))
        record = make_record(**kwargs)
        pipeline = make_pipeline(FakeExtractor([report(*readings)]))
        assert pipeline.claim(record.id)
        assert pipeline.process(record.id) == RecordStatus.PENDING_REVIEW
        return record.id
    return _make
