import os
os.environ["TESTING"] = "1"
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path
from dataclasses import dataclass, field

import tempfile
import uuid

sys.path.append(str(Path(__file__).resolve().parents[2]))

from fleetcheck import models
from fleetcheck.main import app
from fleetcheck.database import Base, get_db
from fleetcheck.errors import EvidenceUploadFailed
from fleetcheck.storage import LocalEvidenceGateway, get_evidence_gateway

_DB_DIR = tempfile.mkdtemp(prefix="fleetcheck-tests-")
SQLALCHEMY_DATABASE_URL = f"sqlite:///{_DB_DIR}/test.db"
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


class FailingEvidenceGateway:
    """Gateway double whose uploads always fail like a dropped connection."""

    def __init__(self):
        self.attempts = 0

    def put(self, namespace, name, data, content_type="application/octet-stream"):
        self.attempts += 1
        raise EvidenceUploadFailed("Evidence upload failed: connection reset by peer")

    def signed_url(self, pointer, ttl_seconds=120):
        raise AssertionError("nothing was stored")


@dataclass
class Fleet:
    organization_id: uuid.UUID
    unit_id: uuid.UUID
    template_id: uuid.UUID
    item_ids: list[uuid.UUID] = field(default_factory=list)


def seed_fleet(
    db,
    *,
    unit_timezone: str = "America/Los_Angeles",
    item_count: int = 5,
    name: str = "Truck 12",
) -> Fleet:
    org = models.Organization(name=f"Haulage {uuid.uuid4().hex[:6]}")
    db.add(org)
    db.flush()
    unit = models.Unit(organization_id=org.id, name=name, license_plate="7ABC123", timezone=unit_timezone)
    template = models.ChecklistTemplate(organization_id=org.id, name="Daily Pre-Trip Inspection")
    db.add_all([unit, template])
    db.flush()
    items = [
        models.TemplateItem(template_id=template.id, label=f"Check {index}", sort_order=index)
        for index in range(item_count)
    ]
    db.add_all(items)
    db.commit()
    return Fleet(
        organization_id=org.id,
        unit_id=unit.id,
        template_id=template.id,
        item_ids=[item.id for item in items],
    )


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture(autouse=True)
def evidence_gateway(tmp_path):
    d = tmp_path / "uploads"
    d.mkdir()
    os.environ["UPLOAD_DIR"] = str(d)
    gateway = LocalEvidenceGateway(str(d))
    app.dependency_overrides[get_evidence_gateway] = lambda: gateway
    yield gateway
    app.dependency_overrides.pop(get_evidence_gateway, None)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fleet(db):
    return seed_fleet(db)


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def actor_headers(actor_id: uuid.UUID | None = None):
    """
    fleetcheck: purpose: build the forwarded-actor header the fronting app supplies
    fleetcheck: outputs: tuple(headers dict, actor UUID)
    """

    actor = actor_id or uuid.uuid4()
    return {"X-Actor-Id": str(actor)}, actor
