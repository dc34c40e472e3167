import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("EMAIL_ENABLED", "false")
os.environ.setdefault("REDIS_HOST", "localhost")
os.environ.setdefault("GOOGLE_TRANSLATE_API_KEY", "")

import fnmatch
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# FORCE model registration
import techconnect.db.models  # noqa
from techconnect.db.models import Company, Project, User
from techconnect.db.session import Base, get_db
from techconnect.utils import cache
from techconnect.utils.security import create_access_token, hash_password

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite needs explicit BEGIN for SAVEPOINT to behave
@event.listens_for(engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

PROPOSAL = (
    "We will deliver a responsive web platform with a React front end and a FastAPI back end, "
    "including an admin dashboard and JazzCash checkout."
)


class InMemoryRedis:
    """The subset of the redis client the cache helpers use"""

    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value

    def keys(self, pattern):
        return [k for k in self.store if fnmatch.fnmatch(k, pattern)]

    def delete(self, *keys):
        return sum(1 for k in keys if self.store.pop(k, None) is not None)

    def ping(self):
        return True


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    fake = InMemoryRedis()
    monkeypatch.setattr(cache, "redis_client", fake)
    return fake


@pytest.fixture(scope="function")
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db):
    from techconnect.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_user(db, role="client", email=None, name=None, password="secret123", **kwargs):
    user = User(
        email=email or f"{role}-{os.urandom(4).hex()}@example.com",
        password_hash=hash_password(password),
        name=name or f"Test {role.title()}",
        role=role,
        **kwargs,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_company(db, owner=None, verification_status="approved", rating=0.0, **kwargs):
    owner = owner or make_user(db, role="company")
    company = Company(
        user_id=owner.id,
        name=kwargs.pop("name", f"Company {os.urandom(3).hex()}"),
        category=kwargs.pop("category", "web"),
        verification_status=verification_status,
        verified=verification_status == "approved",
        rating_average=rating,
        **kwargs,
    )
    db.add(company)
    db.commit()
    db.refresh(company)
    return company


def make_project(db, client=None, status="posted", **kwargs):
    client = client or make_user(db, role="client")
    project = Project(
        client_id=client.id,
        title=kwargs.pop("title", "E-commerce website"),
        description=kwargs.pop("description", "Online store with payments"),
        category=kwargs.pop("category", "web"),
        budget_min=kwargs.pop("budget_min", Decimal("100000")),
        budget_max=kwargs.pop("budget_max", Decimal("500000")),
        status=status,
        **kwargs,
    )
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


def auth_headers(user):
    token = create_access_token({"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


def bid_payload(project_id, **overrides):
    payload = {
        "project_id": str(project_id),
        "amount": "150000",
        "tax_percentage": "0",
        "proposal": PROPOSAL,
        "proposed_timeline": {"value": 2, "unit": "months"},
    }
    payload.update(overrides)
    return payload
