"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, rebuilt for every test
- A seeded tenant layout (two companies, departments, users of every role)
- JWT minting for authenticated requests
- HTTPX AsyncClient over the ASGI app
- Fake websocket sessions registered in the connection manager
"""
import json
import os
from dataclasses import dataclass
from typing import AsyncGenerator, Generator

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SKIP_DB_INIT"] = "1"
os.environ["SKIP_SCHEDULER"] = "1"

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

from main import app
from collabnotes.core.config import settings
from collabnotes.core.permissions import Role
from collabnotes.core.security import create_access_token
from collabnotes.db.database import Base, SessionLocal, engine, get_db
from collabnotes.models.company import Company, Department
from collabnotes.models.user import User
from collabnotes.websocket.manager import manager


# =============================================================================
# Database
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(path))
    return path


@pytest.fixture(autouse=True)
def reset_manager():
    manager.reset()
    yield
    manager.reset()


# =============================================================================
# Tenants and users
# =============================================================================

@dataclass
class World:
    company: Company
    other_company: Company
    dept: Department
    dept2: Department
    alice: User
    bob: User
    carol: User
    admin: User
    root: User
    outsider: User


def make_user(db: Session, name: str, company: Company, dept: Department | None, role: Role = Role.USER,
              department_role: str | None = None) -> User:
    user = User(
        name=name,
        email=f"{name.lower()}@{company.name.lower()}.test",
        company_id=company.id,
        department_id=dept.id if dept else None,
        role=role.value,
        department_role=department_role,
    )
    db.add(user)
    db.flush()
    return user


@pytest.fixture(scope="function")
def world(db: Session) -> World:
    company = Company(name="Acme")
    other = Company(name="Globex")
    db.add_all([company, other])
    db.flush()

    dept = Department(company_id=company.id, name="Engineering")
    dept2 = Department(company_id=company.id, name="Sales")
    other_dept = Department(company_id=other.id, name="Engineering")
    db.add_all([dept, dept2, other_dept])
    db.flush()

    w = World(
        company=company,
        other_company=other,
        dept=dept,
        dept2=dept2,
        alice=make_user(db, "Alice", company, dept),
        bob=make_user(db, "Bob", company, dept),
        carol=make_user(db, "Carol", company, dept2),
        admin=make_user(db, "Admin", company, dept, Role.ADMIN),
        root=make_user(db, "Root", company, None, Role.SUPER_ADMIN),
        outsider=make_user(db, "Outsider", other, other_dept),
    )
    db.commit()
    return w


# =============================================================================
# Auth
# =============================================================================

def token_for(user: User) -> str:
    return create_access_token({"user_id": user.id})


@pytest.fixture
def auth():
    def headers(user: User) -> dict:
        return {"Authorization": f"Bearer {token_for(user)}"}
    return headers


# =============================================================================
# Clients
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()


# =============================================================================
# Realtime
# =============================================================================

class FakeSocket:
    """Stands in for a connected WebSocket; records every frame sent to it."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    async def send_text(self, text: str):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))

    def of_type(self, event_type: str) -> list[dict]:
        return [f for f in self.sent if f["type"] == event_type]

    def drain(self) -> list[dict]:
        frames, self.sent = self.sent, []
        return frames


@pytest.fixture
def connect():
    def _connect(user: User, fail: bool = False) -> FakeSocket:
        sock = FakeSocket(fail=fail)
        manager.connect(user.id, user.company_id, sock)
        return sock
    return _connect
