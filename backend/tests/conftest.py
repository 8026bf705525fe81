# =============================================================================
# TEST CONFIGURATION
# =============================================================================
# Shared fixtures: in-memory database, seeded users, recording hub and mailer
# =============================================================================

import os
import tempfile

# Settings are cached on first import, so the environment is set up first
_TMP_DIR = tempfile.mkdtemp(prefix="salesorder-tests-")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_DIRECTORY"] = os.path.join(_TMP_DIR, "logs")
os.environ["UPLOAD_DIRECTORY"] = os.path.join(_TMP_DIR, "uploads")

from typing import Any, Dict, Generator, List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config.database import get_db, get_session_factory, init_database
from core.dependencies import get_order_mailer, get_realtime_hub
from core.security import create_access_token
from models.order import Order
from models.user import User, UserRole
from repositories.order_repo import OrderRepository


# =============================================================================
# FAKES
# =============================================================================

class FakeHub:
    """Records emits instead of writing to sockets."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.emits: List[Dict[str, Any]] = []
        self.broadcasts: List[Dict[str, Any]] = []

    async def emit(self, rooms, event, data) -> int:
        if self.fail:
            raise RuntimeError("hub unavailable")
        self.emits.append({"rooms": frozenset(rooms), "event": event, "data": data})
        return len(self.emits)

    async def broadcast(self, event, data) -> int:
        self.broadcasts.append({"event": event, "data": data})
        return 1

    def events(self, name: str) -> List[Dict[str, Any]]:
        return [e for e in self.emits if e["event"] == name]


class FakeMailer:
    """Records order emails; fail=True makes every send raise."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    async def _record(self, kind: str, order, recipient: str, **extra) -> bool:
        if self.fail:
            raise ConnectionError("SMTP server unreachable")
        self.sent.append({"kind": kind, "order_id": order.order_id, "recipient": recipient, **extra})
        return True

    async def send_order_approved(self, order) -> bool:
        return await self._record("approved", order, order.customer_email)

    async def send_dispatch_status(self, order, status: str) -> bool:
        return await self._record("dispatch", order, order.customer_email, status=status)

    async def send_installation_assignment(self, order, recipient: str, subject: str = None) -> bool:
        return await self._record("installation", order, recipient, subject=subject)


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_database(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def users(db) -> Dict[str, User]:
    """admin, a team leader with one member, and an unrelated salesperson."""
    admin = User(username="admin", email="admin@example.com", role=UserRole.ADMIN.value)
    leader = User(username="leader", email="leader@example.com", role=UserRole.SALES.value)
    outsider = User(username="outsider", email="outsider@example.com", role=UserRole.SALES.value)
    db.add_all([admin, leader, outsider])
    db.commit()

    member = User(username="member", email="member@example.com", role=UserRole.SALES.value,
                  assigned_to_leader=leader.id)
    db.add(member)
    db.commit()
    return {"admin": admin, "leader": leader, "member": member, "outsider": outsider}


@pytest.fixture
def make_order(db):
    """Insert an order directly, bypassing validation."""
    repo = OrderRepository(db)

    def _make(created_by: User, **fields) -> Order:
        values = {
            "order_id": repo.next_order_ids()[0],
            "created_by": created_by.id,
            "customername": "Acme Schools",
            "customer_email": "buyer@acme.example",
            "payment_terms": "Credit",
            "products": [{"productType": "IFPD", "qty": 1, "unitPrice": 100, "gst": "18",
                          "brand": "Promark", "modelNos": ["PM-65"], "serialNos": [], "warranty": "3 Years"}],
            "total": 118.0,
        }
        values.update(fields)
        return repo.create(values)

    return _make


@pytest.fixture
def hub() -> FakeHub:
    return FakeHub()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def order_payload() -> Dict[str, Any]:
    return {
        "customername": "Acme Schools",
        "name": "R. Sharma",
        "customerEmail": "buyer@acme.example",
        "contactNo": "9876543210",
        "city": "Patna",
        "state": "Bihar",
        "orderType": "B2C",
        "paymentTerms": "Credit",
        "dispatchFrom": "Patna",
        "products": [{"productType": "Panel", "qty": 2, "unitPrice": 100, "gst": "18"}],
        "freightcs": 50,
        "installation": 20,
    }


# =============================================================================
# CLIENT FIXTURES
# =============================================================================

@pytest.fixture
def client(session_factory, users, hub, mailer) -> Generator[TestClient, None, None]:
    """TestClient with the database, hub and mailer swapped for test doubles."""
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_realtime_hub] = lambda: hub
    app.dependency_overrides[get_order_mailer] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(users):
    """Build bearer headers for one of the seeded users."""
    def _headers(name: str) -> Dict[str, str]:
        token = create_access_token({"sub": users[name].id, "role": users[name].role})
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def failing_hub() -> FakeHub:
    return FakeHub(fail=True)


@pytest.fixture
def failing_mailer() -> FakeMailer:
    return FakeMailer(fail=True)
