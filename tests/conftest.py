"""
Shared fixtures: in-memory SQLite mirror, seeded catalog, and a scripted Portal.
"""

import json
import os
import sys
from types import SimpleNamespace

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from portal_sync.database import Base
from portal_sync import models  # noqa: F401
from portal_sync.models import Amenity, Building, Unit, User
from portal_sync.services.portal_client import PortalClient
from portal_sync.services.portal_session import PortalSessionStore, SessionContext

PORTAL_BASE = "https://portal.test/ords/portal/"
IDENTITY_EMAIL = "ops@example.com"


class FakePortal:
    """
    Scripted Portal behind an httpx.MockTransport.

    Routes are keyed by (METHOD, path relative to the base). Each route holds a
    list of responses consumed in order; the last one repeats. A response is a
    (status_code, json_body) tuple or an exception instance to raise.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def on(self, method, path, *responses):
        self.routes[(method.upper(), path)] = list(responses)
        return self

    def count(self, method, path):
        return sum(1 for m, p, _ in self.calls if m == method.upper() and p == path)

    def bodies(self, method, path):
        return [body for m, p, body in self.calls if m == method.upper() and p == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len(httpx.URL(PORTAL_BASE).path):]
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, path, body))

        responses = self.routes.get((request.method, path))
        if not responses:
            return httpx.Response(404, json={"message": "No route"})

        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        status_code, payload = response
        if isinstance(payload, (dict, list)):
            return httpx.Response(status_code, json=payload)
        return httpx.Response(status_code, content=payload or b"")

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def catalog(db):
    """One mapped building/unit/amenity, one unmapped unit, and a resident"""
    building = Building(name="Torre Norte", portal_id=10)
    db.add(building)
    db.flush()

    unit = Unit(building_id=building.id, unit_number="4B", portal_id=101)
    unmapped_unit = Unit(building_id=building.id, unit_number="9Z", portal_id=None)
    amenity = Amenity(building_id=building.id, name_es="Quincho", portal_id=201)
    db.add_all([unit, unmapped_unit, amenity])
    db.flush()

    user = User(email="resident@example.com", full_name="Ana Resident", unit_id=unit.id, building_id=building.id)
    db.add(user)
    db.commit()

    return SimpleNamespace(
        building=building,
        unit=unit,
        unmapped_unit=unmapped_unit,
        amenity=amenity,
        user=user,
    )


@pytest.fixture
def portal():
    return FakePortal()


@pytest.fixture
def client(portal):
    return PortalClient(base_url=PORTAL_BASE, timeout=5, transport=portal.transport)


@pytest.fixture
def session(db):
    """SessionContext with no credential yet, backed by the DB"""
    return SessionContext(store=PortalSessionStore(db), identity_email=IDENTITY_EMAIL)


def login_ok(token="tok-1", role="Inquilino", token_type="Bearer"):
    return (200, {"status": "ok", "data": {"token": token, "tokenType": token_type, "rol": role}})
