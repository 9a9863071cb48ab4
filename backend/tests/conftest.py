import mongomock
import pytest
from fastapi.testclient import TestClient

from database import BillStore
from identity import IdentityLookupError
from ledger import BillLedger
from main import app, get_ledger

CONSULTATION = [{"description": "Consultation", "cost": 10000, "qty": 1}]
XRAY = [{"description": "X-ray", "cost": 5000, "qty": 1}]


class FakeIdentity:
    """Stands in for the patient service."""

    def __init__(self, known=("P1", "P2"), fail=False):
        self.known = set(known)
        self.fail = fail
        self.calls = []

    def verify_patient_exists(self, patient_ref):
        self.calls.append(patient_ref)
        if self.fail:
            raise IdentityLookupError("connection refused")
        return patient_ref in self.known


@pytest.fixture
def mongo():
    return mongomock.MongoClient(tz_aware=True)


@pytest.fixture
def store(mongo):
    store = BillStore.from_client(mongo, "meditrack_test", "bills")
    store.ensure_indexes()
    return store


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def ledger(store, identity):
    return BillLedger(store, identity, max_retries=5)


@pytest.fixture
def client(ledger):
    app.dependency_overrides[get_ledger] = lambda: ledger
    yield TestClient(app)
    app.dependency_overrides.clear()
