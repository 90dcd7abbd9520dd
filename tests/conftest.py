import os
from types import SimpleNamespace

# Must be set before wedding_payments.database is imported
os.environ["DATABASE_URL"] = "sqlite:///./test_wedding_payments.db"
os.environ["CHAPA_SECRET_KEY"] = "CHASECK_TEST-secret"
os.environ["CHAPA_WEBHOOK_SECRET"] = "whsec_test"
os.environ["CALLBACK_BASE_URL"] = "https://api.example.test"
os.environ["RETURN_URL"] = "https://app.example.test/payments/return"
os.environ["JWT_SECRET"] = "jwt_test_secret"

import pytest
from fastapi.testclient import TestClient

from wedding_payments.auth import Caller, get_current_user
from wedding_payments.database import Base, SessionLocal, engine
from wedding_payments.main import app as fastapi_app
from wedding_payments.models import ChapaSubaccount, Role
from tests.helpers import make_booking, make_user, make_vendor


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def marketplace(db):
    """A client with a pending booking at an approved, provisioned vendor."""
    db.add(ChapaSubaccount(account_id="sub_admin_1", type="ADMIN"))
    db.commit()

    client_id = make_user(db, Role.CLIENT, "client@example.com", "Abebe", "Kebede")
    other_client_id = make_user(db, Role.CLIENT, "other@example.com", "Sara", "Tesfaye")
    vendor_user_id = make_user(db, Role.VENDOR, "vendor@example.com")
    admin_id = make_user(db, Role.ADMIN, "admin@example.com")
    vendor_id = make_vendor(db, vendor_user_id)
    booking_id = make_booking(db, client_id, vendor_id)

    return SimpleNamespace(
        client_id=client_id,
        other_client_id=other_client_id,
        vendor_user_id=vendor_user_id,
        admin_id=admin_id,
        vendor_id=vendor_id,
        booking_id=booking_id,
    )


@pytest.fixture
def client(marketplace):
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def login():
    """Authenticate subsequent requests as the given user."""
    def _login(user_id, role=Role.CLIENT):
        fastapi_app.dependency_overrides[get_current_user] = lambda: Caller(id=user_id, role=role)
    yield _login
    fastapi_app.dependency_overrides.clear()
