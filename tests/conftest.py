import mongomock
import pytest
from fastapi.testclient import TestClient

from main import create_app
from settings import Settings


class FakeMailer:
    def __init__(self, available=True, fail=False):
        self.available = available
        self.fail = fail
        self.sent = []

    def initialize(self):
        return self.available

    def ensure_ready(self):
        return self.available

    def send_password_reset(self, email, reset_url):
        if self.fail:
            return False, "boom"
        self.sent.append(("reset", email, reset_url))
        return True, None

    def send_contact(self, name, email, subject, message):
        if self.fail:
            return False, "boom"
        self.sent.append(("contact", email, subject))
        return True, None


@pytest.fixture
def settings(tmp_path):
    return Settings(
        jwt_secret="test-secret",
        upload_dir=str(tmp_path / "uploads"),
        bcrypt_rounds=4,
        admin_registration_key="open-sesame",
    )


@pytest.fixture
def db():
    return mongomock.MongoClient()["trybee_test"]


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def stock_failures():
    return []


@pytest.fixture
def app(settings, db, mailer, stock_failures):
    return create_app(settings=settings, db=db, mailer=mailer, on_stock_failure=stock_failures.append)


@pytest.fixture
def client(app):
    return TestClient(app)


def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def register(client):
    def _register(name="Asha", email="asha@example.com", password="secret123"):
        response = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
        assert response.status_code == 201, response.text
        return response.json()
    return _register


@pytest.fixture
def admin_token(client, db, register):
    register(name="Admin", email="admin@example.com", password="adminpass")
    db["user"].update_one({"email": "admin@example.com"}, {"$set": {"role": "admin"}})
    response = client.post("/api/auth/admin-login", json={"email": "admin@example.com", "password": "adminpass"})
    assert response.status_code == 200, response.text
    return response.json()["token"]


@pytest.fixture
def user_token(register):
    return register()["token"]


@pytest.fixture
def make_product(db):
    def _make_product(name="Bamboo Basket", price=250.0, stock=10, **extra):
        doc = {
            "name": name,
            "description": "Hand woven",
            "price": price,
            "category": "Handicrafts",
            "stock": stock,
            "images": ["/uploads/basket.png"],
            "ratings": [],
        }
        doc.update(extra)
        return str(db["product"].insert_one(doc).inserted_id)
    return _make_product
