import itertools
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from car_rental.app import create_app
from car_rental.config import Config

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass"

_plates = itertools.count(1)


def days_from_today(days: int) -> str:
    return (date.today() + timedelta(days=days)).isoformat()


@pytest.fixture
def config(tmp_path):
    return Config(
        DATABASE_URL=f"sqlite:///{tmp_path / 'car_rental_test.db'}",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        BCRYPT_ROUNDS=4,
        JWT_SECRET="test-secret-for-car-rental-tokens-0123456789",
        ADMIN_EMAIL=ADMIN_EMAIL,
        ADMIN_PASSWORD=ADMIN_PASSWORD,
        SEED_DEMO_DATA=False,
    )


@pytest.fixture
def app(config):
    return create_app(config)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db(app, client):
    session = app.state.db.session()
    yield session
    session.close()


@pytest.fixture
def admin_headers(client):
    response = client.post("/api/users/admin/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['data']['token']}"}


@pytest.fixture
def register(client):
    """Register and log in a customer; returns their id and auth headers."""
    def _register(username="alice", email="alice@example.com", password="secret123"):
        response = client.post("/api/users/register", json={
            "username": username,
            "email": email,
            "password": password,
            "full_name": username.title(),
            "phone": "555-0100",
        })
        assert response.status_code == 201, response.text
        login = client.post("/api/users/login", json={"email": email, "password": password})
        assert login.status_code == 200, login.text
        return {
            "id": response.json()["data"]["id"],
            "headers": {"Authorization": f"Bearer {login.json()['data']['token']}"},
        }
    return _register


@pytest.fixture
def customer(register):
    return register()


@pytest.fixture
def make_car(client, admin_headers):
    def _make_car(**overrides):
        form = {
            "make": "Toyota",
            "model": "Corolla",
            "year": "2023",
            "category": "Compact",
            "price_per_day": "50.00",
            "license_plate": f"TST-{next(_plates):04d}",
        }
        form.update(overrides)
        response = client.post("/api/cars", data=form, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _make_car


@pytest.fixture
def book(client):
    """Create a rental through the API and return the raw response."""
    def _book(headers, car_id, start=3, end=8, **extra):
        body = {
            "car_id": car_id,
            "pickup_date": days_from_today(start),
            "return_date": days_from_today(end),
            "pickup_location": "Airport",
        }
        body.update(extra)
        return client.post("/api/rentals", json=body, headers=headers)
    return _book
