from fastapi.testclient import TestClient

from car_rental.app import create_app


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["service"] == "car-rental-api"
    assert body["checks"] == {"database": "healthy"}


def test_probes(client):
    assert client.get("/ready").json() == {"ready": True}
    assert client.get("/live").json() == {"alive": True}


def test_unknown_api_path_returns_json(client):
    response = client.get("/api/nothing/here")
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "API endpoint not found"}


def test_unknown_page_returns_html(client):
    response = client.get("/definitely-missing")
    assert response.status_code == 404
    assert response.headers["content-type"].startswith("text/html")
    assert "Page not found" in response.text


def test_pages_are_served(client):
    for path in ("/", "/pages/login", "/pages/login.html", "/booking", "/admin"):
        response = client.get(path)
        assert response.status_code == 200, path
        assert response.headers["content-type"].startswith("text/html")


def test_page_lookup_stays_in_pages_directory(client):
    assert client.get("/pages/..%2F..%2Fconfig.py").status_code == 404


def test_static_assets(client):
    assert client.get("/static/app.js").status_code == 200
    assert client.get("/static/styles.css").status_code == 200


def test_invalid_path_parameter_is_bad_request(client):
    response = client.get("/api/cars/not-a-number")
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["message"] == "Invalid request data"


def test_invalid_date_is_bad_request(client, make_car):
    car = make_car()
    response = client.get(f"/api/rentals/check-availability/{car['id']}",
                          params={"pickup_date": "tomorrow", "return_date": "2030-01-01"})
    assert response.status_code == 400


def test_admin_account_is_bootstrapped_once(app, config):
    with TestClient(app):
        pass
    with TestClient(app) as client:
        response = client.post("/api/users/admin/login",
                               json={"email": config.ADMIN_EMAIL, "password": config.ADMIN_PASSWORD})
        users = client.get("/api/users",
                           headers={"Authorization": f"Bearer {response.json()['data']['token']}"}).json()
    assert users["count"] == 1


def test_demo_seed(config):
    config.SEED_DEMO_DATA = True
    with TestClient(create_app(config)) as client:
        assert client.get("/api/cars").json()["count"] == 5


def test_page_script_builds_markup_from_text_nodes(client):
    script = client.get("/static/app.js").text
    assert "innerHTML" not in script
    assert "textContent" in script


def test_dashboard_script_edits_rental_status_and_payment(client):
    script = client.get("/static/app.js").text
    assert "/api/rentals/${rental.id}/${endpoint}" in script
    assert '"status", RENTAL_STATUSES, "status"' in script
    assert '"payment_status", PAYMENT_STATUSES, "payment"' in script
