from car_rental.database import UserDB


def _registration(**overrides):
    body = {
        "username": "dave",
        "email": "dave@example.com",
        "password": "secret123",
        "full_name": "Dave Driver",
        "phone": "555-0101",
    }
    body.update(overrides)
    return body


def test_register_hides_password_and_forces_customer_role(client, db):
    response = client.post("/api/users/register", json=_registration(role="admin"))

    assert response.status_code == 201
    user = response.json()["data"]
    assert "password" not in user
    assert user["role"] == "customer"
    stored = db.get(UserDB, user["id"])
    assert stored.password != "secret123"
    assert stored.password.startswith("$2")


def test_duplicate_email_is_not_persisted(client, db):
    assert client.post("/api/users/register", json=_registration()).status_code == 201
    response = client.post("/api/users/register", json=_registration(username="dave2"))

    assert response.status_code == 409
    assert response.json()["message"] == "User with this email already exists"
    assert db.query(UserDB).filter(UserDB.username == "dave2").count() == 0


def test_duplicate_username_conflicts(client):
    client.post("/api/users/register", json=_registration())
    response = client.post("/api/users/register", json=_registration(email="other@example.com"))
    assert response.status_code == 409


def test_register_validation(client):
    missing = client.post("/api/users/register", json=_registration(full_name=None))
    bad_email = client.post("/api/users/register", json=_registration(email="not-an-email"))
    short = client.post("/api/users/register", json=_registration(password="12345"))

    assert missing.status_code == 400
    assert bad_email.status_code == 400
    assert bad_email.json()["message"] == "Invalid email format"
    assert short.status_code == 400


def test_login_failures_share_one_message(client):
    client.post("/api/users/register", json=_registration())

    wrong_password = client.post("/api/users/login", json={"email": "dave@example.com", "password": "nope123"})
    unknown = client.post("/api/users/login", json={"email": "ghost@example.com", "password": "secret123"})
    incomplete = client.post("/api/users/login", json={"email": "dave@example.com"})

    assert wrong_password.status_code == 401
    assert unknown.status_code == 401
    assert wrong_password.json()["message"] == unknown.json()["message"] == "Invalid email or password"
    assert incomplete.status_code == 400


def test_login_returns_user_and_token(client):
    client.post("/api/users/register", json=_registration())
    response = client.post("/api/users/login", json={"email": "dave@example.com", "password": "secret123"})

    data = response.json()["data"]
    assert response.status_code == 200
    assert data["user"]["email"] == "dave@example.com"
    assert data["token"].count(".") == 2


def test_admin_login_rejects_customers(client, customer):
    response = client.post("/api/users/admin/login", json={"email": "alice@example.com", "password": "secret123"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid admin credentials"


def test_list_users_is_admin_only(client, customer, admin_headers):
    assert client.get("/api/users", headers=customer["headers"]).status_code == 403
    response = client.get("/api/users", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["count"] == 2
    assert all("password" not in user for user in response.json()["data"])


def test_profile_access_is_owner_or_admin(client, customer, register, admin_headers):
    other = register(username="bob", email="bob@example.com")
    url = f"/api/users/{customer['id']}"

    assert client.get(url, headers=customer["headers"]).status_code == 200
    assert client.get(url, headers=other["headers"]).status_code == 403
    assert client.get(url, headers=admin_headers).status_code == 200
    assert client.get("/api/users/9999", headers=admin_headers).status_code == 404


def test_update_ignores_role_and_password(client, customer):
    url = f"/api/users/{customer['id']}"
    response = client.put(url, json={"full_name": "Alice Smith", "role": "admin", "password": "hijack"},
                          headers=customer["headers"])

    assert response.status_code == 200
    assert response.json()["data"]["full_name"] == "Alice Smith"
    assert response.json()["data"]["role"] == "customer"
    login = client.post("/api/users/login", json={"email": "alice@example.com", "password": "secret123"})
    assert login.status_code == 200


def test_update_validation(client, customer, register):
    register(username="bob", email="bob@example.com")
    url = f"/api/users/{customer['id']}"

    assert client.put(url, json={}, headers=customer["headers"]).status_code == 400
    assert client.put(url, json={"email": "broken"}, headers=customer["headers"]).status_code == 400
    assert client.put(url, json={"email": "bob@example.com"}, headers=customer["headers"]).status_code == 409


def test_change_password(client, customer):
    url = f"/api/users/{customer['id']}/change-password"

    wrong = client.post(url, json={"current_password": "guess123", "new_password": "newsecret"},
                        headers=customer["headers"])
    changed = client.post(url, json={"current_password": "secret123", "new_password": "newsecret"},
                          headers=customer["headers"])

    assert wrong.status_code == 401
    assert changed.status_code == 200
    old = client.post("/api/users/login", json={"email": "alice@example.com", "password": "secret123"})
    new = client.post("/api/users/login", json={"email": "alice@example.com", "password": "newsecret"})
    assert old.status_code == 401
    assert new.status_code == 200


def test_blank_profile_fields_are_not_stored(client, customer):
    url = f"/api/users/{customer['id']}"

    blank_email = client.put(url, json={"email": ""}, headers=customer["headers"])
    blank_name = client.put(url, json={"username": "   ", "full_name": ""}, headers=customer["headers"])
    mixed = client.put(url, json={"email": "", "phone": "555-0199"}, headers=customer["headers"])

    assert blank_email.status_code == 400
    assert blank_name.status_code == 400
    assert mixed.status_code == 200
    profile = client.get(url, headers=customer["headers"]).json()["data"]
    assert profile["email"] == "alice@example.com"
    assert profile["username"] == "alice"
    assert profile["phone"] == "555-0199"
    login = client.post("/api/users/login", json={"email": "alice@example.com", "password": "secret123"})
    assert login.status_code == 200
