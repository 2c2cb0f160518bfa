from datetime import datetime, timedelta, timezone

import jwt

from accounts import RESET_REQUESTED_MESSAGE
from conftest import auth
from database import now


def _reset_token_from(mailer):
    kind, _, url = mailer.sent[-1]
    assert kind == "reset"
    return url.split("/reset-password/")[1].split("?")[0]


def test_register_returns_token_and_public_user(client, db, register):
    body = register()
    assert set(body["user"]) == {"id", "name", "email", "role"}
    assert body["user"]["role"] == "customer"

    stored = db["user"].find_one({"email": "asha@example.com"})
    assert stored["password_hash"] != "secret123"
    assert stored["password_hash"].startswith("$2")


def test_register_duplicate_email_conflicts(client, register):
    register()
    response = client.post("/api/auth/register",
                           json={"name": "Other", "email": "asha@example.com", "password": "another1"})
    assert response.status_code == 400
    assert response.json()["message"] == "User already exists"


def test_register_validates_input(client):
    response = client.post("/api/auth/register", json={"name": " ", "email": "x@example.com", "password": "secret123"})
    assert response.status_code == 400
    response = client.post("/api/auth/register", json={"name": "A", "email": "x@example.com", "password": "123"})
    assert response.status_code == 400
    response = client.post("/api/auth/register", json={"name": "A", "email": "not-an-email", "password": "secret123"})
    assert response.status_code == 400


def test_register_token_uses_seven_day_expiry(register, settings):
    token = register()["token"]
    payload = jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    remaining = datetime.fromtimestamp(payload["exp"], tz=timezone.utc) - datetime.now(timezone.utc)
    assert timedelta(days=6, hours=23) < remaining <= timedelta(days=7)
    assert payload["role"] == "customer"
    assert payload["email"] == "asha@example.com"


def test_login(client, register, settings):
    register()
    response = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "secret123"})
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["email"] == "asha@example.com"
    payload = jwt.decode(body["token"], settings.jwt_secret, algorithms=["HS256"])
    remaining = datetime.fromtimestamp(payload["exp"], tz=timezone.utc) - datetime.now(timezone.utc)
    assert remaining <= timedelta(days=1)


def test_login_rejects_bad_credentials(client, register):
    register()
    wrong = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "nope-nope"})
    unknown = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "secret123"})
    assert wrong.status_code == 401
    assert unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"message": "Invalid credentials"}


def test_admin_login_requires_admin_role(client, register):
    register()
    response = client.post("/api/auth/admin-login", json={"email": "asha@example.com", "password": "secret123"})
    assert response.status_code == 403
    response = client.post("/api/auth/login",
                           json={"email": "asha@example.com", "password": "secret123", "is_admin": True})
    assert response.status_code == 403


def test_admin_login_succeeds_for_admin(client, admin_token):
    response = client.get("/api/auth/me", headers=auth(admin_token))
    assert response.status_code == 200
    assert response.json()["role"] == "admin"
    assert "password_hash" not in response.json()


def test_register_admin(client):
    body = {"name": "Root", "email": "root@example.com", "password": "Str0ng@pass", "admin_key": "wrong"}
    assert client.post("/api/auth/register-admin", json=body).status_code == 400

    body["admin_key"] = "open-sesame"
    response = client.post("/api/auth/register-admin", json=body)
    assert response.status_code == 201
    assert response.json()["user"]["role"] == "admin"


def test_register_admin_requires_strong_password(client):
    body = {"name": "Root", "email": "root@example.com", "password": "weakpassword", "admin_key": "open-sesame"}
    assert client.post("/api/auth/register-admin", json=body).status_code == 400


def test_session_checks(client, db, user_token, settings):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers=auth("garbage")).status_code == 401

    expired = jwt.encode(
        {"id": "0" * 24, "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
        settings.jwt_secret, algorithm="HS256",
    )
    response = client.get("/api/auth/me", headers=auth(expired))
    assert response.status_code == 401
    assert response.json()["message"] == "Token expired"

    assert client.get("/api/auth/validate-token", headers=auth(user_token)).json()["valid"] is True

    db["user"].delete_many({})
    assert client.get("/api/auth/me", headers=auth(user_token)).status_code == 401


def test_refresh_token(client, user_token):
    response = client.post("/api/auth/refresh-token", headers=auth(user_token))
    assert response.status_code == 200
    new_token = response.json()["token"]
    assert client.get("/api/auth/me", headers=auth(new_token)).status_code == 200


def test_forgot_password_does_not_leak_accounts(client, register, mailer):
    register()
    known = client.post("/api/auth/forgot-password", json={"email": "asha@example.com"})
    unknown = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json() == {"message": RESET_REQUESTED_MESSAGE}
    assert len(mailer.sent) == 1


def test_reset_token_stored_hashed(client, db, register, mailer):
    register()
    client.post("/api/auth/forgot-password", json={"email": "asha@example.com"})
    token = _reset_token_from(mailer)
    stored = db["user"].find_one({"email": "asha@example.com"})
    assert stored["reset_password_token"] != token
    assert len(stored["reset_password_token"]) == 64
    assert stored["reset_password_expire"] > now()


def test_reset_password_flow(client, db, register, mailer):
    register()
    client.post("/api/auth/forgot-password", json={"email": "asha@example.com"})
    token = _reset_token_from(mailer)

    assert client.get(f"/api/auth/reset-password/{token}/validate").json() == {"valid": True}

    wrong_email = client.post(f"/api/auth/reset-password/{token}",
                              json={"email": "other@example.com", "password": "brandnew1"})
    assert wrong_email.status_code == 400

    response = client.post(f"/api/auth/reset-password/{token}",
                           json={"email": "asha@example.com", "password": "brandnew1"})
    assert response.status_code == 200
    assert response.json()["message"] == "Password reset successful"

    stored = db["user"].find_one({"email": "asha@example.com"})
    assert "reset_password_token" not in stored
    assert "reset_password_expire" not in stored

    login = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "brandnew1"})
    assert login.status_code == 200

    reused = client.post(f"/api/auth/reset-password/{token}",
                         json={"email": "asha@example.com", "password": "another1"})
    assert reused.status_code == 400
    assert reused.json()["message"] == "Invalid or expired token"


def test_reset_password_rejects_expired_token(client, db, register, mailer):
    register()
    client.post("/api/auth/forgot-password", json={"email": "asha@example.com"})
    token = _reset_token_from(mailer)
    db["user"].update_one({"email": "asha@example.com"},
                          {"$set": {"reset_password_expire": now() - timedelta(minutes=1)}})

    assert client.get(f"/api/auth/reset-password/{token}/validate").status_code == 400
    response = client.post(f"/api/auth/reset-password/{token}",
                           json={"email": "asha@example.com", "password": "brandnew1"})
    assert response.status_code == 400


def test_forgot_password_survives_mail_failure(client, register, mailer):
    register()
    mailer.fail = True
    response = client.post("/api/auth/forgot-password", json={"email": "asha@example.com"})
    assert response.status_code == 200
    assert response.json()["message"] == RESET_REQUESTED_MESSAGE
