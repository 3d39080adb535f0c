import os

from bson import ObjectId

import database
import main
from conftest import PASSWORD


def give_otp(email, otp="123456"):
    database.create_document("verification", {"email": email, "otp": otp})
    return otp


def test_me_returns_profile(client, user):
    res = client.get("/users/me", headers=user["headers"])
    assert res.status_code == 200
    body = res.json()
    assert body["id"] == user["id"]
    assert body["name"] == "Uma User"
    assert body["image"] == "/media/avatar.avif"
    assert "password_hash" not in body


def test_non_admin_cannot_list_users(client, user):
    res = client.get("/users", headers=user["headers"])
    assert res.status_code == 403


def test_admin_lists_users_with_filter(client, admin, user):
    everyone = client.get("/users", headers=admin["headers"]).json()["users"]
    assert {u["email"] for u in everyone} == {admin["email"], user["email"]}

    admins = client.get("/users", params={"filter": "admin"}, headers=admin["headers"]).json()["users"]
    assert [u["email"] for u in admins] == [admin["email"]]

    regular = client.get("/users", params={"filter": "regular"}, headers=admin["headers"]).json()["users"]
    assert [u["email"] for u in regular] == [user["email"]]


def test_admin_creates_user(client, db, admin):
    res = client.post("/users", json={
        "name": "Second Admin",
        "email": "second@example.com",
        "password": "pass1234",
        "is_admin": True,
    }, headers=admin["headers"])
    assert res.status_code == 201
    assert res.json()["message"] == "Admin created successfully"
    created = db["user"].find_one({"email": "second@example.com"})
    assert created["is_admin"] is True
    assert created["email_verified"] is True


def test_create_user_rejects_duplicate_email(client, admin, user):
    res = client.post("/users", json={
        "name": "Copy",
        "email": user["email"],
        "password": "pass1234",
    }, headers=admin["headers"])
    assert res.status_code == 400


def test_regular_user_cannot_create_users(client, user):
    res = client.post("/users", json={
        "name": "Sneaky",
        "email": "sneaky@example.com",
        "password": "pass1234",
        "is_admin": True,
    }, headers=user["headers"])
    assert res.status_code == 403


def test_update_name_and_password_with_otp(client, db, user):
    otp = give_otp(user["email"])
    res = client.patch(f"/users/{user['id']}", json={
        "name": "Uma Renamed",
        "current_password": PASSWORD,
        "new_password": "another1",
        "otp": otp,
    }, headers=user["headers"])
    assert res.status_code == 200

    stored = db["user"].find_one({"_id": ObjectId(user["id"])})
    assert stored["name"] == "Uma Renamed"
    assert db["verification"].find_one({"email": user["email"]}) is None
    assert client.post("/auth/login", json={"email": user["email"], "password": "another1"}).status_code == 200


def test_update_without_pending_otp_is_expired(client, user):
    res = client.patch(f"/users/{user['id']}", json={
        "name": "Uma Renamed",
        "current_password": PASSWORD,
        "otp": "123456",
    }, headers=user["headers"])
    assert res.status_code == 400
    assert res.json()["detail"] == "OTP expired"


def test_update_rejects_wrong_current_password(client, user):
    otp = give_otp(user["email"])
    res = client.patch(f"/users/{user['id']}", json={
        "name": "Uma Renamed",
        "current_password": "not-my-password",
        "otp": otp,
    }, headers=user["headers"])
    assert res.status_code == 400
    assert res.json()["detail"] == "Invalid current password"


def test_update_requires_something_to_change(client, user):
    otp = give_otp(user["email"])
    res = client.patch(f"/users/{user['id']}", json={
        "current_password": PASSWORD,
        "otp": otp,
    }, headers=user["headers"])
    assert res.status_code == 400


def test_cannot_update_someone_else(client, admin, user):
    otp = give_otp(admin["email"])
    res = client.patch(f"/users/{admin['id']}", json={
        "name": "Hijacked",
        "current_password": PASSWORD,
        "otp": otp,
    }, headers=user["headers"])
    assert res.status_code == 403


def test_profile_picture_upload_and_remove(client, db, user, tmp_path, monkeypatch):
    monkeypatch.setattr(main, "UPLOAD_DIR", str(tmp_path))
    res = client.post(
        f"/users/{user['id']}/profile-picture",
        files={"profile_picture": ("me.png", b"\x89PNG fake image", "image/png")},
        headers=user["headers"],
    )
    assert res.status_code == 200
    image_url = res.json()["image_url"]
    assert image_url.startswith(f"/profile/profile_{user['id']}_") and image_url.endswith(".png")
    stored_file = tmp_path / image_url.lstrip("/")
    assert stored_file.exists()

    res = client.delete(f"/users/{user['id']}/profile-picture", headers=user["headers"])
    assert res.status_code == 200
    assert res.json()["image_url"] == "/media/avatar.avif"
    assert not os.path.exists(stored_file)
    assert db["user"].find_one({"_id": ObjectId(user["id"])})["image"] == "/media/avatar.avif"


def test_profile_picture_rejects_non_images(client, user, tmp_path, monkeypatch):
    monkeypatch.setattr(main, "UPLOAD_DIR", str(tmp_path))
    res = client.post(
        f"/users/{user['id']}/profile-picture",
        files={"profile_picture": ("notes.txt", b"hello", "text/plain")},
        headers=user["headers"],
    )
    assert res.status_code == 400
    assert res.json()["detail"] == "Only image files are allowed"


def test_admin_created_password_keeps_whitespace(client, admin):
    res = client.post("/users", json={
        "name": " Spacey ",
        "email": "spacey@example.com",
        "password": " pass1234 ",
    }, headers=admin["headers"])
    assert res.status_code == 201

    res = client.post("/auth/login", json={"email": "spacey@example.com", "password": " pass1234 "})
    assert res.status_code == 200
