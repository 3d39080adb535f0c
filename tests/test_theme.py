def test_theme_defaults_are_created_on_first_read(client, db):
    res = client.get("/theme")
    assert res.status_code == 200
    assert res.json()["data"] == {
        "custom_primary": "#000000",
        "custom_secondary": "#ffffff",
        "custom_tertiary": "#000000",
    }
    client.get("/theme")
    assert db["theme"].count_documents({}) == 1


def test_admin_updates_only_given_colors(client, admin):
    res = client.patch("/theme", json={"custom_primary": "#ff0000", "custom_tertiary": ""},
                       headers=admin["headers"])
    assert res.status_code == 200
    assert res.json()["data"] == {
        "custom_primary": "#ff0000",
        "custom_secondary": "#ffffff",
        "custom_tertiary": "#000000",
    }
    assert client.get("/theme").json()["data"]["custom_primary"] == "#ff0000"


def test_regular_user_cannot_change_theme(client, user):
    res = client.patch("/theme", json={"custom_primary": "#ff0000"}, headers=user["headers"])
    assert res.status_code == 403
