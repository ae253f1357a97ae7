import os

import pytest

from hostpanel.core.exceptions import ExternalToolError
from hostpanel.system.mysql_manager import Privilege


@pytest.fixture
def site_id(client, ready):
    response = client.post("/sites", json={"domain": "example.com"}, headers=ready)
    assert response.status_code == 201
    return response.json()["id"]


def user_id(client, headers, username):
    users = client.get("/databases/users", headers=headers).json()
    return next(u["id"] for u in users if u["username"] == username)


def test_new_user_mode_returns_credentials(client, ready, site_id, fake_mysql):
    response = client.post(f"/sites/{site_id}/databases", json={"name": "shop"}, headers=ready)
    assert response.status_code == 201
    body = response.json()

    assert body["database"]["name"] == "shop"
    assert body["privileges"] == "ALL"
    credentials = body["credentials"]
    assert credentials["username"] == "shop"
    assert fake_mysql.users[("shop", "localhost")] == credentials["password"]
    assert fake_mysql.grants == {("shop", "localhost", "shop"): "ALL"}


def test_invalid_name_is_rejected_before_engine(client, ready, site_id, fake_mysql):
    response = client.post(f"/sites/{site_id}/databases", json={"name": "shop-db"}, headers=ready)
    assert response.status_code == 400
    assert fake_mysql.databases == set()


def test_duplicate_database(client, ready, site_id):
    assert client.post(f"/sites/{site_id}/databases", json={"name": "shop", "user_mode": "none"},
                       headers=ready).status_code == 201
    response = client.post(f"/sites/{site_id}/databases", json={"name": "shop", "user_mode": "none"},
                           headers=ready)
    assert response.status_code == 400


def test_failed_grant_cleans_up(client, ready, site_id, fake_mysql):
    fake_mysql.fail_on.add("grant")

    response = client.post(f"/sites/{site_id}/databases", json={"name": "shop"}, headers=ready)
    assert response.status_code == 502
    assert fake_mysql.databases == set()
    assert fake_mysql.users == {}
    assert client.get("/databases", headers=ready).json() == []
    assert client.get("/databases/users", headers=ready).json() == []


def test_grant_then_revoke_restores_grants(client, ready, site_id, fake_mysql):
    created = client.post(f"/sites/{site_id}/databases", json={"name": "shop", "user_mode": "none"},
                          headers=ready).json()
    assert created["credentials"] is None
    db_id = created["database"]["id"]

    response = client.post("/databases/users", json={"username": "reporter"}, headers=ready)
    assert response.status_code == 201
    uid = user_id(client, ready, "reporter")
    before = fake_mysql.show_grants("reporter")

    response = client.post(f"/sites/{site_id}/databases/{db_id}/grants",
                           json={"db_user_id": uid, "privileges": "READ_ONLY"}, headers=ready)
    assert response.status_code == 200
    assert response.json()["privileges"] == "READ_ONLY"
    assert "GRANT SELECT ON `shop`.* TO `reporter`@`localhost`" in fake_mysql.show_grants("reporter")

    response = client.delete(f"/sites/{site_id}/databases/{db_id}/grants/{uid}", headers=ready)
    assert response.status_code == 200
    assert fake_mysql.show_grants("reporter") == before

    listed = client.get("/databases", headers=ready).json()
    assert listed[0]["grants"] == []


def test_changing_grant_level_replaces_it(client, ready, site_id, fake_mysql):
    db_id = client.post(f"/sites/{site_id}/databases", json={"name": "shop"}, headers=ready).json()["database"]["id"]
    uid = user_id(client, ready, "shop")

    response = client.post(f"/sites/{site_id}/databases/{db_id}/grants",
                           json={"db_user_id": uid, "privileges": "READ_WRITE"}, headers=ready)
    assert response.status_code == 200
    assert fake_mysql.grants == {("shop", "localhost", "shop"): "READ_WRITE"}

    listed = client.get("/databases", headers=ready).json()
    assert [g["privileges"] for g in listed[0]["grants"]] == ["READ_WRITE"]


def test_revoke_missing_grant(client, ready, site_id):
    db_id = client.post(f"/sites/{site_id}/databases", json={"name": "shop", "user_mode": "none"},
                        headers=ready).json()["database"]["id"]
    client.post("/databases/users", json={"username": "reporter"}, headers=ready)
    uid = user_id(client, ready, "reporter")

    response = client.delete(f"/sites/{site_id}/databases/{db_id}/grants/{uid}", headers=ready)
    assert response.status_code == 404


def test_existing_user_mode(client, ready, site_id, fake_mysql):
    client.post("/databases/users", json={"username": "deployer"}, headers=ready)
    uid = user_id(client, ready, "deployer")

    response = client.post(f"/sites/{site_id}/databases",
                           json={"name": "blog", "user_mode": "existing", "db_user_id": uid}, headers=ready)
    assert response.status_code == 201
    assert response.json()["credentials"] is None
    assert ("deployer", "localhost", "blog") in fake_mysql.grants

    missing = client.post(f"/sites/{site_id}/databases", json={"name": "wiki", "user_mode": "existing"},
                          headers=ready)
    assert missing.status_code == 400


def test_reset_password(client, ready, site_id, fake_mysql):
    client.post(f"/sites/{site_id}/databases", json={"name": "shop"}, headers=ready)
    uid = user_id(client, ready, "shop")

    response = client.post(f"/sites/{site_id}/db-users/{uid}/reset-password", headers=ready)
    assert response.status_code == 200
    password = response.json()["password"]
    assert fake_mysql.users[("shop", "localhost")] == password

    detail = client.get(f"/sites/{site_id}", headers=ready).json()
    assert detail["databases"][0]["grants"][0]["password"] == password


def test_failed_reset_keeps_stored_password(client, ready, site_id, fake_mysql):
    created = client.post(f"/sites/{site_id}/databases", json={"name": "shop"}, headers=ready).json()
    old_password = created["credentials"]["password"]
    uid = user_id(client, ready, "shop")
    fake_mysql.fail_on.add("set_user_password")

    response = client.post(f"/sites/{site_id}/db-users/{uid}/reset-password", headers=ready)
    assert response.status_code == 502
    assert "refused by server" in response.json()["diagnostic"]

    detail = client.get(f"/sites/{site_id}", headers=ready).json()
    assert detail["databases"][0]["grants"][0]["password"] == old_password


def test_delete_database(client, ready, site_id, fake_mysql):
    db_id = client.post(f"/sites/{site_id}/databases", json={"name": "shop"}, headers=ready).json()["database"]["id"]

    response = client.delete(f"/sites/{site_id}/databases/{db_id}", headers=ready)
    assert response.status_code == 200
    assert fake_mysql.dropped == ["shop"]
    assert fake_mysql.grants == {}
    # the user survives its database
    assert [u["username"] for u in client.get("/databases/users", headers=ready).json()] == ["shop"]


def test_database_of_other_site_is_not_found(client, ready, site_id):
    other = client.post("/sites", json={"domain": "example.org"}, headers=ready).json()["id"]
    db_id = client.post(f"/sites/{site_id}/databases", json={"name": "shop"}, headers=ready).json()["database"]["id"]

    assert client.delete(f"/sites/{other}/databases/{db_id}", headers=ready).status_code == 404


def test_global_database_create(client, ready, fake_mysql):
    response = client.post("/databases", json={"name": "analytics"}, headers=ready)
    assert response.status_code == 201
    assert response.json()["site_id"] is None
    assert "analytics" in fake_mysql.databases

    assert client.post("/databases", json={"name": "x", "site_id": 99}, headers=ready).status_code == 404


def test_backup_and_download(client, ready, site_id, settings, fake_mysql):
    db_id = client.post(f"/sites/{site_id}/databases", json={"name": "shop"}, headers=ready).json()["database"]["id"]

    def dump_database(name):
        os.makedirs(settings.backup_dir, exist_ok=True)
        path = os.path.join(settings.backup_dir, f"{name}-20260101-120000.sql")
        with open(path, "w") as f:
            f.write("-- dump\n")
        return path

    fake_mysql.dump_database = dump_database

    response = client.post(f"/sites/{site_id}/databases/{db_id}/backup", headers=ready)
    assert response.status_code == 200
    body = response.json()
    assert body["filename"] == "shop-20260101-120000.sql"

    download = client.get(body["download_url"], headers=ready)
    assert download.status_code == 200
    assert download.text == "-- dump\n"

    assert client.get("/backups/panel.db", headers=ready).status_code == 400
    assert client.get("/backups/blog-20260101-120000.sql", headers=ready).status_code == 404


def test_refused_grant_change_restores_previous_level(client, ready, site_id, fake_mysql, monkeypatch):
    db_id = client.post(f"/sites/{site_id}/databases", json={"name": "shop"}, headers=ready).json()["database"]["id"]
    uid = user_id(client, ready, "shop")
    original = fake_mysql.grant

    def grant(username, database, privilege=Privilege.ALL, host="localhost"):
        if Privilege(privilege) == Privilege.READ_ONLY:
            raise ExternalToolError("mysql", "grant refused by server", 1227)
        original(username, database, privilege, host)

    monkeypatch.setattr(fake_mysql, "grant", grant)

    response = client.post(f"/sites/{site_id}/databases/{db_id}/grants",
                           json={"db_user_id": uid, "privileges": "READ_ONLY"}, headers=ready)
    assert response.status_code == 502
    assert fake_mysql.grants == {("shop", "localhost", "shop"): "ALL"}
    listed = client.get("/databases", headers=ready).json()
    assert [g["privileges"] for g in listed[0]["grants"]] == ["ALL"]


def test_unrestorable_grant_drops_the_row(client, ready, site_id, fake_mysql):
    db_id = client.post(f"/sites/{site_id}/databases", json={"name": "shop"}, headers=ready).json()["database"]["id"]
    uid = user_id(client, ready, "shop")
    fake_mysql.fail_on.add("grant")

    response = client.post(f"/sites/{site_id}/databases/{db_id}/grants",
                           json={"db_user_id": uid, "privileges": "READ_ONLY"}, headers=ready)
    assert response.status_code == 502
    assert fake_mysql.grants == {}
    assert client.get("/databases", headers=ready).json()[0]["grants"] == []


def test_reset_password_needs_grant_on_the_site(client, ready, site_id, fake_mysql):
    other = client.post("/sites", json={"domain": "example.org"}, headers=ready).json()["id"]
    client.post(f"/sites/{other}/databases", json={"name": "blog"}, headers=ready)
    client.post("/databases/users", json={"username": "reporter"}, headers=ready)
    before = dict(fake_mysql.users)

    for username in ("reporter", "blog"):
        uid = user_id(client, ready, username)
        response = client.post(f"/sites/{site_id}/db-users/{uid}/reset-password", headers=ready)
        assert response.status_code == 404
    assert fake_mysql.users == before
