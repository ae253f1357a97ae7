from hostpanel.system import package_installer


def test_initial_state(client, auth_headers):
    state = client.get("/wizard", headers=auth_headers).json()
    assert state["step"] == "welcome"
    assert state["completed"] is False


def test_choices_are_stored(client, auth_headers):
    response = client.post("/wizard/php", json={"versions": ["8.2", "8.3"], "fpm_config": "optimized"},
                           headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["php_versions"] == "8.2,8.3"
    assert response.json()["step"] == "web_server"

    response = client.post("/wizard/database", json={"choice": "mariadb", "root_password": "r00t"},
                           headers=auth_headers)
    assert response.json()["database_choice"] == "mariadb"
    assert client.get("/settings", headers=auth_headers).json()["mysql_root_password"] == "********"

    response = client.post("/wizard/components", json={"node_version": "20", "ftp": True}, headers=auth_headers)
    state = response.json()
    assert state["node_version"] == "20"
    assert state["ftp_installed"] is True
    assert state["step"] == "install"


def test_invalid_choices(client, auth_headers):
    assert client.post("/wizard/php", json={"versions": ["5.6"]}, headers=auth_headers).status_code == 422
    assert client.post("/wizard/database", json={"choice": "postgres"}, headers=auth_headers).status_code == 422
    assert client.post("/wizard/step/nowhere", headers=auth_headers).status_code == 400


def test_install_moves_to_finish(client, auth_headers, monkeypatch):
    seen = {}

    def fake_install(state, root_password=None, php_root="/etc/php", timeout=1800):
        seen["password"] = root_password
        return True, "[apt-get update]\nok"

    monkeypatch.setattr(package_installer, "run_install", fake_install)
    client.post("/wizard/database", json={"choice": "mysql", "root_password": "r00t"}, headers=auth_headers)

    response = client.post("/wizard/install", headers=auth_headers)
    assert response.json() == {"success": True, "log": "[apt-get update]\nok"}
    assert seen["password"] == "r00t"
    assert client.get("/wizard", headers=auth_headers).json()["step"] == "finish"


def test_install_stream_ends_with_done(client, auth_headers, monkeypatch):
    def fake_stream(state, root_password=None, php_root="/etc/php", timeout=1800):
        yield "[apt-get update]\n"
        yield "DONE:0\n"

    monkeypatch.setattr(package_installer, "stream_install", fake_stream)
    response = client.get("/wizard/install/stream", headers=auth_headers)
    assert response.status_code == 200
    assert response.text.strip().splitlines()[-1] == "DONE:0"


def test_sites_are_gated_until_complete(client, auth_headers):
    response = client.get("/sites", headers=auth_headers)
    assert response.status_code == 409
    assert "wizard" in response.json()["detail"]

    client.post("/wizard/complete", headers=auth_headers)
    assert client.get("/sites", headers=auth_headers).status_code == 200
