def test_mail_domains(client, ready):
    assert client.get("/mail", headers=ready).json() == []

    response = client.post("/mail/domains", json={"domain": "Example.COM"}, headers=ready)
    assert response.status_code == 201
    created = response.json()
    assert created["domain"] == "example.com"
    assert created["mailbox_count"] == 0

    listed = client.get("/mail", headers=ready).json()
    assert [(d["domain"], d["mailbox_count"]) for d in listed] == [("example.com", 0)]

    assert client.post("/mail/domains", json={"domain": "example.com"}, headers=ready).status_code == 400
    assert client.post("/mail/domains", json={"domain": "localhost"}, headers=ready).status_code == 400

    assert client.delete(f"/mail/domains/{created['id']}", headers=ready).status_code == 200
    assert client.get("/mail", headers=ready).json() == []
    assert client.delete(f"/mail/domains/{created['id']}", headers=ready).status_code == 404


def test_mail_needs_finished_wizard(client, auth_headers):
    response = client.get("/mail", headers=auth_headers)
    assert response.status_code == 409
