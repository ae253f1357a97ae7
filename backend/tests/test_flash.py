from hostpanel.core.flash import MessageQueue


def test_consume_returns_and_clears():
    queue = MessageQueue()
    queue.warn("admin", "chown failed")
    queue.push("admin", "info", "done")

    messages = queue.consume("admin")
    assert [m["text"] for m in messages] == ["chown failed", "done"]
    assert messages[0]["level"] == "warning"
    assert queue.consume("admin") == []


def test_queues_are_per_user():
    queue = MessageQueue()
    queue.warn("admin", "one")
    assert queue.consume("other") == []
    assert queue.peek("admin")[0]["text"] == "one"
    assert len(queue.consume("admin")) == 1


def test_queue_is_bounded():
    queue = MessageQueue(max_messages=3)
    for i in range(5):
        queue.warn("admin", str(i))
    assert [m["text"] for m in queue.consume("admin")] == ["2", "3", "4"]


def test_messages_endpoint_consumes(client, auth_headers, app):
    app.state.messages.warn("admin", "proftpd reload: failed")

    response = client.get("/messages", headers=auth_headers)
    assert response.status_code == 200
    assert [m["text"] for m in response.json()] == ["proftpd reload: failed"]
    assert client.get("/messages", headers=auth_headers).json() == []
