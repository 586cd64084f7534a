import pytest

pytestmark = pytest.mark.anyio


@pytest.fixture()
def gateway(app):
    return app.state.gateway


@pytest.fixture()
def emitted(app, monkeypatch):
    """Record broadcasts instead of sending them to (non-existent) clients."""
    events = []

    async def fake_emit(event, data=None, **kwargs):
        events.append((event, data))

    monkeypatch.setattr(app.state.sio, "emit", fake_emit)
    return events


async def login_over_socket(gateway, username="alice"):
    ack = await gateway.dispatch(
        "auth:register", "sid-" + username, {"username": username, "email": f"{username}@x.com", "password": "secret1"}
    )
    assert "token" in ack, ack
    return ack["token"]


async def test_register_and_login_return_token_without_password(gateway):
    token = await login_over_socket(gateway)
    assert token

    ack = await gateway.dispatch("auth:login", "sid-1", {"username": "alice", "password": "secret1"})
    assert ack["user"] == {"id": 1, "username": "alice", "email": "alice@x.com"}
    assert "password" not in str(ack)

    bad = await gateway.dispatch("auth:login", "sid-1", {"username": "alice", "password": "wrongpass"})
    assert bad["code"] == "AUTH_REQUIRED"
    assert bad["error"] == "Invalid username or password"


async def test_events_require_a_token(gateway):
    for event in ("auth:me", "tasks:get", "tasks:getById", "tasks:create", "tasks:update", "tasks:delete"):
        ack = await gateway.dispatch(event, "sid-anon", {"id": 1, "title": "x"})
        assert ack["code"] == "AUTH_REQUIRED", event


async def test_token_from_connect_auth_is_used(gateway):
    token = await login_over_socket(gateway)
    await gateway.on_connect("sid-2", {}, {"token": token})

    ack = await gateway.dispatch("auth:me", "sid-2", None)
    assert ack["user"]["username"] == "alice"

    await gateway.on_disconnect("sid-2")
    ack = await gateway.dispatch("auth:me", "sid-2", None)
    assert ack["code"] == "AUTH_REQUIRED"


async def test_token_from_handshake_cookie_is_used(gateway):
    token = await login_over_socket(gateway)
    await gateway.on_connect("sid-3", {"HTTP_COOKIE": f"theme=dark; authToken={token}"}, None)

    ack = await gateway.dispatch("tasks:get", "sid-3", {})
    assert ack == []


async def test_create_update_delete_broadcast_to_everyone(gateway, emitted):
    token = await login_over_socket(gateway)

    created = await gateway.dispatch("tasks:create", "sid-1", {"token": token, "title": "Buy milk", "dueDate": ""})
    assert created["status"] == "pending"
    assert created["dueDate"] is None
    assert created["attachments"] == []
    assert emitted[-1] == ("tasks:created", created)

    updated = await gateway.dispatch(
        "tasks:update", "sid-1", {"token": token, "id": created["id"], "status": "completed"}
    )
    assert updated["status"] == "completed"
    assert updated["title"] == "Buy milk"
    assert emitted[-1] == ("tasks:updated", updated)

    listed = await gateway.dispatch("tasks:get", "sid-1", {"token": token, "status": "completed"})
    assert [t["id"] for t in listed] == [created["id"]]

    deleted = await gateway.dispatch("tasks:delete", "sid-1", {"token": token, "id": created["id"]})
    assert deleted == {"success": True}
    assert emitted[-1] == ("tasks:deleted", {"id": created["id"]})

    missing = await gateway.dispatch("tasks:getById", "sid-1", {"token": token, "id": created["id"]})
    assert missing["code"] == "NOT_FOUND"


async def test_validation_errors_match_http(gateway, emitted):
    token = await login_over_socket(gateway)

    ack = await gateway.dispatch("tasks:create", "sid-1", {"token": token, "title": "a" * 256})
    assert ack["code"] == "VALIDATION_ERROR"
    ack = await gateway.dispatch("tasks:getById", "sid-1", {"token": token, "id": "abc"})
    assert ack["code"] == "VALIDATION_ERROR"
    assert emitted == []


async def test_update_claims_orphan_task(gateway, create_orphan):
    token = await login_over_socket(gateway)
    task_id = create_orphan("Legacy task")

    ack = await gateway.dispatch("tasks:update", "sid-1", {"token": token, "id": task_id, "title": "Adopted"})
    assert ack["title"] == "Adopted"
    assert (await gateway.dispatch("tasks:getById", "sid-1", {"token": token, "id": task_id}))["id"] == task_id


async def test_failed_mutation_is_not_broadcast(gateway, emitted):
    token = await login_over_socket(gateway)
    ack = await gateway.dispatch("tasks:delete", "sid-1", {"token": token, "id": 999})
    assert ack["code"] == "NOT_FOUND"
    assert emitted == []


async def test_attachment_delete_broadcasts(gateway, emitted):
    token = await login_over_socket(gateway)
    ack = await gateway.dispatch("attachments:delete", "sid-1", {"token": token, "id": 5})
    assert ack == {"success": True}
    assert emitted == [("attachments:deleted", {"id": 5})]


async def test_logout_forgets_connection_token(gateway):
    token = await login_over_socket(gateway)
    await gateway.on_connect("sid-4", {}, {"token": token})

    assert await gateway.dispatch("auth:logout", "sid-4", None) == {"message": "Logout successful"}
    assert (await gateway.dispatch("auth:me", "sid-4", None))["code"] == "AUTH_REQUIRED"


@pytest.mark.parametrize("bad_id", [True, 2.9, "1.5", None, "abc"])
async def test_non_integer_ids_are_rejected(gateway, emitted, bad_id):
    token = await login_over_socket(gateway)
    created = await gateway.dispatch("tasks:create", "sid-1", {"token": token, "title": "Keep me"})
    emitted.clear()

    ack = await gateway.dispatch("tasks:delete", "sid-1", {"token": token, "id": bad_id})
    assert ack["code"] == "VALIDATION_ERROR"
    assert emitted == []
    assert (await gateway.dispatch("tasks:getById", "sid-1", {"token": token, "id": created["id"]}))["id"] == 1 == created["id"]


async def test_integral_float_id_is_accepted(gateway):
    token = await login_over_socket(gateway)
    created = await gateway.dispatch("tasks:create", "sid-1", {"token": token, "title": "Float id"})
    ack = await gateway.dispatch("tasks:getById", "sid-1", {"token": token, "id": float(created["id"])})
    assert ack["id"] == created["id"]
