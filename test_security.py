from cryptography.fernet import Fernet

from conftest import register
from encryption import EncryptedString
from schemas import TaskCreate


# --- Test 1: Content Security Policy (HTTP Headers) ---
def test_security_headers(client):
    """
    Verify that the SecurityHeadersMiddleware adds the expected headers.
    """
    response = client.get("/docs")
    assert response.status_code == 200
    headers = response.headers

    assert "default-src 'self'" in headers["content-security-policy"]
    assert headers.get("x-content-type-options") == "nosniff"
    assert headers.get("x-frame-options") == "DENY"


def test_untrusted_host_is_rejected(app):
    from fastapi.testclient import TestClient

    evil = TestClient(app, base_url="http://evil.example.com")
    assert evil.get("/api/tasks").status_code == 400


# --- Test 2: Input Sanitization (Bleach / XSS) ---
def test_input_sanitization():
    """
    Verify that HTML tags are stripped from Task inputs.
    """
    unsafe_input = "<script>alert('XSS')</script>Meeting<b onmouseover=alert(1)>bold</b>"

    task = TaskCreate(title=unsafe_input, description="<i>details</i>")

    assert "<script>" not in task.title
    assert "<b>" not in task.title
    # strip=True keeps the text content
    assert "Meeting" in task.title
    assert "bold" in task.title
    assert task.description == "details"


def test_sanitized_title_is_what_gets_stored(alice):
    res = alice.post("/api/tasks", json={"title": "<b>Buy</b> milk"})
    assert res.status_code == 201
    assert res.json()["title"] == "Buy milk"


# --- Test 3: Encryption Logic (Unit Test) ---
def test_encryption_logic():
    """
    Values are encrypted on the way into the database and decrypted on the
    way out; plaintext rows from before the key was set are passed through.
    """
    column = EncryptedString(key=Fernet.generate_key().decode())
    plain_text = "Secret user data 123"

    encrypted = column.process_bind_param(plain_text, dialect=None)
    assert encrypted != plain_text
    assert "Secret" not in encrypted
    assert column.process_result_value(encrypted, dialect=None) == plain_text

    assert column.process_result_value("legacy plaintext", dialect=None) == "legacy plaintext"
    assert column.process_bind_param(None, dialect=None) is None


def test_encryption_disabled_without_key(monkeypatch):
    import encryption

    monkeypatch.setattr(encryption, "_KEY", None)
    column = EncryptedString()
    assert column.process_bind_param("visible", dialect=None) == "visible"


# --- Test 4: Rate Limiting ---
def test_rate_limiting_login(client):
    """
    Verify that the login endpoint blocks requests after the limit (10/min).
    """
    register(client, "alice")
    payload = {"username": "alice", "password": "wrongpassword"}

    statuses = [client.post("/api/auth/login", json=payload).status_code for _ in range(15)]

    assert statuses[:10] == [401] * 10
    assert 429 in statuses, "Rate limit (429) was not triggered after 15 attempts!"


def test_rate_limiting_register(client):
    """
    Verify that the register endpoint blocks requests after the limit (10/min).
    """
    statuses = [
        client.post(
            "/api/auth/register",
            json={"username": f"user{i}", "email": f"user{i}@x.com", "password": "secret1"},
        ).status_code
        for i in range(15)
    ]

    assert statuses[:10] == [201] * 10
    assert 429 in statuses, "Rate limit (429) was not triggered after 15 registrations!"


# --- Sanitising keeps plain text intact ---
def test_plain_text_survives_round_trip(alice):
    created = alice.post("/api/tasks", json={"title": "Milk & eggs", "description": "a < b"}).json()

    fetched = alice.get(f"/api/tasks/{created['id']}").json()
    assert fetched["title"] == "Milk & eggs"
    assert fetched["description"] == "a < b"


def test_encoded_markup_is_not_turned_into_tags():
    task = TaskCreate(title="&lt;script&gt;alert(1)&lt;/script&gt;Meeting")
    assert "<script>" not in task.title
    assert "Meeting" in task.title


def test_title_limit_applies_to_stored_text(alice):
    res = alice.post("/api/tasks", json={"title": "&" * 255})
    assert res.status_code == 201
    assert res.json()["title"] == "&" * 255

    assert alice.post("/api/tasks", json={"title": "&" * 256}).status_code == 400
    # Markup does not count against the limit once it has been stripped.
    assert alice.post("/api/tasks", json={"title": "<b>" + "a" * 255 + "</b>"}).status_code == 201


def test_encryption_key_rotation():
    old_key = Fernet.generate_key().decode()
    new_key = Fernet.generate_key().decode()

    stored = EncryptedString(key=old_key).process_bind_param("rotated", dialect=None)

    rotated = EncryptedString(key=f"{new_key}, {old_key}")
    assert rotated.process_result_value(stored, dialect=None) == "rotated"
    fresh = rotated.process_bind_param("fresh", dialect=None)
    assert EncryptedString(key=new_key).process_result_value(fresh, dialect=None) == "fresh"
