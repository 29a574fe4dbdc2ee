def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = client.get("/healthz")
    assert r.status_code == 200


def test_anonymous_gets_401_json(client):
    r = client.get("/customers")
    assert r.status_code == 401
    assert r.json["error"] == "not_authenticated"


def test_login_by_username_or_email(client, login):
    r = login(client, "alice")
    assert r.status_code == 200
    assert r.json["user"]["username"] == "alice"
    assert "password_hash" not in r.json["user"]
    assert r.json["csrf_token"]

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["role"] == "staff"

    client.get("/auth/logout")
    assert client.get("/auth/me").status_code == 401

    r = login(client, "alice@example.com")
    assert r.status_code == 200


def test_bad_credentials(client, login):
    r = login(client, "alice", "wrong")
    assert r.status_code == 401
    assert r.json["message"] == "用户名或密码错误"


def test_login_rate_limited_after_repeated_failures(client, login):
    for _ in range(5):
        assert login(client, "alice", "wrong").status_code == 401
    r = login(client, "alice", "pw")
    assert r.status_code == 429


def test_unknown_route_is_json_404(client):
    r = client.get("/nope")
    assert r.status_code == 404
    assert r.json["error"] == "not_found"


def test_csrf_required_for_mutations_when_enabled(csrf_app, login):
    client = csrf_app.test_client()
    token = login(client, "alice").json["csrf_token"]

    r = client.post("/customers", json={"customer_name": "张三", "phone_number": "13800000000"})
    assert r.status_code == 400
    assert r.json["error"] == "csrf"

    r = client.post(
        "/customers",
        json={"customer_name": "张三", "phone_number": "13800000000"},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 201
