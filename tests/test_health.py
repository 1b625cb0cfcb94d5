def test_root(client):
    res = client.get("/")
    assert res.status_code == 200
    assert "running" in res.json()["message"]


def test_liveness(client):
    res = client.get("/api/user/test")
    assert res.json() == {"status": "success", "message": "API is working", "data": None}


def test_diagnostics_reports_database_and_redis(client):
    res = client.get("/test")
    body = res.json()
    assert body["backend"] == "✅ Running"
    assert body["database"] == "✅ Connected & Working"
    assert body["redis"] == "✅ Connected & Working"


def test_unknown_route_uses_error_envelope(client):
    res = client.get("/api/nothing-here")
    assert res.status_code == 404
    assert res.json()["status"] == "error"
    assert res.json()["statusCode"] == 404
