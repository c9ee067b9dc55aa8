from fastapi.testclient import TestClient

from app import main


client = TestClient(main.app)


def _capture_runs(monkeypatch):
    started = []

    async def fake_run(url):
        started.append(url)

    monkeypatch.setattr(main.supervisor, "run", fake_run)
    return started


def test_health():
    rsp = client.get("/")
    assert rsp.status_code == 200
    assert rsp.json() == {"message": "Everything's fine"}


def test_task_accepted_with_secret_in_body(monkeypatch):
    started = _capture_runs(monkeypatch)

    rsp = client.post("/task", json={"url": "https://quiz.test/q1", "secret": "test-secret"})

    assert rsp.status_code == 200
    assert rsp.json() == {"status": "accepted"}
    assert started == ["https://quiz.test/q1"]


def test_secret_header_takes_precedence(monkeypatch):
    started = _capture_runs(monkeypatch)

    rsp = client.post(
        "/task",
        json={"url": "https://quiz.test/q1", "secret": "wrong"},
        headers={"x-secret": "test-secret"},
    )

    assert rsp.status_code == 200
    assert started == ["https://quiz.test/q1"]


def test_secret_and_url_from_query(monkeypatch):
    started = _capture_runs(monkeypatch)

    rsp = client.post("/task", params={"secret": "test-secret", "url": "https://quiz.test/q9"})

    assert rsp.status_code == 200
    assert started == ["https://quiz.test/q9"]


def test_missing_secret_is_rejected(monkeypatch):
    started = _capture_runs(monkeypatch)

    rsp = client.post("/task", json={"url": "https://quiz.test/q1"})

    assert rsp.status_code == 401
    assert rsp.json()["detail"] == "missing secret"
    assert started == []


def test_wrong_secret_is_rejected(monkeypatch):
    started = _capture_runs(monkeypatch)

    rsp = client.post("/task", json={"url": "https://quiz.test/q1", "secret": "nope"})

    assert rsp.status_code == 403
    assert rsp.json()["detail"] == "invalid secret"
    assert started == []


def test_missing_url_is_rejected(monkeypatch):
    started = _capture_runs(monkeypatch)

    rsp = client.post("/task", json={}, headers={"x-secret": "test-secret"})

    assert rsp.status_code == 400
    assert rsp.json()["detail"] == "missing url"
    assert started == []


def test_invalid_json_is_rejected(monkeypatch):
    started = _capture_runs(monkeypatch)

    rsp = client.post(
        "/task",
        content=b"{not json",
        headers={"content-type": "application/json", "x-secret": "test-secret"},
    )

    assert rsp.status_code == 400
    assert started == []


def test_rejections_are_logged_with_solver_prefix(monkeypatch, caplog):
    _capture_runs(monkeypatch)

    with caplog.at_level("INFO", logger="solver"):
        client.post("/task", json={"url": "https://quiz.test/q1", "secret": "nope"})

    assert "[SOLVER] [AUTH] Invalid secret" in caplog.text
