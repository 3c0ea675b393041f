import json

import httpx
import pytest
from fastapi.testclient import TestClient

from querychat.main import create_app
from querychat.services.storage import MemoryKeyValueStore
from tests.helpers import FakeQueryService, ndjson


@pytest.fixture
def api(service):
    app = create_app(storage=MemoryKeyValueStore(), transport=httpx.MockTransport(service.handler))
    with TestClient(app) as test_client:
        yield test_client


def _events(response) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in response.text.splitlines() if line.startswith("data: ")]


def _connect(api):
    r = api.post("/connection", json={"db_url": "postgresql://db/example"})
    assert r.status_code == 200
    assert r.json()["success"] is True


def test_health(api):
    assert api.get("/health").json() == {"status": "ok"}


def test_connection_status_defaults_to_not_connected(api):
    body = api.get("/connection").json()
    assert body["success"] is False
    assert body["message"] == "Not connected to database"


def test_stream_before_connect_is_rejected(api, service):
    events = _events(api.post("/chat/stream", json={"message": "hi"}))
    assert events[0]["rejection"] == "not_connected"
    assert events[-1]["done"] is True
    assert service.stream_bodies() == []


def test_stream_turn_as_sse(api, service: FakeQueryService):
    _connect(api)
    service.body = ndjson(
        {"type": "sql", "data": "SELECT 1"},
        {"type": "results", "data": [{"n": 1}]},
    )
    response = api.post("/chat/stream", json={"message": "How many?"})
    assert response.headers["content-type"].startswith("text/event-stream")

    events = _events(response)
    phases = [e.get("phase") for e in events[:-1]]
    assert phases[0] == "sending"
    assert phases[-1] == "completed"
    final = events[-2]["message"]
    assert final["sql"] == "SELECT 1"
    assert final["results"]["columns"] == ["n"]
    assert events[-1] == {"done": True, "session_id": api.get("/chat/state").json()["session_id"]}


def test_ask_and_list_sessions(api, service):
    _connect(api)
    service.body = ndjson({"type": "message", "data": "Forty two."})
    body = api.post("/chat", json={"message": "What is the answer?"}).json()
    assert body["message"]["content"] == "Forty two."
    assert body["phase"] == "idle"

    listing = api.get("/chat/sessions").json()
    assert listing["max_messages_per_chat"] == 6
    active = next(s for s in listing["sessions"] if s["id"] == body["session_id"])
    assert active["title"] == "What is the answer?"
    assert active["message_count"] == 2

    session = api.get(f"/chat/sessions/{body['session_id']}").json()
    assert [m["role"] for m in session["messages"]] == ["user", "assistant"]


def test_select_and_delete_sessions(api):
    first = api.post("/chat/sessions").json()["id"]
    api.post("/chat/sessions")

    state = api.post(f"/chat/sessions/{first}/select").json()
    assert state["session_id"] == first
    assert api.post("/chat/sessions/session-missing/select").status_code == 404
    assert api.get("/chat/sessions/session-missing").status_code == 404

    assert api.delete(f"/chat/sessions/{first}").json() == {"ok": True}
    assert api.delete(f"/chat/sessions/{first}").json() == {"error": "Session not found."}

    api.delete("/chat/sessions/all")
    sessions = api.get("/chat/sessions").json()["sessions"]
    assert len(sessions) == 1
    assert sessions[0]["message_count"] == 0


def test_saved_visualizations(api):
    assert api.post("/visualizations", json={"visualization": {"type": "bar"}, "title": "  "}).json() == {
        "error": "Title is required."
    }
    saved = api.post(
        "/visualizations",
        json={"visualization": {"type": "pie", "plotly_code": "{}"}, "title": "Share by region"},
    ).json()
    assert saved["id"].startswith("viz-")
    assert saved["payload"] == "{}"

    listing = api.get("/visualizations").json()["visualizations"]
    assert [v["title"] for v in listing] == ["Share by region"]

    assert api.delete(f"/visualizations/{saved['id']}").json() == {"ok": True}
    assert api.get("/visualizations").json() == {"visualizations": []}


def test_render_visualization(api):
    body = api.post(
        "/visualizations/render",
        json={
            "visualization": {"type": "bar", "payload": "fig = px.bar(df)"},
            "results": {"columns": ["city", "n"], "rows": [{"city": "Oslo", "n": 3}]},
        },
    ).json()
    assert body["figure"]["title"] == "n by city"
    assert body["plotly"]["data"] == [{"type": "bar", "x": ["Oslo"], "y": [3.0]}]


def test_login_sets_user(api, service):
    def handler(request):
        if request.url.path == "/token":
            return httpx.Response(200, json={"access_token": "tok", "token_type": "bearer"})
        if request.url.path == "/users/me":
            return httpx.Response(200, json={"id": 12, "username": "ada"})
        return httpx.Response(404)

    service.handler_override = handler
    body = api.post("/auth/login", json={"username": "ada", "password": "pw"}).json()
    assert body == {"token_type": "bearer", "user": {"id": 12, "username": "ada"}}
    assert service.requests[1].headers["authorization"] == "Bearer tok"

    assert api.post("/auth/logout").json() == {"ok": True}


def test_login_failure_maps_upstream_status(api, service):
    service.handler_override = lambda request: httpx.Response(401, json={"detail": "Incorrect username or password"})
    assert api.post("/auth/login", json={"username": "ada", "password": "bad"}).status_code == 401
