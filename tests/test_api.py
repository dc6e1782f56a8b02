from __future__ import annotations

from fastapi.testclient import TestClient

from exam_compiler.main import create_app
from exam_compiler.services.storage import MemoryStore, code_key

from tests.fakes import FakeClock, FakePiston, sum_program

SUM_SOURCE = "a, b = map(int, input().split())\nprint(a + b)"


def _client(store: MemoryStore | None = None, clock: FakeClock | None = None) -> tuple[TestClient, FakePiston]:
    piston = FakePiston(sum_program)
    app = create_app(store=store if store is not None else MemoryStore(), transport=piston.transport, clock=clock or FakeClock())
    return TestClient(app), piston


def _open(client: TestClient, **body: object) -> dict:
    response = client.post("/v1/sessions", json={"question_id": "q1", **body})
    assert response.status_code == 201
    return response.json()


def test_healthz() -> None:
    client, _ = _client()
    assert client.get("/healthz").json() == {"status": "ok"}


def test_create_session_loads_template() -> None:
    client, _ = _client()
    state = _open(client, language="python")

    assert state["language"] == "python"
    assert state["text"] == 'print("Hello World")'
    assert state["line_count"] == 1
    assert state["gutter"] == "1"
    assert state["selection"] == {"start": 0, "end": 0}
    assert state["status"] == {"code": 'print("Hello World")', "passed": None}


def test_typing_through_key_endpoint() -> None:
    client, _ = _client()
    sid = _open(client, language="javascript")["session_id"]

    client.put(f"/v1/sessions/{sid}/text", json={"text": "function f() ", "selection": {"start": 13, "end": 13}})
    response = client.post(f"/v1/sessions/{sid}/keys", json={"key": "{"})
    assert response.json()["intent"] == "auto_close"

    response = client.post(f"/v1/sessions/{sid}/keys", json={"key": "Enter"})
    body = response.json()
    assert body["intent"] == "expand_braces"
    assert body["state"]["text"] == "function f() {\n    \n}"
    assert body["state"]["selection"] == {"start": 19, "end": 19}
    assert body["state"]["line_count"] == 3
    assert body["state"]["gutter"] == "1\n2\n3"
    assert body["state"]["can_undo"] is True


def test_run_and_run_tests() -> None:
    clock = FakeClock()
    client, piston = _client(clock=clock)
    sid = _open(
        client,
        language="python",
        test_cases=[{"input": "10 20", "expected": "30"}, {"input": "5 5", "expected": "10"}],
    )["session_id"]
    client.put(f"/v1/sessions/{sid}/text", json={"text": SUM_SOURCE})

    run = client.post(f"/v1/sessions/{sid}/run", json={"stdin": "2 3"}).json()
    assert run["kind"] == "output"
    assert run["output"] == "5\n"

    # inside the cooldown window
    clock.advance(0.5)
    tests = client.post(f"/v1/sessions/{sid}/run-tests").json()
    assert tests["ran"] is False
    assert "wait" in tests["summary"]
    assert piston.calls == 1

    clock.advance(2.0)
    tests = client.post(f"/v1/sessions/{sid}/run-tests").json()
    assert tests["ran"] is True
    assert tests["passed"] == 2
    assert tests["all_passed"] is True
    assert tests["summary"] == "You have passed 2/2 tests"
    assert tests["state"]["status"]["passed"] == 2
    assert [r["success"] for r in tests["state"]["test_results"]] == [True, True]


def test_oversized_code_never_reaches_service() -> None:
    client, piston = _client()
    sid = _open(client)["session_id"]
    client.put(f"/v1/sessions/{sid}/text", json={"text": "x" * 20_001})

    run = client.post(f"/v1/sessions/{sid}/run", json={}).json()
    assert run["kind"] == "rejected"
    assert piston.calls == 0


def test_language_switch_and_persistence() -> None:
    store = MemoryStore()
    client, _ = _client(store)
    sid = _open(client, language="python")["session_id"]
    client.put(f"/v1/sessions/{sid}/text", json={"text": "X"})

    state = client.post(f"/v1/sessions/{sid}/language", json={"language": "java"}).json()
    assert state["language"] == "java"
    assert store.get(code_key("q1", "python")) == "X"

    assert client.post(f"/v1/sessions/{sid}/language", json={"language": "cobol"}).status_code == 422

    client.delete(f"/v1/sessions/{sid}")
    reopened = _open(client, language="python")
    assert reopened["language"] == "java"


def test_paste_blocked_when_clipboard_disabled() -> None:
    client, _ = _client()
    sid = _open(client, allow_copy_paste=False)["session_id"]
    assert client.post(f"/v1/sessions/{sid}/paste", json={"text": "x"}).status_code == 403
    assert client.post(f"/v1/sessions/{sid}/copy").status_code == 403


def test_selection_and_scroll() -> None:
    client, _ = _client()
    sid = _open(client, language="python")["session_id"]

    state = client.post(f"/v1/sessions/{sid}/selection", json={"start": 0, "end": 5}).json()
    assert state["selection"] == {"start": 0, "end": 5}
    assert client.post(f"/v1/sessions/{sid}/selection", json={"start": 0, "end": 500}).status_code == 422

    state = client.post(f"/v1/sessions/{sid}/scroll", json={"offset": 120}).json()
    assert state["scroll_top"] == 120


def test_unknown_session_and_language() -> None:
    client, _ = _client()
    assert client.get("/v1/sessions/missing").status_code == 404
    assert client.post("/v1/sessions/missing/run", json={}).status_code == 404
    assert client.post("/v1/sessions", json={"question_id": "q1", "language": "cobol"}).status_code == 422
    assert client.delete("/v1/sessions/missing").status_code == 404


def test_cut_through_key_endpoint() -> None:
    client, _ = _client()
    sid = _open(client, language="python")["session_id"]
    client.put(f"/v1/sessions/{sid}/text", json={"text": "keep drop", "selection": {"start": 4, "end": 9}})

    response = client.post(f"/v1/sessions/{sid}/keys", json={"key": "x", "ctrl": True})
    assert response.json()["intent"] == "clipboard"
    assert response.json()["state"]["text"] == "keep"
