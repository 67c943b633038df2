# tests/test_api.py
from fastapi.testclient import TestClient

from hatym.domain.states import TOTAL_PAGES


def _new_session(client: TestClient) -> str:
    r = client.post("/sessions")
    assert r.status_code == 201, r.text
    return r.json()["session_id"]


def _claim(client: TestClient, session_id: str, participant: str, **extra) -> list[dict]:
    r = client.post(f"/sessions/{session_id}/claim", json={"participant_id": participant, **extra})
    assert r.status_code == 200, r.text
    return r.json()["rows"]


def test_healthz(client: TestClient):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_create_and_read_session(client: TestClient):
    session_id = _new_session(client)

    r = client.get(f"/sessions/{session_id}")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["id"] == session_id
    assert body["is_active"] is True
    assert body["completed_count"] == 0
    assert body["total_pages"] == TOTAL_PAGES
    assert body["finished"] is False

    assert client.get("/sessions/active").json()["id"] == session_id


def test_new_session_keeps_history(client: TestClient):
    first = _new_session(client)
    second = _new_session(client)

    assert client.get("/sessions/active").json()["id"] == second
    assert client.get(f"/sessions/{first}").json()["is_active"] is False

    listing = client.get("/sessions").json()
    assert listing["total"] == 2
    assert [s["id"] for s in listing["sessions"]] == [second, first]


def test_scenario_a_over_http(client: TestClient):
    session_id = _new_session(client)

    a = _claim(client, session_id, "A")
    b = _claim(client, session_id, "B")
    assert [(r["page_number"], r["status"]) for r in a] == [(1, "assigned")]
    assert [(r["page_number"], r["status"]) for r in b] == [(2, "assigned")]

    r = client.post(
        f"/sessions/{session_id}/pages/1/complete",
        json={"participant_id": "A", "lease_token": a[0]["lease_token"]},
    )
    assert r.status_code == 200, r.text
    assert r.json() == {"status": "completed", "completed_count": 1, "finished": False}

    again = _claim(client, session_id, "A")
    assert again == [{"page_number": None, "lease_token": None, "status": "limit_reached"}]


def test_stale_token_is_rejected_not_an_error(client: TestClient):
    session_id = _new_session(client)
    row = _claim(client, session_id, "A")[0]

    r = client.post(
        f"/sessions/{session_id}/pages/{row['page_number']}/complete",
        json={"participant_id": "A", "lease_token": "not-the-token"},
    )
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "rejected"
    assert r.json()["completed_count"] == 0


def test_claim_overrides_deployment_limits(client: TestClient):
    session_id = _new_session(client)
    rows = _claim(client, session_id, "A", max_per_user=3)
    assert [r["page_number"] for r in rows] == [1, 2, 3]

    single = _claim(client, session_id, "B", max_per_user=3, limit=1)
    assert [r["page_number"] for r in single] == [4]


def test_claim_uses_configured_max_pages(client_factory):
    with client_factory(overrides={"HATYM_MAX_PAGES_PER_USER": "3"}) as client:
        session_id = _new_session(client)
        rows = _claim(client, session_id, "A")
        assert [r["page_number"] for r in rows] == [1, 2, 3]


def test_page_views_hide_tokens_from_others(client: TestClient):
    session_id = _new_session(client)
    row = _claim(client, session_id, "A")[0]

    pages = client.get(f"/sessions/{session_id}/pages").json()
    assert len(pages["pages"]) == TOTAL_PAGES
    assert all(p["lease_token"] is None for p in pages["pages"])
    assert pages["pages"][0]["status"] == "assigned"
    assert pages["cursor"] >= 1

    anonymous = client.get(f"/sessions/{session_id}/pages/1").json()
    assert anonymous["holder"] == "A"
    assert anonymous["lease_token"] is None

    other = client.get(f"/sessions/{session_id}/pages/1", params={"participant_id": "B"}).json()
    assert other["lease_token"] is None

    own = client.get(f"/sessions/{session_id}/pages/1", params={"participant_id": "A"}).json()
    assert own["lease_token"] == row["lease_token"]

    held = client.get(f"/sessions/{session_id}/participants/A/pages").json()
    assert [(p["page_number"], p["lease_token"]) for p in held] == [(1, row["lease_token"])]


def test_change_stream_pages_through_cursor(client: TestClient):
    session_id = _new_session(client)
    _claim(client, session_id, "A")
    _claim(client, session_id, "B")

    r = client.get(f"/sessions/{session_id}/changes", params={"after": 0, "limit": 1})
    assert r.status_code == 200, r.text
    first = r.json()
    assert [c["page_number"] for c in first["changes"]] == [1]

    rest = client.get(f"/sessions/{session_id}/changes", params={"after": first["cursor"]}).json()
    assert [c["page_number"] for c in rest["changes"]] == [2]
    assert "lease_token" not in rest["changes"][0]

    empty = client.get(f"/sessions/{session_id}/changes", params={"after": rest["cursor"]}).json()
    assert empty["changes"] == []
    assert empty["cursor"] == rest["cursor"]


def test_release_expired_endpoint(client: TestClient):
    session_id = _new_session(client)
    _claim(client, session_id, "A")

    r = client.post(f"/sessions/{session_id}/release-expired", json={"ttl_minutes": 30})
    assert r.status_code == 200, r.text
    assert r.json() == {"released": 0}

    r = client.post(f"/sessions/{session_id}/release-expired")
    assert r.status_code == 200, r.text
    assert r.json() == {"released": 0}


def test_unknown_session_returns_404(client: TestClient):
    r = client.post("/sessions/nope/claim", json={"participant_id": "A"})
    assert r.status_code == 404, r.text
    body = r.json()
    assert body["code"] == "NOT_FOUND"
    assert body["details"] == {"session_id": "nope"}

    assert client.get("/sessions/nope").status_code == 404
    assert client.get("/sessions/nope/pages").status_code == 404
    assert client.get("/sessions/nope/changes").status_code == 404


def test_no_active_session_returns_404(client: TestClient):
    r = client.get("/sessions/active")
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"


def test_invalid_input_returns_422(client: TestClient):
    session_id = _new_session(client)

    assert client.post(f"/sessions/{session_id}/claim", json={"participant_id": "  "}).status_code == 422
    assert client.post(f"/sessions/{session_id}/claim", json={"participant_id": "A", "limit": 0}).status_code == 422
    r = client.post(
        f"/sessions/{session_id}/pages/{TOTAL_PAGES + 1}/complete",
        json={"participant_id": "A", "lease_token": "t"},
    )
    assert r.status_code == 422


def test_superseded_session_returns_409(client: TestClient):
    old = _new_session(client)
    row = _claim(client, old, "A")[0]
    _new_session(client)

    r = client.post(f"/sessions/{old}/claim", json={"participant_id": "B"})
    assert r.status_code == 409, r.text
    assert r.json()["code"] == "CONFLICT"

    r = client.post(
        f"/sessions/{old}/pages/1/complete",
        json={"participant_id": "A", "lease_token": row["lease_token"]},
    )
    assert r.status_code == 409, r.text
    assert client.get(f"/sessions/{old}").json()["completed_count"] == 0

    r = client.post(f"/sessions/{old}/release-expired", json={"ttl_minutes": 1})
    assert r.json() == {"released": 0}
