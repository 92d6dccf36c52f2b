import json

from fastapi import status

from tests.conftest import INGEST_PATH, TOKEN_HEADER, api_client, fake_sink, make_token, patch_verify  # noqa: F401

SERVER = "srv-na-7"


def _headers(token: str, content_type: str = "application/json") -> dict:
    return {TOKEN_HEADER: token, "Content-Type": content_type}


def test_end_to_end_example(api_client, patch_verify, fake_sink):
    token = make_token(SERVER)
    body = [{"type": "match_start", "match_id": "m1"}, {"type": "", "match_id": "m2"}]
    resp = api_client.post(INGEST_PATH, content=json.dumps(body), headers=_headers(token))

    assert resp.status_code == status.HTTP_200_OK
    data = resp.json()
    assert data["total"] == 2
    assert data["processed"] == 1
    assert data["errors"] == [{"index": 1, "kind": "validation", "reason": "missing type"}]
    assert data["format"] == "json_batch"
    assert [event.match_id for event in fake_sink.rows] == ["m1"]


def test_legacy_lines_accepted(api_client, patch_verify, fake_sink):
    token = make_token(SERVER)
    body = "type=player_jump&match_id=m1&height=2\ntype=player_jump&match_id=m1&height=3\n"
    resp = api_client.post(
        INGEST_PATH, content=body, headers=_headers(token, "application/x-www-form-urlencoded")
    )

    data = resp.json()
    assert data["format"] == "legacy_lines"
    assert (data["total"], data["processed"]) == (2, 2)
    assert [event.fields["height"] for event in fake_sink.rows] == ["2", "3"]


def test_body_server_id_is_ignored(api_client, patch_verify, fake_sink):
    token = make_token(SERVER)
    body = [{"type": "kill", "match_id": "m1", "server_id": "someone-else", "weapon": "rail"}]
    resp = api_client.post(INGEST_PATH, content=json.dumps(body), headers=_headers(token))

    assert resp.json()["processed"] == 1
    (event,) = fake_sink.rows
    assert event.server_id == SERVER
    assert event.fields == {"weapon": "rail"}


def test_missing_token_rejects_whole_request(api_client, patch_verify, fake_sink):
    body = [{"type": "match_start", "match_id": "m1"}]
    resp = api_client.post(INGEST_PATH, content=json.dumps(body), headers={"Content-Type": "application/json"})

    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    assert resp.json() == {"detail": "missing_server_token"}
    assert fake_sink.calls == []


def test_token_in_body_or_query_is_not_accepted(api_client, patch_verify, fake_sink):
    token = make_token(SERVER)
    body = [{"type": "match_start", "match_id": "m1", "token": token}]
    resp = api_client.post(
        f"{INGEST_PATH}?token={token}", content=json.dumps(body), headers={"Content-Type": "application/json"}
    )
    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    assert fake_sink.calls == []


def test_unknown_token_rejected(api_client, patch_verify, fake_sink):
    resp = api_client.post(INGEST_PATH, content="[]", headers=_headers("srv_not_issued"))
    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    assert "total" not in resp.json()
    assert fake_sink.calls == []


def test_unknown_token_against_token_store(api_client, fake_sink):
    """Without the patched verifier the lookup hits the (empty) stub store."""
    resp = api_client.post(INGEST_PATH, content="[]", headers=_headers("srv_unknown"))
    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    assert resp.json()["detail"] == "invalid_token"


def test_malformed_token_format(api_client, fake_sink):
    resp = api_client.post(INGEST_PATH, content="[]", headers=_headers("d2_wrong_prefix"))
    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    assert resp.json()["detail"] == "invalid_token_format"


def test_token_without_ingest_scope(api_client, patch_verify, fake_sink):
    token = make_token(SERVER, scopes=["metrics.read"])
    resp = api_client.post(INGEST_PATH, content="[]", headers=_headers(token))
    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    assert resp.json()["detail"] == "insufficient_scope"


def test_unparseable_body_is_400(api_client, patch_verify, fake_sink):
    token = make_token(SERVER)
    resp = api_client.post(INGEST_PATH, content='[{"type":"a"}] trailing', headers=_headers(token))
    assert resp.status_code == status.HTTP_400_BAD_REQUEST
    assert resp.json()["detail"] == "unexpected data after JSON array"
    assert fake_sink.calls == []


def test_array_of_only_bad_elements_is_200(api_client, patch_verify, fake_sink):
    token = make_token(SERVER)
    resp = api_client.post(INGEST_PATH, content="[42]", headers=_headers(token))
    assert resp.status_code == status.HTTP_200_OK
    data = resp.json()
    assert (data["total"], data["processed"]) == (1, 0)
    assert data["errors"] == [{"index": 0, "kind": "parse", "reason": "element is not an object"}]
    assert fake_sink.calls == []


def test_empty_array_is_empty_result(api_client, patch_verify, fake_sink):
    token = make_token(SERVER)
    resp = api_client.post(INGEST_PATH, content="[]", headers=_headers(token))
    assert resp.status_code == status.HTTP_200_OK
    assert resp.json()["total"] == 0
    assert fake_sink.calls == []


def test_sink_failure_is_business_failure_not_transport_failure(api_client, patch_verify, fake_sink):
    fake_sink.fail = True
    token = make_token(SERVER)
    body = [{"type": "a", "match_id": "m"}, {"type": "a"}]
    resp = api_client.post(INGEST_PATH, content=json.dumps(body), headers=_headers(token))

    assert resp.status_code == status.HTTP_200_OK
    data = resp.json()
    assert data["processed"] == 0
    assert data["errors"] == [
        {"index": 0, "kind": "sink", "reason": "sink unavailable"},
        {"index": 1, "kind": "validation", "reason": "missing match_id"},
    ]


def test_ingest_rejects_large_payload(api_client, patch_verify, fake_sink):
    """Body above MAX_BATCH_BYTES should be rejected with 413."""
    from telemetry_gateway.settings import MAX_BATCH_BYTES

    token = make_token(SERVER)
    big = json.dumps([{"type": "chat", "match_id": "m", "text": "a" * (MAX_BATCH_BYTES + 1)}])
    resp = api_client.post(INGEST_PATH, content=big, headers=_headers(token))
    assert resp.status_code == status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    assert fake_sink.calls == []


def test_request_id_echoed(api_client, patch_verify, fake_sink):
    token = make_token(SERVER)
    headers = {**_headers(token), "X-Request-Id": "abc123"}
    resp = api_client.post(INGEST_PATH, content="[]", headers=headers)
    assert resp.headers["X-Request-Id"] == "abc123"
