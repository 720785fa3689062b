from fastapi.testclient import TestClient

from healthwallet.app import app
from healthwallet.routes.records_routes import get_pipeline


def test_not_found_envelope_carries_trace_id(client):
    r = client.get("/api/records/does-not-exist", headers={"x-trace-id": "trace-abc"})
    assert r.status_code == 404
    j = r.json()
    assert j["code"] == "RECORD_NOT_FOUND"
    assert j["message"] == "Record not found"
    assert j["details"] == {"record_id": "does-not-exist"}
    assert j["trace_id"] == "trace-abc"
    assert r.headers["x-trace-id"] == "trace-abc"


def test_trace_id_generated_when_missing(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.headers["x-trace-id"]


def test_http_exception_envelope(client):
    r = client.get("/api/records/comparison")
    assert r.status_code == 400
    j = r.json()
    assert j["code"] == "BAD_REQUEST"
    assert "two completed records" in j["message"]
    assert "trace_id" in j


def test_validation_error_envelope(client):
    r = client.get("/api/records/", params={"page": 0})
    assert r.status_code == 422
    j = r.json()
    assert j["code"] == "UNPROCESSABLE_ENTITY"
    assert isinstance(j["details"], list)
    assert "trace_id" in j


def test_invalid_transition_envelope(client, make_record):
    record = make_record()
    r = client.post(f"/api/records/{record.id}/verify", json={"approved": True})
    assert r.status_code == 409
    j = r.json()
    assert j["code"] == "INVALID_TRANSITION"
    assert j["details"]["status"] == "uploading"


class _Boom:
    def finalize(self, *a, **k):
        raise ValueError("boom")


def test_unhandled_exception_envelope(make_record):
    record = make_record()
    app.dependency_overrides[get_pipeline] = lambda: _Boom()
    try:
        r = TestClient(app, raise_server_exceptions=False).post(f"/api/records/{record.id}/finalize")
    finally:
        app.dependency_overrides.pop(get_pipeline, None)
    assert r.status_code == 500
    j = r.json()
    assert j["code"] == "INTERNAL_SERVER_ERROR"
    assert j["details"] == "boom"
    assert "trace_id" in j
