import json

import flask
import pytest

from birdsong.config import MAX_BODY_BYTES
from birdsong.handler import RequestHandler
from birdsong.serve import create_app, parse_args

from conftest import FakeDecoder, StubEngine


@pytest.fixture
def client(registry, settings):
    handler = RequestHandler(registry, settings, decoder=FakeDecoder(), engine=StubEngine([0.9, 0.3, 0.62, 0.05]))
    app = create_app(handler)
    app.testing = True
    return app.test_client()


def test_preflight_has_cors_and_no_body(client):
    resp = client.options("/identify-bird")
    assert resp.status_code == 200
    assert resp.data == b""
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    assert resp.headers["Access-Control-Allow-Methods"] == "GET, POST, OPTIONS"
    assert resp.headers["Access-Control-Allow-Headers"] == "Content-Type, Authorization, X-API-Key"


def test_health(client):
    resp = client.get("/health", headers={"X-Request-Id": "flask-1"})
    assert resp.status_code == 200
    assert resp.headers["X-Request-Id"] == "flask-1"
    body = resp.get_json()
    assert body["status"] == "healthy"
    assert body["requestId"] == "flask-1"


def test_identify(client):
    resp = client.post("/identify-bird", data=json.dumps({"audio": [0.1] * 100}),
                       content_type="application/json")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert [r["commonName"] for r in body["results"]] == ["American Robin", "Northern Cardinal", "Mystery Bird"]


def test_identify_under_stage_prefix(client):
    resp = client.post("/prod/identify-bird", data=json.dumps({"audio": [0.1]}),
                       content_type="application/json")
    assert resp.status_code == 200


def test_invalid_json(client):
    resp = client.post("/identify-bird", data="{oops", content_type="application/json")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Invalid JSON format"


def test_oversized_body_is_413_without_reading_it(client, monkeypatch):
    def no_read(*args, **kwargs):
        raise AssertionError("oversized body was read")

    monkeypatch.setattr(flask.Request, "get_data", no_read)
    resp = client.post("/identify-bird", data=b" " * (MAX_BODY_BYTES + 1),
                       content_type="application/json", headers={"X-Request-Id": "too-big"})
    assert resp.status_code == 413
    assert resp.get_json() == {"success": False, "error": "Request too large", "requestId": "too-big"}


def test_body_at_limit_is_read(client):
    pad = MAX_BODY_BYTES - len(b'{"audio": [0.1]}')
    resp = client.post("/identify-bird", data=b'{"audio": [0.1]}' + b" " * pad,
                       content_type="application/json")
    assert resp.status_code == 200


def test_octet_stream_options_from_query(client):
    resp = client.post("/identify-bird?max_results=2", data=b"\x00\x01",
                       content_type="application/octet-stream")
    assert resp.status_code == 200
    assert len(resp.get_json()["results"]) == 2


@pytest.mark.parametrize("method, path", [("get", "/"), ("get", "/nope"), ("put", "/identify-bird")])
def test_unknown_route_is_json_404(client, method, path):
    resp = getattr(client, method)(path)
    assert resp.status_code == 404
    assert resp.get_json() == {"success": False, "error": "Endpoint not found"}


def test_parse_args():
    args = parse_args(["--port", "9000", "--preload"])
    assert args.port == 9000 and args.preload and args.host == "0.0.0.0"
    assert parse_args([]).port is None
