import base64
import json
from types import SimpleNamespace

import pytest

from birdsong import lambda_function
from birdsong.handler import RequestHandler

from conftest import FakeDecoder, StubEngine


@pytest.fixture
def decoder():
    return FakeDecoder()


@pytest.fixture(autouse=True)
def handler(monkeypatch, registry, settings, decoder):
    h = RequestHandler(registry, settings, decoder=decoder, engine=StubEngine([0.9, 0.3, 0.62, 0.05]))
    monkeypatch.setattr(lambda_function, "HANDLER", h)
    return h


CONTEXT = SimpleNamespace(aws_request_id="lambda-req-1")


def test_rest_health():
    event = {"httpMethod": "GET", "path": "/health", "headers": {},
             "requestContext": {"identity": {"sourceIp": "203.0.113.9"}}}
    out = lambda_function.lambda_handler(event, CONTEXT)
    assert out["statusCode"] == 200
    assert out["headers"]["X-Request-Id"] == "lambda-req-1"
    body = json.loads(out["body"])
    assert body["status"] == "healthy"
    assert body["requestId"] == "lambda-req-1"


def test_rest_identify():
    event = {"httpMethod": "POST", "path": "/identify-bird",
             "headers": {"Content-Type": "application/json"},
             "body": json.dumps({"audio": [0.1] * 10, "max_results": 1})}
    out = lambda_function.lambda_handler(event, CONTEXT)
    assert out["statusCode"] == 200
    results = json.loads(out["body"])["results"]
    assert [r["species"] for r in results] == ["Turdus migratorius"]


def test_http_api_v2_event():
    event = {"rawPath": "/identify-bird", "requestContext": {"http": {"method": "OPTIONS"}}}
    out = lambda_function.lambda_handler(event, CONTEXT)
    assert out["statusCode"] == 200
    assert out["body"] == ""
    assert out["headers"]["Access-Control-Allow-Origin"] == "*"


def test_base64_encoded_binary_body(decoder):
    event = {"httpMethod": "POST", "path": "/identify-bird",
             "headers": {"content-type": "application/octet-stream"},
             "body": base64.b64encode(b"\x00mp3 bytes").decode(), "isBase64Encoded": True,
             "queryStringParameters": {"confidence_threshold": "0.5"}}
    out = lambda_function.lambda_handler(event, CONTEXT)
    assert out["statusCode"] == 200
    assert decoder.calls == [b"\x00mp3 bytes"]
    assert len(json.loads(out["body"])["results"]) == 2


@pytest.mark.parametrize("body", ["not*base64!", "abc"])
def test_malformed_base64_body_is_400(decoder, body):
    event = {"httpMethod": "POST", "path": "/identify-bird",
             "headers": {"Content-Type": "application/octet-stream"},
             "body": body, "isBase64Encoded": True}
    out = lambda_function.lambda_handler(event, CONTEXT)
    assert out["statusCode"] == 400
    assert json.loads(out["body"]) == {"success": False, "error": "Request body is not valid base64"}
    assert out["headers"]["X-Request-Id"] == "lambda-req-1"
    assert out["headers"]["Access-Control-Allow-Origin"] == "*"
    assert decoder.calls == []


def test_request_id_header_without_context():
    event = {"httpMethod": "GET", "path": "/health", "headers": {"X-Request-Id": "gw-7"}}
    out = lambda_function.lambda_handler(event, None)
    assert out["headers"]["X-Request-Id"] == "gw-7"


def test_missing_body_is_rejected():
    event = {"httpMethod": "POST", "path": "/identify-bird", "headers": None, "body": None}
    out = lambda_function.lambda_handler(event, None)
    assert out["statusCode"] == 400
    assert "X-Request-Id" in out["headers"]


def test_unknown_route():
    out = lambda_function.lambda_handler({"httpMethod": "GET", "path": "/x"}, CONTEXT)
    assert out["statusCode"] == 404
