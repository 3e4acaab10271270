"""
API Gateway (REST, Lambda proxy integration) entry point.

The handler and its registry are created once per execution environment, at
cold start; the model itself still loads lazily on the first identification.
"""
import base64
import binascii
import logging

from birdsong.config import Settings
from birdsong.errors import ValidationError
from birdsong.handler import RequestHandler
from birdsong.registry import ModelRegistry
from birdsong.utils.logs import setup_logging

SETTINGS = Settings.from_env()
setup_logging(SETTINGS.log_level)
log = logging.getLogger("birdsong.lambda")

HANDLER = RequestHandler(ModelRegistry.from_settings(SETTINGS), SETTINGS)


def _event_body(event) -> bytes:
    body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        return base64.b64decode(body, validate=True)
    return body.encode("utf-8")


def lambda_handler(event, context):
    ctx = event.get("requestContext") or {}
    method = event.get("httpMethod") or (ctx.get("http") or {}).get("method", "")
    path = event.get("path") or event.get("rawPath") or event.get("resource") or "/"
    source_ip = (ctx.get("identity") or {}).get("sourceIp") or (ctx.get("http") or {}).get("sourceIp")
    headers = {str(k).lower(): v for k, v in (event.get("headers") or {}).items()}
    request_id = HANDLER.request_id(headers, getattr(context, "aws_request_id", None))

    try:
        body = _event_body(event)
    except (binascii.Error, ValueError):
        log.warning(f"[{request_id}] Rejected request: body is not valid base64")
        resp = HANDLER.reject(ValidationError("Request body is not valid base64"), request_id)
    else:
        resp = HANDLER.handle(
            method,
            path,
            headers=headers,
            body=body,
            query=event.get("queryStringParameters") or {},
            request_id=request_id,
            source_ip=source_ip,
        )
    return {"statusCode": resp.status, "headers": resp.headers, "body": resp.text()}
