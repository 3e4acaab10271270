#!/usr/bin/env python3
import argparse
import logging
import os
from typing import Optional

from flask import Flask, Response, request

from birdsong.config import MAX_BODY_BYTES, Settings
from birdsong.handler import RequestHandler
from birdsong.registry import ModelRegistry
from birdsong.utils.logs import setup_logging

log = logging.getLogger("birdsong.serve")

# every method reaches the handler so unknown routes get the JSON 404 envelope
METHODS = ["GET", "POST", "OPTIONS", "PUT", "PATCH", "DELETE"]


def build_handler(settings: Optional[Settings] = None) -> RequestHandler:
    settings = settings or Settings.from_env()
    return RequestHandler(ModelRegistry.from_settings(settings), settings)


def create_app(handler: Optional[RequestHandler] = None) -> Flask:
    handler = handler or build_handler()
    app = Flask(__name__)
    app.extensions["birdsong"] = handler

    @app.route("/", defaults={"path": ""}, methods=METHODS, provide_automatic_options=False)
    @app.route("/<path:path>", methods=METHODS, provide_automatic_options=False)
    def dispatch(path: str) -> Response:
        # oversized bodies are left unread; the handler still answers with its 413 envelope
        size = request.content_length
        too_large = size is not None and size > MAX_BODY_BYTES
        resp = handler.handle(
            request.method,
            "/" + path,
            headers=dict(request.headers),
            body=b"" if too_large else request.get_data(cache=False),
            query=request.args.to_dict(),
            source_ip=request.remote_addr,
            body_size=size if too_large else None,
        )
        return Response(resp.text(), status=resp.status, headers=resp.headers)

    return app


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Serve the bird identification API")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=None)
    p.add_argument("--preload", action="store_true",
                   help="load labels and model before accepting requests")
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    log.info(f"[startup] MODEL_DIR={settings.model_dir} ENVIRONMENT={settings.environment}")
    if os.path.isdir(settings.model_dir):
        for name in sorted(os.listdir(settings.model_dir))[:30]:
            log.info(f"[startup] found: {os.path.join(settings.model_dir, name)}")

    handler = build_handler(settings)
    if args.preload:
        handler.registry.ensure_loaded()

    port = args.port or settings.port
    log.info(f"[startup] Flask on {args.host}:{port}")
    from werkzeug.serving import run_simple
    run_simple(args.host, port, create_app(handler), use_reloader=False, threaded=True)


if __name__ == "__main__":
    main()
