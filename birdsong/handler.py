"""
HTTP request handling, independent of the transport (Flask or API Gateway).

One request walks: received -> validated -> audio resolved -> window ready ->
inferred -> post-processed -> responded. Any step can end in an error
envelope; nothing escapes as an unhandled exception and nothing is retried.
"""
import base64
import binascii
import json
import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import numpy as np

from birdsong.config import (
    MAX_AUDIO_FILE_CHARS,
    MAX_BODY_BYTES,
    MAX_PCM_SAMPLE_RATE,
    MAX_PCM_SAMPLES,
    MIN_PCM_SAMPLE_RATE,
    SAMPLE_RATE,
    WINDOW_SAMPLES,
    Settings,
)
from birdsong.errors import (
    AuthError,
    BirdsongError,
    InvalidJSONError,
    RequestTooLargeError,
    ValidationError,
)
from birdsong.inference import InferenceEngine
from birdsong.postprocess import clamp_options, process
from birdsong.registry import ModelRegistry
from birdsong.utils.audio import FFmpegDecoder, fit_window, resample
from birdsong.utils.logs import log_exc

log = logging.getLogger("birdsong.handler")

ALLOWED_METHODS = "GET, POST, OPTIONS"
ALLOWED_HEADERS = "Content-Type, Authorization, X-API-Key"
NO_AUDIO = 'No audio data provided - send either "audio" array or "audioFile" base64 string'


@dataclass
class HandlerResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None

    def text(self) -> str:
        return "" if self.body is None else json.dumps(self.body)


@dataclass
class AudioInput:
    encoded: Optional[bytes] = None
    samples: Optional[np.ndarray] = None
    sample_rate: int = SAMPLE_RATE


def _is_finite_number(v: Any) -> bool:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return False
    try:
        return math.isfinite(v)
    except OverflowError:  # JSON integers are unbounded
        return False


def _strip_data_uri(s: str) -> str:
    if s.startswith("data:") and "," in s:
        return s.split(",", 1)[1]
    return s


class RequestHandler:
    def __init__(self, registry: ModelRegistry, settings: Optional[Settings] = None,
                 decoder=None, engine: Optional[InferenceEngine] = None):
        self.settings = settings or Settings.from_env()
        self.registry = registry
        self.decoder = decoder or FFmpegDecoder(self.settings.ffmpeg_binary, SAMPLE_RATE,
                                                timeout=self.settings.decode_timeout)
        self.engine = engine or InferenceEngine(registry)

    # ------------------ entry point ------------------
    def handle(self, method: str, path: str, headers: Optional[Mapping[str, str]] = None,
               body: bytes = b"", query: Optional[Mapping[str, Any]] = None,
               request_id: Optional[str] = None, source_ip: Optional[str] = None,
               body_size: Optional[int] = None) -> HandlerResponse:
        """`body_size` lets a transport report a body it declined to read; it defaults to len(body)."""
        start = time.monotonic()
        headers = {str(k).lower(): v for k, v in (headers or {}).items()}
        request_id = self.request_id(headers, request_id)
        method = (method or "").upper()
        route = (path or "/").rstrip("/")
        log.info(f"[{request_id}] {method} {path} from {source_ip}")

        try:
            if method == "OPTIONS":
                return self._respond(200, None, request_id)
            if method == "GET" and route.endswith("/health"):
                return self.health(request_id)
            if method == "POST" and route.endswith("/identify-bird"):
                return self.identify(headers, body or b"", query or {}, request_id, start, body_size)
            return self._respond(404, {"success": False, "error": "Endpoint not found"}, request_id)
        except Exception as e:
            log_exc(log, f"[{request_id}] unhandled", e)
            return self._failure(e, request_id, start)

    @staticmethod
    def request_id(headers: Mapping[str, str], supplied: Optional[str] = None) -> str:
        """Transport-supplied id, else the X-Request-Id header (lower-cased keys), else a fresh uuid4."""
        return supplied or headers.get("x-request-id") or str(uuid.uuid4())

    # ------------------ routes ------------------
    def health(self, request_id: str) -> HandlerResponse:
        # liveness only: never load artifacts here
        return self._respond(200, {
            "status": "healthy",
            "speciesCount": self.registry.species_count,
            "timestamp": int(time.time() * 1000),
            "environment": self.settings.environment,
            "requestId": request_id,
        }, request_id)

    def identify(self, headers: Mapping[str, str], body: bytes, query: Mapping[str, Any],
                 request_id: str, start: float, body_size: Optional[int] = None) -> HandlerResponse:
        body_size = len(body) if body_size is None else body_size
        if self.settings.is_production and not headers.get("x-api-key"):
            log.warning(f"[{request_id}] Missing API key")
            return self.reject(AuthError("API key required"), request_id, with_id=True)

        if body_size > MAX_BODY_BYTES:
            log.warning(f"[{request_id}] Request too large: {body_size} bytes")
            return self.reject(RequestTooLargeError("Request too large"), request_id, with_id=True)

        try:
            audio, threshold, max_results = self.parse(headers, body, query)
        except ValidationError as e:
            log.warning(f"[{request_id}] Rejected request: {e}")
            return self.reject(e, request_id, with_id=isinstance(e, InvalidJSONError))

        try:
            if audio.encoded is not None:
                samples = self.decoder.decode(audio.encoded)
                rate = SAMPLE_RATE
                log.info(f"[{request_id}] Decoded to {len(samples)} samples at {rate}Hz")
            else:
                samples, rate = audio.samples, audio.sample_rate

            samples = resample(samples, rate, SAMPLE_RATE, max_samples=WINDOW_SAMPLES)
            # the classifier input is always exactly one window, whatever came before
            window = fit_window(samples)
            log.info(f"[{request_id}] Processing {len(window)} audio samples")

            bundle = self.registry.ensure_loaded()
            scores = self.engine.infer(window)
            results = process(scores, bundle.labels, threshold, max_results)
        except ValidationError as e:
            log.warning(f"[{request_id}] Rejected request: {e}")
            return self.reject(e, request_id)
        except Exception as e:
            log_exc(log, f"[{request_id}] identify-bird", e)
            return self._failure(e, request_id, start)

        elapsed = int((time.monotonic() - start) * 1000)
        log.info(f"[{request_id}] {len(results)} detections in {elapsed}ms")
        return self._respond(200, {
            "success": True,
            "results": [r.to_dict() for r in results],
            "processing_time_ms": elapsed,
        }, request_id)

    # ------------------ input resolution ------------------
    def parse(self, headers: Mapping[str, str], body: bytes, query: Mapping[str, Any]):
        ctype = (headers.get("content-type") or "").lower()

        if "application/octet-stream" in ctype:
            if not body:
                raise ValidationError(NO_AUDIO)
            threshold, max_results = clamp_options(query)
            return AudioInput(encoded=bytes(body)), threshold, max_results

        try:
            payload = json.loads(body.decode("utf-8") if body else "{}")
        except (UnicodeDecodeError, ValueError):
            raise InvalidJSONError("Invalid JSON format") from None
        if not isinstance(payload, dict):
            raise InvalidJSONError("Invalid JSON format")

        threshold, max_results = clamp_options(payload)
        audio_file = payload.get("audioFile")
        audio = payload.get("audio")

        if isinstance(audio_file, str) and audio_file:
            if len(audio_file) > MAX_AUDIO_FILE_CHARS:
                raise ValidationError("Audio file too large (max 10MB)")
            try:
                data = base64.b64decode(_strip_data_uri(audio_file))
            except (binascii.Error, ValueError):
                raise ValidationError("audioFile must be a base64 encoded audio file") from None
            if not data:
                raise ValidationError("audioFile is empty")
            return AudioInput(encoded=data), threshold, max_results

        if isinstance(audio, list):
            if len(audio) > MAX_PCM_SAMPLES:
                raise ValidationError("Audio data too large (max 200,000 samples)")
            if not all(_is_finite_number(v) for v in audio):
                raise ValidationError("Audio must contain only numeric values")
            samples = np.asarray(audio, dtype=np.float32)
            if not np.isfinite(samples).all():  # finite doubles can overflow float32
                raise ValidationError("Audio must contain only numeric values")
            rate = payload.get("sample_rate", SAMPLE_RATE)
            if (not _is_finite_number(rate) or int(rate) != rate
                    or not MIN_PCM_SAMPLE_RATE <= rate <= MAX_PCM_SAMPLE_RATE):
                raise ValidationError(f"sample_rate must be an integer between "
                                      f"{MIN_PCM_SAMPLE_RATE} and {MAX_PCM_SAMPLE_RATE}")
            return AudioInput(samples=samples, sample_rate=int(rate)), threshold, max_results

        raise ValidationError(NO_AUDIO)

    # ------------------ responses ------------------
    def cors_headers(self) -> Dict[str, str]:
        return {
            "Access-Control-Allow-Origin": self.settings.allowed_origin,
            "Access-Control-Allow-Methods": ALLOWED_METHODS,
            "Access-Control-Allow-Headers": ALLOWED_HEADERS,
        }

    def _respond(self, status: int, body: Optional[Dict[str, Any]], request_id: str) -> HandlerResponse:
        headers = self.cors_headers()
        headers["X-Request-Id"] = request_id
        if body is not None:
            headers["Content-Type"] = "application/json"
        return HandlerResponse(status=status, headers=headers, body=body)

    def reject(self, exc: BirdsongError, request_id: str, with_id: bool = False) -> HandlerResponse:
        body = {"success": False, "error": str(exc)}
        if with_id:
            body["requestId"] = request_id
        return self._respond(exc.status, body, request_id)

    def _failure(self, exc: Exception, request_id: str, start: float) -> HandlerResponse:
        status = exc.status if isinstance(exc, BirdsongError) else 500
        return self._respond(status, {
            "success": False,
            "error": str(exc) or exc.__class__.__name__,
            "processing_time_ms": int((time.monotonic() - start) * 1000),
        }, request_id)
