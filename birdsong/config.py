import os
from dataclasses import dataclass
from typing import Optional

# -------- Model input contract --------
SAMPLE_RATE    = 48000
WINDOW_SECONDS = 3.0
WINDOW_SAMPLES = int(SAMPLE_RATE * WINDOW_SECONDS)  # 144000

# -------- Request ceilings (redeploy to change) --------
MAX_BODY_BYTES       = 10 * 1024 * 1024
MAX_AUDIO_FILE_CHARS = 10 * 1024 * 1024 * 1.33  # base64 is ~33% larger
MAX_PCM_SAMPLES      = 200_000
MIN_PCM_SAMPLE_RATE  = 8000
MAX_PCM_SAMPLE_RATE  = 192000

# -------- Post-processing defaults and clamps --------
DEFAULT_CONFIDENCE_THRESHOLD = 0.1
DEFAULT_MAX_RESULTS          = 10
MIN_MAX_RESULTS              = 1
MAX_MAX_RESULTS              = 50

DEFAULT_MODEL_DIR = "/mnt/efs/models/model-data/model"
PRODUCTION_ENVIRONMENTS = ("prod", "production")


@dataclass(frozen=True)
class Settings:
    region: str = "eu-north-1"
    allowed_origin: str = "*"
    environment: str = "dev"
    model_dir: str = DEFAULT_MODEL_DIR
    labels_path: Optional[str] = None
    artifact_cache_dir: str = "/tmp/birdsong-model"
    ffmpeg_binary: str = "ffmpeg"
    decode_timeout: float = 30.0
    log_level: str = "INFO"
    port: int = 8080

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in PRODUCTION_ENVIRONMENTS

    @classmethod
    def from_env(cls, env=None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            region=env.get("AWS_REGION", env.get("AWS_DEFAULT_REGION", "eu-north-1")),
            allowed_origin=env.get("ALLOWED_ORIGIN", "*"),
            environment=env.get("ENVIRONMENT", "dev"),
            model_dir=env.get("MODEL_DIR", env.get("SM_MODEL_DIR", DEFAULT_MODEL_DIR)),
            labels_path=env.get("LABELS_PATH") or None,
            artifact_cache_dir=env.get("ARTIFACT_CACHE_DIR", "/tmp/birdsong-model"),
            ffmpeg_binary=env.get("FFMPEG_BINARY", "ffmpeg"),
            decode_timeout=float(env.get("DECODE_TIMEOUT_SECONDS", "30")),
            log_level=env.get("LOG_LEVEL", "INFO"),
            port=int(env.get("PORT", "8080")),
        )
