import logging
import math
import os
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

import numpy as np

from birdsong.config import SAMPLE_RATE, WINDOW_SAMPLES
from birdsong.errors import (
    DecodeFormatError,
    DecodeProcessError,
    DecodeTruncatedError,
    InvalidRateError,
)

log = logging.getLogger("birdsong.audio")


def resample(samples: np.ndarray, from_rate: int, to_rate: int,
             max_samples: Optional[int] = None) -> np.ndarray:
    """
    Linear-interpolation resample. Returns `samples` itself when the rates match.
    With `max_samples`, only the first `max_samples` output samples are computed,
    from the source prefix they depend on.
    """
    if from_rate <= 0 or to_rate <= 0:
        raise InvalidRateError(f"Sample rates must be positive (got {from_rate} -> {to_rate})")
    if from_rate == to_rate:
        return samples

    ratio = from_rate / to_rate
    n_in = len(samples)
    # half-up rounding, not Python's banker's round
    n = int(math.floor(n_in / ratio + 0.5))
    if max_samples is not None:
        n = min(n, max_samples)
    if n <= 0 or n_in == 0:
        return np.zeros(0, dtype=np.float32)

    needed = min(n_in, int(math.ceil((n - 1) * ratio)) + 2)
    y = np.asarray(samples[:needed], dtype=np.float64)
    pos = np.arange(n, dtype=np.float64) * ratio
    lo = np.floor(pos).astype(np.int64)
    hi = np.minimum(lo + 1, len(y) - 1)
    frac = pos - lo
    return (y[lo] * (1.0 - frac) + y[hi] * frac).astype(np.float32)


def fit_window(samples: np.ndarray, length: int = WINDOW_SAMPLES) -> np.ndarray:
    """Zero-pad at the end or keep the first `length` samples; the model only sees that window."""
    y = np.asarray(samples, dtype=np.float32).reshape(-1)
    out = np.zeros(length, dtype=np.float32)
    n = min(len(y), length)
    out[:n] = y[:n]
    return out


def _remove(path: Optional[str]) -> None:
    if not path:
        return
    try:
        os.unlink(path)
    except OSError as e:
        log.debug(f"scratch cleanup skipped for {path}: {e}")


class FFmpegDecoder:
    """
    Decode any container/codec ffmpeg understands into mono float32 PCM.
    Two scratch files per call (input bytes, raw f32le output); both are removed
    on every exit path.
    """

    def __init__(self, binary: str = "ffmpeg", sample_rate: int = SAMPLE_RATE,
                 timeout: float = 30.0, tmp_dir: Optional[str] = None):
        self.binary = binary
        self.sample_rate = sample_rate
        self.timeout = timeout
        self.tmp_dir = tmp_dir

    def command(self, src: str, dst: str) -> List[str]:
        return [
            self.binary, "-nostdin", "-hide_banner", "-loglevel", "error", "-y",
            "-i", src,
            "-f", "f32le",
            "-acodec", "pcm_f32le",
            "-ar", str(self.sample_rate),
            "-ac", "1",
            dst,
        ]

    def decode(self, data: bytes) -> np.ndarray:
        log.info(f"Decoding audio file with ffmpeg: {len(data)} bytes")
        src = dst = None
        try:
            fd, src = tempfile.mkstemp(prefix="input_", suffix=".audio", dir=self.tmp_dir)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            fd, dst = tempfile.mkstemp(prefix="output_", suffix=".raw", dir=self.tmp_dir)
            os.close(fd)

            try:
                proc = subprocess.run(
                    self.command(src, dst),
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    timeout=self.timeout,
                    check=False,
                )
            except subprocess.TimeoutExpired as e:
                raise DecodeProcessError(f"Audio decoding timed out after {self.timeout:g}s") from e
            except OSError as e:
                raise DecodeProcessError(f"Failed to start ffmpeg: {e.strerror or e}") from e

            if proc.returncode != 0:
                stderr = (proc.stderr or b"").decode("utf-8", errors="replace")
                log.warning(f"ffmpeg exited with code {proc.returncode}: {stderr.strip()}")
                detail = self._last_line(stderr, src, dst)
                msg = f"FFmpeg exited with code {proc.returncode}"
                raise DecodeFormatError(f"{msg}: {detail}" if detail else msg)

            raw = Path(dst).read_bytes()
        finally:
            _remove(src)
            _remove(dst)

        if not raw:
            raise DecodeTruncatedError("Audio decoding produced no samples")
        if len(raw) % 4:
            raise DecodeTruncatedError(f"Audio decoding produced a truncated stream ({len(raw)} bytes)")

        y = np.frombuffer(raw, dtype="<f4").astype(np.float32)
        log.info(f"Decoded audio: {self.sample_rate}Hz, 1 channel, {len(y)} samples")
        return y

    @staticmethod
    def _last_line(stderr: str, src: str, dst: str) -> str:
        lines = [ln.strip() for ln in stderr.splitlines() if ln.strip()]
        if not lines:
            return ""
        return lines[-1].replace(src, "<input>").replace(dst, "<output>")
