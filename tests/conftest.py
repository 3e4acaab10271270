import shutil

import numpy as np
import pytest

from birdsong.bundle import build_bundle
from birdsong.config import Settings
from birdsong.handler import RequestHandler
from birdsong.registry import ModelRegistry

LABELS = [
    "American Robin",
    "Mystery Bird",
    "Northern Cardinal",
    "Turdus merula_Eurasian Blackbird",
]


class FakeDecoder:
    """Stands in for ffmpeg: returns fixed samples (or raises) and records its input."""

    def __init__(self, samples=None, error=None):
        self.samples = np.zeros(48000, dtype=np.float32) if samples is None else samples
        self.error = error
        self.calls = []

    def decode(self, data: bytes) -> np.ndarray:
        self.calls.append(data)
        if self.error is not None:
            raise self.error
        return self.samples


class StubEngine:
    """Returns preset scores and records the window it was given."""

    def __init__(self, scores):
        self.scores = np.asarray(scores, dtype=np.float32)
        self.windows = []

    def infer(self, window):
        self.windows.append(np.array(window))
        return self.scores


@pytest.fixture(scope="session")
def bundle_dir(tmp_path_factory):
    return build_bundle(tmp_path_factory.mktemp("bundle"), LABELS)


@pytest.fixture
def bundle_copy(bundle_dir, tmp_path):
    dst = tmp_path / "bundle"
    shutil.copytree(bundle_dir, dst)
    return dst


@pytest.fixture
def registry(bundle_dir):
    return ModelRegistry(str(bundle_dir))


@pytest.fixture
def settings(bundle_dir):
    return Settings(model_dir=str(bundle_dir), environment="dev", allowed_origin="*")


@pytest.fixture
def decoder():
    return FakeDecoder()


@pytest.fixture
def handler(registry, settings, decoder):
    return RequestHandler(registry, settings, decoder=decoder)


@pytest.fixture
def noise():
    rng = np.random.RandomState(42)
    return (0.3 * rng.randn(48000)).astype(np.float32)
