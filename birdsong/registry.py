"""
Process-wide model bundle cache.

One ModelRegistry is built at process start and handed to the request path.
Labels and the classifier are loaded on first use, under a lock, and then kept
for the lifetime of the process. A failed load leaves the slot empty so the
next request tries again.

Bundle layout (one directory, or an s3:// prefix staged to local disk):

    labels.json          JSON array (or object) of label strings, in model output order
    config.json          mel front end + architecture config
    mel_filterbank.npy   (fft_bins, mel_bins) matrix; may instead live in config.json
    model.pt             state dict: mel_spec.magnitude_scaling + backbone.*
    backbone.ts          optional TorchScript backbone, preferred over backbone.* weights
"""
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import torch

from birdsong.config import Settings
from birdsong.errors import ArtifactLoadError, LabelsUnavailableError, ModelUnavailableError
from birdsong.models.classifier import BirdClassifier, BirdCNN
from birdsong.models.mel_spec import MelSpecLayer
from birdsong.utils.artifacts import resolve_model_dir
from birdsong.utils.logs import log_exc

log = logging.getLogger("birdsong.registry")

LABELS_FILE     = "labels.json"
CONFIG_FILE     = "config.json"
FILTERBANK_FILE = "mel_filterbank.npy"
WEIGHTS_FILE    = "model.pt"
BACKBONE_TS     = "backbone.ts"

MAG_SCALE_KEY = "mel_spec.magnitude_scaling"
HEAD_KEY      = "classifier.2.weight"


@dataclass(frozen=True)
class ModelBundle:
    labels: List[str]
    model: torch.nn.Module
    config: Dict[str, Any]


CHECKPOINT_WRAPPERS = ("state_dict", "model_state_dict", "model_state", "model", "net", "module")
KEY_PREFIXES        = ("module.", "model.")


def normalize_state_dict(sd: Dict[str, Any]) -> Dict[str, Any]:
    """
    Reduce a training checkpoint to BirdClassifier keys: descend through wrapper
    dicts ({"state_dict": {...}}, {"model": {...}}, ...) and drop the
    DataParallel / wrapper-module key prefixes.
    """
    while True:
        inner = next((sd[k] for k in CHECKPOINT_WRAPPERS if isinstance(sd.get(k), dict)), None)
        if inner is None:
            break
        sd = inner

    out = {}
    for key, value in sd.items():
        for prefix in KEY_PREFIXES:
            if key.startswith(prefix):
                key = key[len(prefix):]
        out[key] = value
    return out


def parse_labels(data: Any) -> List[str]:
    labels = data if isinstance(data, list) else list(data.values()) if isinstance(data, dict) else None
    if not labels:
        raise ValueError("labels must be a non-empty JSON array or object of species names")
    if not all(isinstance(x, str) and x for x in labels):
        raise ValueError("every label must be a non-empty string")
    return labels


class ModelRegistry:
    def __init__(self, model_dir: str, labels_path: Optional[str] = None,
                 cache_dir: str = "/tmp/birdsong-model", region: Optional[str] = None,
                 s3_client=None, device: str = "cpu"):
        self.model_dir = str(model_dir)
        self.labels_path = labels_path
        self.cache_dir = cache_dir
        self.region = region
        self.device = torch.device(device)
        self._s3 = s3_client

        self._labels: Optional[List[str]] = None
        self._model: Optional[torch.nn.Module] = None
        self._config: Optional[Dict[str, Any]] = None
        self._n_outputs: Optional[int] = None
        self._local_dir: Optional[Path] = None

        self._dir_lock = threading.Lock()
        self._labels_lock = threading.Lock()
        self._model_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ModelRegistry":
        return cls(settings.model_dir, labels_path=settings.labels_path,
                   cache_dir=settings.artifact_cache_dir, region=settings.region)

    # ------------------ state (never triggers a load) ------------------
    @property
    def species_count(self) -> int:
        labels = self._labels
        return len(labels) if labels else 0

    @property
    def labels_loaded(self) -> bool:
        return self._labels is not None

    @property
    def model_loaded(self) -> bool:
        return self._model is not None

    # ------------------ load-once entry points ------------------
    def ensure_labels_loaded(self) -> List[str]:
        labels = self._labels
        if labels is not None:
            return labels
        with self._labels_lock:
            if self._labels is None:
                self._labels = self._load_labels()
            return self._labels

    def ensure_model_loaded(self) -> torch.nn.Module:
        model = self._model
        if model is not None:
            return model
        with self._model_lock:
            if self._model is None:
                self._model, self._config, self._n_outputs = self._load_model()
            return self._model

    def ensure_loaded(self) -> ModelBundle:
        labels = self.ensure_labels_loaded()
        model = self.ensure_model_loaded()
        if self._n_outputs is not None and self._n_outputs != len(labels):
            log.warning(f"Classifier emits {self._n_outputs} scores but {len(labels)} labels are loaded; "
                        f"only the first {min(self._n_outputs, len(labels))} indices are reported")
        return ModelBundle(labels=labels, model=model, config=self._config or {})

    # ------------------ loaders ------------------
    def _bundle_dir(self, error_cls) -> Path:
        if self._local_dir is not None:
            return self._local_dir
        with self._dir_lock:
            if self._local_dir is None:
                try:
                    self._local_dir = resolve_model_dir(self.model_dir, self.cache_dir,
                                                        region=self.region, client=self._s3)
                except Exception as e:
                    log_exc(log, f"staging model bundle from {self.model_dir}", e)
                    raise error_cls("Model storage is unavailable") from e
            return self._local_dir

    def _load_labels(self) -> List[str]:
        path = Path(self.labels_path) if self.labels_path else self._bundle_dir(LabelsUnavailableError) / LABELS_FILE
        log.info(f"Loading species labels from {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                labels = parse_labels(json.load(f))
        except OSError as e:
            log.warning(f"Failed to read labels {path}: {e}")
            raise LabelsUnavailableError("Cannot load species labels: label file is missing or unreadable") from e
        except ValueError as e:
            log.warning(f"Failed to parse labels {path}: {e}")
            raise LabelsUnavailableError(f"Cannot load species labels: {e}") from e
        log.info(f"Labels loaded: {len(labels)} species")
        return labels

    def _load_model(self):
        root = self._bundle_dir(ModelUnavailableError)
        log.info(f"Loading classifier from {root}")
        try:
            config = json.loads((root / CONFIG_FILE).read_text(encoding="utf-8"))
            filterbank = self._load_filterbank(root, config)

            state = torch.load(root / WEIGHTS_FILE, map_location="cpu", weights_only=True)
            if not isinstance(state, dict):
                raise ModelUnavailableError("Cannot load classifier: unexpected weights format")
            state = normalize_state_dict(state)
            if MAG_SCALE_KEY not in state:
                raise ModelUnavailableError(f"Cannot load classifier: weights have no {MAG_SCALE_KEY}")
            mel_spec = MelSpecLayer.from_config(config, filterbank, float(state[MAG_SCALE_KEY]))

            backbone, n_outputs = self._load_backbone(root, config, state)
            model = BirdClassifier(mel_spec, backbone, config.get("output_activation", "none"))
            model.to(self.device)
            model.eval()
        except ArtifactLoadError:
            raise
        except Exception as e:
            log_exc(log, f"loading classifier from {root}", e)
            raise ModelUnavailableError(f"Cannot load classifier model ({e.__class__.__name__})") from e

        log.info(f"Classifier loaded: input [None, {config.get('sample_count', 'N')}] "
                 f"-> spec {mel_spec.spec_shape} -> [None, {n_outputs or '?'}]")
        return model, config, n_outputs

    @staticmethod
    def _load_filterbank(root: Path, config: Dict[str, Any]) -> np.ndarray:
        path = root / FILTERBANK_FILE
        if path.exists():
            return np.load(path, allow_pickle=False)
        fb = config.get("mel_filterbank", config.get("melFilterbank"))
        if fb is None:
            raise ModelUnavailableError("Cannot load classifier: bundle has no mel filterbank")
        return np.asarray(fb, dtype=np.float32)

    @staticmethod
    def _load_backbone(root: Path, config: Dict[str, Any], state: Dict[str, Any]):
        ts = root / BACKBONE_TS
        n_outputs = config.get("n_classes", config.get("num_classes"))
        if ts.exists():
            backbone = torch.jit.load(str(ts), map_location="cpu")
            log.info(f"Loaded TorchScript backbone: {ts.name}")
            return backbone, n_outputs

        sd = {k[len("backbone."):]: v for k, v in state.items() if k.startswith("backbone.")}
        if not sd:
            sd = {k: v for k, v in state.items() if k != MAG_SCALE_KEY}
        if n_outputs is None:
            if HEAD_KEY not in sd:
                raise ModelUnavailableError("Cannot load classifier: cannot infer class count from weights")
            n_outputs = int(sd[HEAD_KEY].shape[0])

        net = BirdCNN(n_classes=int(n_outputs))
        missing, unexpected = net.load_state_dict(sd, strict=False)
        if unexpected:
            log.warning(f"load_state_dict unexpected keys (first few): {list(unexpected)[:5]}")
        if missing:
            log.error(f"load_state_dict missing keys (first few): {list(missing)[:5]}")
            raise ModelUnavailableError("Cannot load classifier: weights are incomplete")
        return net, int(n_outputs)
