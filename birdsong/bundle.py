"""
Write a model bundle in the layout ModelRegistry loads. The classifier is
freshly initialized, so a built bundle is for smoke deployments and tests;
trained bundles are exported the same way from the trained state dict.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import librosa
import numpy as np
import torch

from birdsong.config import SAMPLE_RATE, WINDOW_SAMPLES
from birdsong.models.classifier import BirdClassifier, BirdCNN
from birdsong.models.mel_spec import MelSpecLayer
from birdsong.registry import CONFIG_FILE, FILTERBANK_FILE, LABELS_FILE, WEIGHTS_FILE

log = logging.getLogger("birdsong.bundle")

DEFAULT_CONFIG: Dict[str, Any] = {
    "sample_rate": SAMPLE_RATE,
    "sample_count": WINDOW_SAMPLES,
    "spec_shape": [96, 511],
    "frame_length": 2048,
    "frame_step": 278,
    "fmin": 0,
    "fmax": 15000,
    "complex_to_real": "magnitude",
    "output_activation": "sigmoid",
}
INITIAL_MAGNITUDE_SCALING = 1.23


def mel_filterbank(sample_rate: int, frame_length: int, n_mels: int, fmin: float, fmax: float) -> np.ndarray:
    """(fft_bins, mel_bins) matrix, the orientation the spectrogram layer multiplies by."""
    fb = librosa.filters.mel(sr=sample_rate, n_fft=frame_length, n_mels=n_mels, fmin=fmin, fmax=fmax)
    return fb.T.astype(np.float32)


def bundle_config(overrides: Optional[Dict[str, Any]] = None, n_classes: int = 0) -> Dict[str, Any]:
    cfg = {**DEFAULT_CONFIG, **(overrides or {})}
    frames = 1 + (cfg["sample_count"] - cfg["frame_length"]) // cfg["frame_step"]
    cfg["spec_shape"] = [int(cfg["spec_shape"][0]), int(frames)]
    cfg["n_classes"] = int(n_classes)
    return cfg


def build_bundle(out_dir, labels: Sequence[str], config: Optional[Dict[str, Any]] = None,
                 magnitude_scaling: float = INITIAL_MAGNITUDE_SCALING, seed: int = 42) -> Path:
    labels = list(labels)
    if not labels:
        raise ValueError("a bundle needs at least one label")
    cfg = bundle_config(config, n_classes=len(labels))

    torch.manual_seed(seed)
    fb = mel_filterbank(cfg["sample_rate"], cfg["frame_length"], cfg["spec_shape"][0], cfg["fmin"], cfg["fmax"])
    mel_spec = MelSpecLayer.from_config(cfg, fb, magnitude_scaling)
    model = BirdClassifier(mel_spec, BirdCNN(n_classes=len(labels)), cfg["output_activation"])

    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    (out / LABELS_FILE).write_text(json.dumps(labels), encoding="utf-8")
    (out / CONFIG_FILE).write_text(json.dumps(cfg, indent=2), encoding="utf-8")
    np.save(out / FILTERBANK_FILE, fb)
    torch.save(model.state_dict(), out / WEIGHTS_FILE)
    log.info(f"Wrote bundle to {out}: {len(labels)} labels, spec shape {cfg['spec_shape']}")
    return out
