import logging

import numpy as np
import torch

from birdsong.config import WINDOW_SAMPLES
from birdsong.errors import ArtifactLoadError, InferenceFailedError
from birdsong.registry import ModelRegistry

log = logging.getLogger("birdsong.inference")


class InferenceEngine:
    """Runs one fixed window through the cached classifier and returns its raw output row."""

    def __init__(self, registry: ModelRegistry):
        self.registry = registry

    def infer(self, window: np.ndarray) -> np.ndarray:
        model = self.registry.ensure_model_loaded()
        log.info(f"Processing audio with {len(window)} samples")
        try:
            x = np.asarray(window, dtype=np.float32).reshape(1, -1)
            if x.shape[1] != WINDOW_SAMPLES:
                log.warning(f"Window has {x.shape[1]} samples, model was built for {WINDOW_SAMPLES}")
            tensor = torch.from_numpy(x).to(self.registry.device)
            with torch.no_grad():
                out = model(tensor)
                scores = out[0].detach().cpu().numpy().astype(np.float32)
            del tensor, out
        except ArtifactLoadError:
            raise
        except Exception as e:
            log.warning(f"Inference error: {e.__class__.__name__}: {e}")
            raise InferenceFailedError(f"Inference failed: {e}") from e
        log.info(f"Generated {len(scores)} predictions")
        return scores
