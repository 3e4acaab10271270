import math
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from birdsong.config import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_MAX_RESULTS,
    MAX_MAX_RESULTS,
    MIN_MAX_RESULTS,
)
from birdsong.errors import ValidationError

SCIENTIFIC_NAMES: Dict[str, str] = {
    "American Robin": "Turdus migratorius",
    "Northern Cardinal": "Cardinalis cardinalis",
    "Blue Jay": "Cyanocitta cristata",
    "House Sparrow": "Passer domesticus",
    "House Finch": "Haemorhous mexicanus",
    "American Goldfinch": "Spinus tristis",
    "European Starling": "Sturnus vulgaris",
    "Mourning Dove": "Zenaida macroura",
    "Red-winged Blackbird": "Agelaius phoeniceus",
    "Common Grackle": "Quiscalus quiscula",
}


@dataclass(frozen=True)
class DetectionResult:
    scientific_species_name: str
    common_name: str
    confidence: float
    timestamp_ms: int

    def to_dict(self) -> Dict[str, Any]:
        # wire names consumed by the mobile client
        return {
            "species": self.scientific_species_name,
            "commonName": self.common_name,
            "confidence": self.confidence,
            "timestamp": self.timestamp_ms,
        }


def scientific_name(label: str) -> str:
    if label in SCIENTIFIC_NAMES:
        return SCIENTIFIC_NAMES[label]
    # only the first space is replaced; clients match on this exact string
    return "Unknown " + label.lower().replace(" ", "_", 1)


def process(scores: Sequence[float], labels: Sequence[str],
            confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
            max_results: int = DEFAULT_MAX_RESULTS,
            now_ms: Optional[int] = None) -> List[DetectionResult]:
    ts = int(time.time() * 1000) if now_ms is None else now_ms
    results = []
    for i in range(min(len(scores), len(labels))):
        score = float(scores[i])
        if score >= confidence_threshold:
            results.append(DetectionResult(
                scientific_species_name=scientific_name(labels[i]),
                common_name=labels[i],
                confidence=score,
                timestamp_ms=ts,
            ))
    results.sort(key=lambda r: r.confidence, reverse=True)
    return results[:max_results]


def _number(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    try:
        x = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{name} must be a number") from None
    if math.isnan(x):
        raise ValidationError(f"{name} must be a number")
    return x


def clamp_options(body: Mapping[str, Any]) -> Tuple[float, int]:
    """Client overrides for threshold / max results, clamped to [0, 1] and [1, 50]."""
    raw_threshold = body.get("confidence_threshold")
    raw_max = body.get("max_results")

    threshold = DEFAULT_CONFIDENCE_THRESHOLD
    if raw_threshold is not None and raw_threshold != "":
        threshold = max(0.0, min(1.0, _number(raw_threshold, "confidence_threshold")))

    max_results = DEFAULT_MAX_RESULTS
    if raw_max is not None and raw_max != "":
        x = _number(raw_max, "max_results")
        x = max(MIN_MAX_RESULTS, min(MAX_MAX_RESULTS, x))
        max_results = int(x)
    return threshold, max_results
