from birdsong.models.classifier import BirdClassifier, BirdCNN
from birdsong.models.mel_spec import MelSpecLayer

__all__ = ["BirdClassifier", "BirdCNN", "MelSpecLayer"]
