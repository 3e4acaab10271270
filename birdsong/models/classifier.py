# models/classifier.py
import torch
import torch.nn as nn

from birdsong.models.mel_spec import MelSpecLayer

OUTPUT_ACTIVATIONS = ("none", "sigmoid")


def _conv_block(c_in: int, c_out: int, pool: bool = True):
    layers = [nn.Conv2d(c_in, c_out, kernel_size=3, padding=1), nn.BatchNorm2d(c_out), nn.ReLU(inplace=True)]
    if pool:
        layers.append(nn.MaxPool2d(kernel_size=2))
    return layers


class BirdCNN(nn.Module):
    """
    Backbone over the mel front end's output, (B, mel_bins, frames, 1).

    For the default 96 x 511 spectrogram the three blocks leave (B, 128, 24, 127);
    pooling to (1, 16) squeezes the mel axis and keeps 16 time slots, so the head
    is Linear(2048, n_classes) for any spectrogram size.
    """
    def __init__(self, n_classes: int = 10):
        super().__init__()
        self.features = nn.Sequential(
            *_conv_block(1, 32),
            *_conv_block(32, 64),
            *_conv_block(64, 128, pool=False),
        )
        self.adapt = nn.AdaptiveAvgPool2d(output_size=(1, 16))
        self.classifier = nn.Sequential(
            nn.Flatten(),
            nn.Dropout(p=0.3),
            nn.Linear(128 * 16, n_classes),
        )

    def forward(self, spec: torch.Tensor) -> torch.Tensor:
        x = spec.permute(0, 3, 1, 2)  # trailing channel axis first: (B, 1, mel, frames)
        return self.classifier(self.adapt(self.features(x)))


class BirdClassifier(nn.Module):
    """(B, 144000) waveform -> (B, n_classes) scores: mel front end, backbone, declared activation."""

    def __init__(self, mel_spec: MelSpecLayer, backbone: nn.Module, output_activation: str = "none"):
        super().__init__()
        if output_activation not in OUTPUT_ACTIVATIONS:
            raise ValueError(f"output_activation must be one of {OUTPUT_ACTIVATIONS}, got {output_activation!r}")
        self.mel_spec = mel_spec
        self.backbone = backbone
        self.output_activation = output_activation

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x = self.mel_spec(x)
        x = self.backbone(x)
        if self.output_activation == "sigmoid":
            x = torch.sigmoid(x)
        return x
