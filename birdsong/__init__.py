"""Bird species identification service: decode -> window -> mel spec -> CNN -> ranked detections."""

__version__ = "0.3.0"
