"""
Augmentation adapters. Each pairs an LLM path with a pure local fallback of
the same output shape.
"""

from .base import AugmentationAdapter
from .complication_detector import ComplicationDetector
from .consultant_parser import ConsultantParser
from .narrative_synthesizer import NarrativeSynthesizer

__all__ = [
    "AugmentationAdapter",
    "ComplicationDetector",
    "ConsultantParser",
    "NarrativeSynthesizer",
]
