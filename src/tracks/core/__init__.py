"""Analysis planning, feature extraction and timeline synthesis."""

from tracks.core.extractor import DecodedAudio, FeatureExtractor, LibrosaExtractor
from tracks.core.planner import PipelinePlanner
from tracks.core.pool import FeaturePool
from tracks.core.synthesizer import TimelineSynthesizer
from tracks.core.timeline import Timeline

__all__ = [
    "DecodedAudio",
    "FeatureExtractor",
    "LibrosaExtractor",
    "PipelinePlanner",
    "FeaturePool",
    "TimelineSynthesizer",
    "Timeline",
]
