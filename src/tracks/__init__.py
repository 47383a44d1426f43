"""Audio event analysis and real-time event streaming."""

from tracks.config import Config, load_config
from tracks.core.extractor import FeatureExtractor, LibrosaExtractor
from tracks.core.planner import PipelinePlanner
from tracks.core.synthesizer import TimelineSynthesizer
from tracks.emitter import CancellationToken, Emitter
from tracks.events import EventCategory
from tracks.pipeline import TracksPipeline

__version__ = "0.1.0"
__all__ = [
    "Config",
    "load_config",
    "FeatureExtractor",
    "LibrosaExtractor",
    "PipelinePlanner",
    "TimelineSynthesizer",
    "CancellationToken",
    "Emitter",
    "EventCategory",
    "TracksPipeline",
]
