"""
Demand-driven analysis planning.

Categories in the event filter are mapped to the feature series they are
derived from, and each series to the computation that produces it.
Computations declare what they require, so the set to run is the
dependency closure of the requested series. Shared intermediates such as
the spectrum are computed once per run no matter how many consumers ask
for them, and outputs nobody consumes are dropped as soon as they appear.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from tracks.config import AnalysisConfig
from tracks.core.extractor import FeatureExtractor
from tracks.core.pool import FeaturePool
from tracks.events import EventCategory as C
from tracks.exceptions import AnalysisCancelled

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Computation:
    """One named extractor computation and its dependencies."""

    name: str
    requires: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()


@dataclass(frozen=True)
class Pass:
    """A group of related categories gated together on the filter."""

    name: str
    categories: frozenset


# Declared in dependency order: every computation comes after what it requires.
COMPUTATIONS: tuple[Computation, ...] = (
    Computation("onset_envelope", (), ("rhythm.novelty",)),
    Computation("beats", ("onset_envelope",), ("rhythm.ticks", "rhythm.confidence")),
    Computation("onsets", ("onset_envelope",), ("rhythm.onset_times", "rhythm.onset_rate")),
    Computation("frames", (), ("frames",)),
    Computation("silence", ("frames",), ("silence.start_frame", "silence.stop_frame")),
    Computation("loudness", ("frames",), ("loudness.values",)),
    Computation("energy", ("frames",), ("energy.values",)),
    Computation("spectrum", (), ("spectrum",)),
    Computation("centroid", ("spectrum",), ("spectral.centroid",)),
    Computation("flux", ("spectrum",), ("spectral.flux",)),
    Computation("complexity", ("spectrum",), ("spectral.complexity",)),
    Computation("contrast", ("spectrum",), ("spectral.contrast",)),
    Computation("rolloff", ("spectrum",), ("spectral.rolloff",)),
    Computation("hfc", ("spectrum",), ("spectral.hfc",)),
    Computation("mfcc", ("spectrum",), ("spectral.mfcc", "mfcc.bands")),
    Computation("mel_bands", ("spectrum",), ("bands.mel",)),
    Computation("bark_bands", ("spectrum",), ("bands.bark",)),
    Computation("erb_bands", ("spectrum",), ("bands.erb",)),
    Computation("peaks", ("spectrum",), ("peaks.frequencies", "peaks.magnitudes")),
    Computation(
        "filtered_peaks",
        ("spectrum",),
        ("filtered_peaks.frequencies", "filtered_peaks.magnitudes"),
    ),
    Computation("hpcp", ("peaks",), ("tonal.hpcp",)),
    Computation("key", ("hpcp",), ("tonal.key", "tonal.scale", "tonal.key_strength")),
    Computation("chords", ("hpcp",), ("tonal.chords", "tonal.chord_strength")),
    Computation("tuning", ("spectrum",), ("tonal.tuning",)),
    Computation("dissonance", ("filtered_peaks",), ("tonal.dissonance",)),
    Computation("inharmonicity", ("filtered_peaks",), ("tonal.inharmonicity",)),
    Computation("pitch", ("spectrum",), ("pitch.values", "pitch.confidence")),
    Computation("melody", (), ("melody.pitch", "melody.confidence")),
)

COMPUTATIONS_BY_NAME = {c.name: c for c in COMPUTATIONS}

PRODUCER = {key: c.name for c in COMPUTATIONS for key in c.outputs}

# Pool keys each category is synthesized from.
CATEGORY_SOURCES: dict[C, tuple[str, ...]] = {
    C.BEAT: ("rhythm.ticks", "rhythm.confidence"),
    C.TEMPO_CHANGE: ("rhythm.ticks",),
    C.ONSET: ("rhythm.onset_times",),
    C.ONSET_RATE: ("rhythm.onset_rate",),
    C.NOVELTY: ("rhythm.novelty",),
    C.SILENCE_START: ("silence.start_frame", "silence.stop_frame"),
    C.SILENCE_END: ("silence.start_frame", "silence.stop_frame"),
    C.GAP: ("silence.start_frame", "silence.stop_frame"),
    C.LOUDNESS: ("loudness.values",),
    C.LOUDNESS_PEAK: ("loudness.values",),
    C.DYNAMIC_CHANGE: ("loudness.values",),
    C.ENERGY: ("energy.values",),
    C.SPECTRAL_CENTROID: ("spectral.centroid",),
    C.SPECTRAL_FLUX: ("spectral.flux",),
    C.SPECTRAL_COMPLEXITY: ("spectral.complexity",),
    C.SPECTRAL_CONTRAST: ("spectral.contrast",),
    C.SPECTRAL_ROLLOFF: ("spectral.rolloff",),
    C.MFCC: ("spectral.mfcc",),
    C.TIMBRE_CHANGE: ("spectral.mfcc",),
    C.SEGMENT_BOUNDARY: ("spectral.mfcc",),
    C.BANDS_MEL: ("bands.mel",),
    C.BANDS_BARK: ("bands.bark",),
    C.BANDS_ERB: ("bands.erb",),
    C.HFC: ("spectral.hfc",),
    C.KEY_CHANGE: ("tonal.key", "tonal.scale", "tonal.key_strength"),
    C.CHORD_CHANGE: ("tonal.chords", "tonal.chord_strength"),
    C.CHROMA: ("tonal.hpcp",),
    C.TUNING: ("tonal.tuning",),
    C.DISSONANCE: ("tonal.dissonance",),
    C.INHARMONICITY: ("tonal.inharmonicity",),
    C.PITCH: ("pitch.values", "pitch.confidence"),
    C.PITCH_CHANGE: ("pitch.values", "pitch.confidence"),
    C.MELODY: ("melody.pitch",),
}

PASSES: tuple[Pass, ...] = (
    Pass("rhythm", frozenset({C.BEAT, C.TEMPO_CHANGE})),
    Pass("onsets", frozenset({C.ONSET, C.ONSET_RATE, C.NOVELTY})),
    Pass("silence", frozenset({C.SILENCE_START, C.SILENCE_END, C.GAP})),
    Pass(
        "loudness_energy",
        frozenset({C.LOUDNESS, C.LOUDNESS_PEAK, C.ENERGY, C.DYNAMIC_CHANGE}),
    ),
    Pass(
        "spectral",
        frozenset({
            C.SPECTRAL_CENTROID, C.SPECTRAL_FLUX, C.SPECTRAL_COMPLEXITY,
            C.SPECTRAL_CONTRAST, C.SPECTRAL_ROLLOFF, C.MFCC, C.TIMBRE_CHANGE,
            C.SEGMENT_BOUNDARY, C.BANDS_MEL, C.BANDS_BARK, C.BANDS_ERB, C.HFC,
            C.KEY_CHANGE, C.CHORD_CHANGE, C.CHROMA, C.TUNING, C.DISSONANCE,
            C.INHARMONICITY, C.PITCH, C.PITCH_CHANGE,
        }),
    ),
    Pass("melody", frozenset({C.MELODY})),
)


def needs_any(event_filter: frozenset, categories) -> bool:
    """True if at least one of the categories is in the filter."""
    return any(c in event_filter for c in categories)


def _closure(names: set[str]) -> set[str]:
    """Add every transitive requirement of the named computations."""
    pending = list(names)
    resolved = set()
    while pending:
        name = pending.pop()
        if name in resolved:
            continue
        resolved.add(name)
        pending.extend(COMPUTATIONS_BY_NAME[name].requires)
    return resolved


@dataclass
class AnalysisPlan:
    """What one analysis run will compute and publish."""

    categories: frozenset
    passes: list[str] = field(default_factory=list)
    computations: list[str] = field(default_factory=list)
    published: frozenset = frozenset()
    unanalyzable: frozenset = frozenset()

    @property
    def decode_only(self) -> bool:
        """True when the run only needs the track duration."""
        return not self.computations


class PipelinePlanner:
    """
    Plans and runs the analysis for one event filter.

    Decoding happens once per run and is shared by every computation.
    """

    def __init__(
        self,
        extractor: FeatureExtractor,
        analysis: AnalysisConfig | None = None,
    ):
        """
        Initialize the planner.

        Args:
            extractor: Backend that decodes audio and runs computations.
            analysis: Sample rate and framing parameters.
        """
        self.extractor = extractor
        self.analysis = analysis or AnalysisConfig()

    def plan(self, event_filter: frozenset) -> AnalysisPlan:
        """
        Resolve the computations needed for a filter.

        Args:
            event_filter: Requested categories.

        Returns:
            AnalysisPlan listing active passes, ordered computations and
            the pool keys that will be published.
        """
        active = [p for p in PASSES if needs_any(event_filter, p.categories)]

        published = set()
        for p in active:
            for category in p.categories & event_filter:
                published.update(CATEGORY_SOURCES[category])

        needed = _closure({PRODUCER[key] for key in published})
        ordered = [c.name for c in COMPUTATIONS if c.name in needed]

        unanalyzable = frozenset(c for c in event_filter if c not in CATEGORY_SOURCES)

        return AnalysisPlan(
            categories=frozenset(event_filter),
            passes=[p.name for p in active],
            computations=ordered,
            published=frozenset(published),
            unanalyzable=unanalyzable,
        )

    def run(
        self,
        plan: AnalysisPlan,
        source: Union[str, Path],
        cancel=None,
    ) -> tuple[FeaturePool, float]:
        """
        Execute a plan against one source.

        Args:
            plan: Result of plan().
            source: Audio file path.
            cancel: Optional cancellation token checked between computations.

        Returns:
            Tuple of (populated FeaturePool, duration in seconds).

        Raises:
            ExtractionError: If decoding or any computation fails.
            AnalysisCancelled: If the token is set before analysis finishes.
        """
        for category in sorted(plan.unanalyzable, key=lambda c: c.value):
            logger.warning("no analysis available for '%s', it will not be emitted", category.value)

        audio = self.extractor.decode(source, self.analysis.sample_rate)
        pool = FeaturePool()

        if plan.decode_only:
            logger.info("decode-only run: %.2fs", audio.duration)
            return pool, audio.duration

        logger.info("analysis passes: %s", ", ".join(plan.passes))

        # Intermediate outputs still needed by a later computation.
        remaining = {
            name: {c for c in plan.computations if name in COMPUTATIONS_BY_NAME[c].requires}
            for name in plan.computations
        }
        working: dict[str, Any] = {}

        for name in plan.computations:
            if cancel is not None and cancel.is_set():
                raise AnalysisCancelled("analysis cancelled")

            computation = COMPUTATIONS_BY_NAME[name]
            upstream = {
                key: working[key]
                for req in computation.requires
                for key in COMPUTATIONS_BY_NAME[req].outputs
                if key in working
            }
            logger.debug("computing %s", name)
            outputs = self.extractor.compute(name, audio, upstream, self.analysis)

            for key, series in outputs.items():
                if key in plan.published:
                    pool.put(key, series)
                if remaining[name]:
                    working[key] = series
                elif key not in plan.published:
                    logger.debug("discarding unconsumed output %s", key)

            for req in computation.requires:
                remaining[req].discard(name)
                if not remaining[req]:
                    for key in COMPUTATIONS_BY_NAME[req].outputs:
                        working.pop(key, None)

        return pool, audio.duration

    def plan_and_run(
        self,
        event_filter: frozenset,
        source: Union[str, Path],
        cancel=None,
    ) -> tuple[FeaturePool, float]:
        """Plan for a filter and run the plan against a source."""
        return self.run(self.plan(event_filter), source, cancel=cancel)
