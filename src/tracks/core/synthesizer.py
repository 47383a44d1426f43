"""
Timeline synthesis.

Turns the feature series of one analysis run into discrete timestamped
events. Every category follows one derivation rule:

- Direct index: one event per entry of a time series (beat, onset).
- Throttled continuous: walk a frame series and emit at most once per
  continuous_interval (loudness, energy, spectral, bands, chroma, ...).
- Local extremum, delta threshold and vector distance for loudness
  peaks, dynamic changes and timbre changes.
- Run-length change for chords, terminal summary for key, onset rate
  and tuning, confidence and ratio gates for pitch changes.
- Silence regions at the leading and trailing edges of the track.
- Interior boundaries from an external segmenter.

A category whose series is missing from the pool produces nothing.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np

from tracks.config import Config
from tracks.core.pool import FeaturePool
from tracks.core.timeline import Timeline
from tracks.events import EventCategory as C
from tracks.payloads import (
    BandsBark,
    BandsErb,
    BandsMel,
    Beat,
    ChordChange,
    Chroma,
    Dissonance,
    DynamicChange,
    Energy,
    Envelope,
    Gap,
    Hfc,
    Inharmonicity,
    KeyChange,
    Loudness,
    LoudnessPeak,
    Melody,
    Mfcc,
    Novelty,
    Onset,
    OnsetRate,
    Payload,
    Pitch,
    PitchChange,
    SegmentBoundary,
    SilenceEnd,
    SilenceStart,
    SpectralCentroid,
    SpectralComplexity,
    SpectralContrast,
    SpectralFlux,
    SpectralRolloff,
    TempoChange,
    TimbreChange,
    Tuning,
    vector,
)

logger = logging.getLogger(__name__)

SILENCE_GUARD = 0.05
PEAK_RATIO = 0.9
DYNAMIC_CHANGE_RATIO = 0.3
TIMBRE_CHANGE_THRESHOLD = 50.0
PITCH_CONFIDENCE = 0.3
PITCH_CHANGE_CONFIDENCE = 0.5
PITCH_RATIO_LOW = 0.94
PITCH_RATIO_HIGH = 1.06
TEMPO_CHANGE_RATIO = 0.05
MIN_SEGMENT_FRAMES = 10
SEGMENT_SECONDS = 20.0

# Throttled continuous categories: pool key and payload class.
SCALAR_SERIES: dict[C, tuple[str, type[Payload]]] = {
    C.LOUDNESS: ("loudness.values", Loudness),
    C.ENERGY: ("energy.values", Energy),
    C.NOVELTY: ("rhythm.novelty", Novelty),
    C.SPECTRAL_CENTROID: ("spectral.centroid", SpectralCentroid),
    C.SPECTRAL_FLUX: ("spectral.flux", SpectralFlux),
    C.SPECTRAL_COMPLEXITY: ("spectral.complexity", SpectralComplexity),
    C.SPECTRAL_ROLLOFF: ("spectral.rolloff", SpectralRolloff),
    C.HFC: ("spectral.hfc", Hfc),
    C.DISSONANCE: ("tonal.dissonance", Dissonance),
    C.INHARMONICITY: ("tonal.inharmonicity", Inharmonicity),
}

VECTOR_SERIES: dict[C, tuple[str, type[Payload]]] = {
    C.SPECTRAL_CONTRAST: ("spectral.contrast", SpectralContrast),
    C.MFCC: ("spectral.mfcc", Mfcc),
    C.BANDS_MEL: ("bands.mel", BandsMel),
    C.BANDS_BARK: ("bands.bark", BandsBark),
    C.BANDS_ERB: ("bands.erb", BandsErb),
    C.CHROMA: ("tonal.hpcp", Chroma),
}

Segmenter = Callable[[np.ndarray, int], Sequence[int]]


def throttle(
    series: Sequence,
    frame_to_time: Callable[[int], float],
    interval: float,
    duration: float,
    make: Callable[[int, object], Payload],
    accept: Callable[[int, object], bool] | None = None,
) -> list[Envelope]:
    """
    Emit from a frame series at most once per interval.

    Args:
        series: One value (scalar or vector) per frame.
        frame_to_time: Frame index to seconds.
        interval: Minimum spacing between two emitted events.
        duration: Frames later than this end the walk.
        make: Builds the payload from (frame_index, value).
        accept: Optional gate; rejected frames do not advance the clock.

    Returns:
        Emitted envelopes in time order.
    """
    events = []
    last = -interval
    for i, value in enumerate(series):
        t = frame_to_time(i)
        if t > duration:
            break
        if accept is not None and not accept(i, value):
            continue
        if t - last >= interval:
            events.append(Envelope(t, make(i, value)))
            last = t
    return events


def _last(series):
    return series[-1] if len(series) else None


@dataclass(frozen=True)
class _Run:
    """Inputs of one synthesize() call."""

    pool: FeaturePool
    filter: frozenset
    duration: float
    interval: float
    frame_to_time: Callable[[int], float]

    def wants(self, category: C, *keys: str) -> bool:
        """Category requested and every series it needs is present."""
        return category in self.filter and all(self.pool.has(k) for k in keys)

    def throttle(self, series, make, accept=None) -> list[Envelope]:
        return throttle(series, self.frame_to_time, self.interval, self.duration, make, accept)


class TimelineSynthesizer:
    """
    Derives events from a FeaturePool.

    Thresholds default to the module constants and can be overridden per
    instance.
    """

    def __init__(
        self,
        segmenter: Segmenter | None = None,
        silence_guard: float = SILENCE_GUARD,
        peak_ratio: float = PEAK_RATIO,
        dynamic_change_ratio: float = DYNAMIC_CHANGE_RATIO,
        timbre_change_threshold: float = TIMBRE_CHANGE_THRESHOLD,
        tempo_change_ratio: float = TEMPO_CHANGE_RATIO,
    ):
        """
        Initialize the synthesizer.

        Args:
            segmenter: Callable taking a (n_coefficients, n_frames) matrix
                       and a segment count, returning boundary frame
                       indices that include the first and last frame.
                       Without one, segment.boundary produces nothing.
            silence_guard: Margin in seconds before an edge counts as silence.
            peak_ratio: Share of the global maximum a loudness peak must reach.
            dynamic_change_ratio: Share of the maximum a frame delta must exceed.
            timbre_change_threshold: Cepstral distance that counts as a change.
            tempo_change_ratio: Relative tempo change that counts as a change.
        """
        self.segmenter = segmenter
        self.silence_guard = silence_guard
        self.peak_ratio = peak_ratio
        self.dynamic_change_ratio = dynamic_change_ratio
        self.timbre_change_threshold = timbre_change_threshold
        self.tempo_change_ratio = tempo_change_ratio

    def synthesize(
        self,
        pool: FeaturePool,
        event_filter: frozenset,
        config: Config,
        duration: float,
        filename: str = "",
    ) -> Timeline:
        """
        Build the framed, sorted timeline for one run.

        Args:
            pool: Feature series from the planner.
            event_filter: Requested categories.
            config: Framing, throttling and heartbeat parameters.
            duration: Track length in seconds.
            filename: Name announced in track.start.

        Returns:
            Timeline beginning with track.start and ending with track.end.
        """
        ctx = _Run(
            pool=pool,
            filter=frozenset(event_filter),
            duration=float(duration),
            interval=config.events.continuous_interval,
            frame_to_time=config.analysis.frame_to_time,
        )

        events: list[Envelope] = []
        events += self._beats(ctx)
        events += self._tempo_changes(ctx)
        events += self._onsets(ctx)
        events += self._summaries(ctx)
        events += self._silence(ctx)
        events += self._continuous(ctx)
        events += self._loudness_peaks(ctx)
        events += self._dynamic_changes(ctx)
        events += self._timbre_changes(ctx)
        events += self._chord_changes(ctx)
        events += self._pitch(ctx)
        events += self._melody(ctx)
        events += self._segments(ctx)

        counts: dict[str, int] = {}
        for e in events:
            counts[e.category.value] = counts.get(e.category.value, 0) + 1
        for name in sorted(counts):
            logger.info("  %-20s %d", name, counts[name])

        return Timeline.framed(
            events,
            duration=duration,
            filename=filename,
            sample_rate=config.analysis.sample_rate,
            position_interval=config.transport.position_interval,
        )

    # --- Direct index ---

    def _beats(self, ctx: _Run) -> list[Envelope]:
        if not ctx.wants(C.BEAT, "rhythm.ticks"):
            return []
        ticks = ctx.pool.get("rhythm.ticks")
        confidence = None
        if ctx.pool.has("rhythm.confidence"):
            confidence = ctx.pool.get("rhythm.confidence")
            if len(confidence) != len(ticks):
                confidence = None
        return [
            Envelope(float(t), Beat(None if confidence is None else float(confidence[i])))
            for i, t in enumerate(ticks)
            if t <= ctx.duration
        ]

    def _onsets(self, ctx: _Run) -> list[Envelope]:
        if not ctx.wants(C.ONSET, "rhythm.onset_times"):
            return []
        return [
            Envelope(float(t), Onset(1.0))
            for t in ctx.pool.get("rhythm.onset_times")
            if t <= ctx.duration
        ]

    def _tempo_changes(self, ctx: _Run) -> list[Envelope]:
        if not ctx.wants(C.TEMPO_CHANGE, "rhythm.ticks"):
            return []
        ticks = ctx.pool.get("rhythm.ticks")
        events = []
        last_bpm = None
        for i in range(1, len(ticks)):
            if ticks[i] > ctx.duration:
                break
            interval = float(ticks[i]) - float(ticks[i - 1])
            if interval <= 0:
                continue
            bpm = 60.0 / interval
            if last_bpm is None or abs(bpm - last_bpm) / last_bpm > self.tempo_change_ratio:
                events.append(Envelope(float(ticks[i]), TempoChange(bpm)))
                last_bpm = bpm
        return events

    # --- Terminal summaries ---

    def _summaries(self, ctx: _Run) -> list[Envelope]:
        events = []

        if ctx.wants(C.KEY_CHANGE, "tonal.key"):
            key = _last(ctx.pool.get("tonal.key"))
            if key is not None:
                scale = ""
                if ctx.pool.has("tonal.scale"):
                    scale = _last(ctx.pool.get("tonal.scale")) or ""
                strength = 0.0
                if ctx.pool.has("tonal.key_strength"):
                    last_strength = _last(ctx.pool.get("tonal.key_strength"))
                    strength = 0.0 if last_strength is None else float(last_strength)
                events.append(Envelope(0.0, KeyChange(str(key), str(scale), strength)))

        if ctx.wants(C.ONSET_RATE, "rhythm.onset_rate"):
            rate = _last(ctx.pool.get("rhythm.onset_rate"))
            if rate is not None:
                events.append(Envelope(0.0, OnsetRate(float(rate))))

        if ctx.wants(C.TUNING, "tonal.tuning"):
            frequency = _last(ctx.pool.get("tonal.tuning"))
            if frequency is not None:
                events.append(Envelope(0.0, Tuning(float(frequency))))

        return events

    # --- Silence ---

    def _silence(self, ctx: _Run) -> list[Envelope]:
        wanted = {C.SILENCE_START, C.SILENCE_END, C.GAP} & ctx.filter
        if not wanted:
            return []
        if not (ctx.pool.has("silence.start_frame") and ctx.pool.has("silence.stop_frame")):
            return []
        start_frame = _last(ctx.pool.get("silence.start_frame"))
        stop_frame = _last(ctx.pool.get("silence.stop_frame"))
        if start_frame is None or stop_frame is None:
            return []

        start_time = ctx.frame_to_time(int(start_frame))
        stop_time = ctx.frame_to_time(int(stop_frame))
        duration = ctx.duration
        events = []

        if start_frame > 0 and start_time > self.silence_guard:
            if C.SILENCE_START in wanted:
                events.append(Envelope(0.0, SilenceStart()))
            if C.SILENCE_END in wanted:
                events.append(Envelope(start_time, SilenceEnd()))
            if C.GAP in wanted:
                events.append(Envelope(0.0, Gap(start_time)))

        if stop_time < duration - self.silence_guard:
            if C.SILENCE_START in wanted:
                events.append(Envelope(stop_time, SilenceStart()))
            if C.SILENCE_END in wanted:
                events.append(Envelope(duration, SilenceEnd()))
            if C.GAP in wanted:
                events.append(Envelope(stop_time, Gap(duration - stop_time)))

        return events

    # --- Throttled continuous ---

    def _continuous(self, ctx: _Run) -> list[Envelope]:
        events = []
        for category, (key, cls) in SCALAR_SERIES.items():
            if ctx.wants(category, key):
                events += ctx.throttle(ctx.pool.get(key), lambda i, v, cls=cls: cls(float(v)))
        for category, (key, cls) in VECTOR_SERIES.items():
            if ctx.wants(category, key):
                events += ctx.throttle(ctx.pool.get(key), lambda i, v, cls=cls: cls(vector(v)))
        return events

    def _pitch(self, ctx: _Run) -> list[Envelope]:
        if not ({C.PITCH, C.PITCH_CHANGE} & ctx.filter):
            return []
        if not (ctx.pool.has("pitch.values") and ctx.pool.has("pitch.confidence")):
            return []
        values = ctx.pool.get("pitch.values")
        confidence = ctx.pool.get("pitch.confidence")
        events = []

        if C.PITCH in ctx.filter:
            events += ctx.throttle(
                values,
                lambda i, f: Pitch(float(f), float(confidence[i])),
                accept=lambda i, f: confidence[i] > PITCH_CONFIDENCE,
            )

        if C.PITCH_CHANGE in ctx.filter:
            previous = 0.0
            for i, (frequency, conf) in enumerate(zip(values, confidence)):
                t = ctx.frame_to_time(i)
                if t > ctx.duration:
                    break
                if i > 0 and conf > PITCH_CHANGE_CONFIDENCE and previous > 0 and frequency > 0:
                    ratio = frequency / previous
                    if ratio > PITCH_RATIO_HIGH or ratio < PITCH_RATIO_LOW:
                        events.append(Envelope(t, PitchChange(float(previous), float(frequency))))
                # The reference follows the looser confidence gate.
                if conf > PITCH_CONFIDENCE:
                    previous = float(frequency)

        return events

    def _melody(self, ctx: _Run) -> list[Envelope]:
        if not ctx.wants(C.MELODY, "melody.pitch"):
            return []
        return ctx.throttle(
            ctx.pool.get("melody.pitch"),
            lambda i, f: Melody(float(f)),
            accept=lambda i, f: f > 0,
        )

    # --- Extremum, delta and distance ---

    def _loudness_peaks(self, ctx: _Run) -> list[Envelope]:
        if not ctx.wants(C.LOUDNESS_PEAK, "loudness.values"):
            return []
        values = np.asarray(ctx.pool.get("loudness.values"), dtype=float)
        if len(values) < 3:
            return []
        floor = self.peak_ratio * values.max()
        events = []
        for i in range(1, len(values) - 1):
            t = ctx.frame_to_time(i)
            if t > ctx.duration:
                break
            v = values[i]
            if v > values[i - 1] and v > values[i + 1] and v >= floor:
                events.append(Envelope(t, LoudnessPeak(float(v))))
        return events

    def _dynamic_changes(self, ctx: _Run) -> list[Envelope]:
        if not ctx.wants(C.DYNAMIC_CHANGE, "loudness.values"):
            return []
        values = np.asarray(ctx.pool.get("loudness.values"), dtype=float)
        if len(values) < 2:
            return []
        peak = values.max()
        if peak <= 0:
            return []
        threshold = self.dynamic_change_ratio * peak
        events = []
        for i in range(1, len(values)):
            t = ctx.frame_to_time(i)
            if t > ctx.duration:
                break
            delta = values[i] - values[i - 1]
            if abs(delta) > threshold:
                events.append(Envelope(t, DynamicChange(float(delta))))
        return events

    def _timbre_changes(self, ctx: _Run) -> list[Envelope]:
        if not ctx.wants(C.TIMBRE_CHANGE, "spectral.mfcc"):
            return []
        coefficients = ctx.pool.get("spectral.mfcc")
        events = []
        for i in range(1, len(coefficients)):
            t = ctx.frame_to_time(i)
            if t > ctx.duration:
                break
            a = np.asarray(coefficients[i - 1], dtype=float)
            b = np.asarray(coefficients[i], dtype=float)
            n = min(len(a), len(b))
            distance = float(np.linalg.norm(b[:n] - a[:n]))
            if distance > self.timbre_change_threshold:
                events.append(Envelope(t, TimbreChange(distance)))
        return events

    # --- Labels ---

    def _chord_changes(self, ctx: _Run) -> list[Envelope]:
        if not ctx.wants(C.CHORD_CHANGE, "tonal.chords"):
            return []
        labels = ctx.pool.get("tonal.chords")
        strengths = None
        if ctx.pool.has("tonal.chord_strength"):
            strengths = ctx.pool.get("tonal.chord_strength")
        events = []
        previous = None
        for i, label in enumerate(labels):
            if label == previous:
                continue
            t = ctx.frame_to_time(i)
            if t > ctx.duration:
                break
            strength = None
            if strengths is not None and i < len(strengths):
                strength = float(strengths[i])
            events.append(Envelope(t, ChordChange(str(label), strength)))
            previous = label
        return events

    # --- Structure ---

    def _segments(self, ctx: _Run) -> list[Envelope]:
        if not ctx.wants(C.SEGMENT_BOUNDARY, "spectral.mfcc"):
            return []
        if self.segmenter is None:
            logger.debug("no segmenter configured, skipping segment boundaries")
            return []
        coefficients = ctx.pool.get("spectral.mfcc")
        if len(coefficients) < MIN_SEGMENT_FRAMES:
            logger.debug("too few frames for segmentation (%d)", len(coefficients))
            return []

        features = np.asarray(coefficients, dtype=float).T
        n_segments = max(2, int(ctx.duration // SEGMENT_SECONDS))
        boundaries = list(self.segmenter(features, n_segments))

        events = []
        # The first and last indices are the track edges, not boundaries.
        for frame in boundaries[1:-1]:
            t = ctx.frame_to_time(int(frame))
            if 0 < t < ctx.duration:
                events.append(Envelope(t, SegmentBoundary()))
        return events
