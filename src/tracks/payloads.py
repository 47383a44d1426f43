"""
Event payloads and the envelope that carries them.

Each event category has exactly one payload class. Payload classes
register themselves against their category, so the set of payloads is
closed and can be looked up from a category when decoding.
"""

from dataclasses import dataclass, fields
from typing import Any, ClassVar

from tracks.events import EventCategory

PAYLOAD_TYPES: dict[EventCategory, type["Payload"]] = {}


class Payload:
    """Base for every payload variant."""

    category: ClassVar[EventCategory]

    def __init_subclass__(cls, category: EventCategory | None = None, **kwargs):
        super().__init_subclass__(**kwargs)
        if category is not None:
            cls.category = category
            PAYLOAD_TYPES[category] = cls

    def to_dict(self) -> dict[str, Any]:
        """Field values keyed by field name."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


def vector(values) -> tuple[float, ...]:
    """Freeze an array-like into a tuple of plain floats."""
    return tuple(float(v) for v in values)


@dataclass(frozen=True)
class MarkerPayload(Payload):
    """Payload with no fields; the category alone is the message."""


@dataclass(frozen=True)
class ScalarPayload(Payload):
    value: float


@dataclass(frozen=True)
class VectorPayload(Payload):
    values: tuple[float, ...]


# --- Transport ---

@dataclass(frozen=True)
class TrackStart(Payload, category=EventCategory.TRACK_START):
    filename: str
    duration: float
    sample_rate: int
    channels: int = 1


class TrackEnd(MarkerPayload, category=EventCategory.TRACK_END):
    pass


@dataclass(frozen=True)
class TrackPosition(Payload, category=EventCategory.TRACK_POSITION):
    position: float


@dataclass(frozen=True)
class TrackAbort(Payload, category=EventCategory.TRACK_ABORT):
    reason: str = "user_interrupt"


@dataclass(frozen=True)
class TrackPrepare(Payload, category=EventCategory.TRACK_PREPARE):
    filename: str
    countdown: float


# --- Beat/Rhythm ---

@dataclass(frozen=True)
class Beat(Payload, category=EventCategory.BEAT):
    confidence: float | None = None


@dataclass(frozen=True)
class TempoChange(Payload, category=EventCategory.TEMPO_CHANGE):
    bpm: float


@dataclass(frozen=True)
class Downbeat(Payload, category=EventCategory.DOWNBEAT):
    confidence: float | None = None


# --- Onset ---

@dataclass(frozen=True)
class Onset(Payload, category=EventCategory.ONSET):
    strength: float = 1.0


@dataclass(frozen=True)
class OnsetRate(Payload, category=EventCategory.ONSET_RATE):
    rate: float


class Novelty(ScalarPayload, category=EventCategory.NOVELTY):
    pass


# --- Tonal ---

@dataclass(frozen=True)
class KeyChange(Payload, category=EventCategory.KEY_CHANGE):
    key: str
    scale: str
    strength: float


@dataclass(frozen=True)
class ChordChange(Payload, category=EventCategory.CHORD_CHANGE):
    chord: str
    strength: float | None = None


class Chroma(VectorPayload, category=EventCategory.CHROMA):
    pass


@dataclass(frozen=True)
class Tuning(Payload, category=EventCategory.TUNING):
    frequency: float


class Dissonance(ScalarPayload, category=EventCategory.DISSONANCE):
    pass


class Inharmonicity(ScalarPayload, category=EventCategory.INHARMONICITY):
    pass


# --- Pitch/Melody ---

@dataclass(frozen=True)
class Pitch(Payload, category=EventCategory.PITCH):
    frequency: float
    confidence: float


@dataclass(frozen=True)
class PitchChange(Payload, category=EventCategory.PITCH_CHANGE):
    from_hz: float
    to_hz: float


@dataclass(frozen=True)
class Melody(Payload, category=EventCategory.MELODY):
    frequency: float


# --- Loudness/Energy ---

class Loudness(ScalarPayload, category=EventCategory.LOUDNESS):
    pass


class LoudnessPeak(ScalarPayload, category=EventCategory.LOUDNESS_PEAK):
    pass


class Energy(ScalarPayload, category=EventCategory.ENERGY):
    pass


@dataclass(frozen=True)
class DynamicChange(Payload, category=EventCategory.DYNAMIC_CHANGE):
    magnitude: float


# --- Silence/Gap ---

class SilenceStart(MarkerPayload, category=EventCategory.SILENCE_START):
    pass


class SilenceEnd(MarkerPayload, category=EventCategory.SILENCE_END):
    pass


@dataclass(frozen=True)
class Gap(Payload, category=EventCategory.GAP):
    duration: float


# --- Spectral ---

class SpectralCentroid(ScalarPayload, category=EventCategory.SPECTRAL_CENTROID):
    pass


class SpectralFlux(ScalarPayload, category=EventCategory.SPECTRAL_FLUX):
    pass


class SpectralComplexity(ScalarPayload, category=EventCategory.SPECTRAL_COMPLEXITY):
    pass


class SpectralContrast(VectorPayload, category=EventCategory.SPECTRAL_CONTRAST):
    pass


class SpectralRolloff(ScalarPayload, category=EventCategory.SPECTRAL_ROLLOFF):
    pass


class Mfcc(VectorPayload, category=EventCategory.MFCC):
    pass


@dataclass(frozen=True)
class TimbreChange(Payload, category=EventCategory.TIMBRE_CHANGE):
    distance: float


# --- Bands ---

class BandsMel(VectorPayload, category=EventCategory.BANDS_MEL):
    pass


class BandsBark(VectorPayload, category=EventCategory.BANDS_BARK):
    pass


class BandsErb(VectorPayload, category=EventCategory.BANDS_ERB):
    pass


class Hfc(ScalarPayload, category=EventCategory.HFC):
    pass


# --- Structure ---

class SegmentBoundary(MarkerPayload, category=EventCategory.SEGMENT_BOUNDARY):
    pass


@dataclass(frozen=True)
class FadeIn(Payload, category=EventCategory.FADE_IN):
    end_time: float


@dataclass(frozen=True)
class FadeOut(Payload, category=EventCategory.FADE_OUT):
    start_time: float


# --- Quality ---

class Click(MarkerPayload, category=EventCategory.CLICK):
    pass


class Discontinuity(MarkerPayload, category=EventCategory.DISCONTINUITY):
    pass


class NoiseBurst(MarkerPayload, category=EventCategory.NOISE_BURST):
    pass


@dataclass(frozen=True)
class Saturation(Payload, category=EventCategory.SATURATION):
    duration: float


@dataclass(frozen=True)
class Hum(Payload, category=EventCategory.HUM):
    frequency: float


# --- Envelope/Transient ---

class EnvelopeLevel(ScalarPayload, category=EventCategory.ENVELOPE):
    pass


@dataclass(frozen=True)
class Attack(Payload, category=EventCategory.ATTACK):
    log_attack_time: float


class Decay(ScalarPayload, category=EventCategory.DECAY):
    pass


@dataclass(frozen=True)
class Envelope:
    """One timestamped event: the unit of the timeline and of the wire."""

    timestamp: float
    payload: Payload

    @property
    def category(self) -> EventCategory:
        return self.payload.category


def payload_type(category: EventCategory) -> type[Payload]:
    """Payload class registered for a category."""
    return PAYLOAD_TYPES[category]
