"""
Event taxonomy and filter plumbing.

Defines the closed set of event categories that can appear on the wire,
the transport-framing categories that are always emitted, and the
predefined and user-parsed filters that select which categories an
analysis run should produce.
"""

import logging
from enum import Enum

from tracks.exceptions import ConfigError

logger = logging.getLogger(__name__)


class EventCategory(Enum):
    """Every event kind, valued by its dotted wire name."""

    # Transport
    TRACK_START = "track.start"
    TRACK_END = "track.end"
    TRACK_POSITION = "track.position"
    TRACK_ABORT = "track.abort"
    TRACK_PREPARE = "track.prepare"

    # Beat/Rhythm
    BEAT = "beat"
    TEMPO_CHANGE = "tempo.change"
    DOWNBEAT = "downbeat"

    # Onset
    ONSET = "onset"
    ONSET_RATE = "onset.rate"
    NOVELTY = "novelty"

    # Tonal
    KEY_CHANGE = "key.change"
    CHORD_CHANGE = "chord.change"
    CHROMA = "chroma"
    TUNING = "tuning"
    DISSONANCE = "dissonance"
    INHARMONICITY = "inharmonicity"

    # Pitch/Melody
    PITCH = "pitch"
    PITCH_CHANGE = "pitch.change"
    MELODY = "melody"

    # Loudness/Energy
    LOUDNESS = "loudness"
    LOUDNESS_PEAK = "loudness.peak"
    ENERGY = "energy"
    DYNAMIC_CHANGE = "dynamic.change"

    # Silence/Gap
    SILENCE_START = "silence.start"
    SILENCE_END = "silence.end"
    GAP = "gap"

    # Spectral
    SPECTRAL_CENTROID = "spectral.centroid"
    SPECTRAL_FLUX = "spectral.flux"
    SPECTRAL_COMPLEXITY = "spectral.complexity"
    SPECTRAL_CONTRAST = "spectral.contrast"
    SPECTRAL_ROLLOFF = "spectral.rolloff"
    MFCC = "mfcc"
    TIMBRE_CHANGE = "timbre.change"

    # Bands
    BANDS_MEL = "bands.mel"
    BANDS_BARK = "bands.bark"
    BANDS_ERB = "bands.erb"
    HFC = "hfc"

    # Structure
    SEGMENT_BOUNDARY = "segment.boundary"
    FADE_IN = "fade.in"
    FADE_OUT = "fade.out"

    # Quality
    CLICK = "click"
    DISCONTINUITY = "discontinuity"
    NOISE_BURST = "noise.burst"
    SATURATION = "saturation"
    HUM = "hum"

    # Envelope/Transient
    ENVELOPE = "envelope"
    ATTACK = "attack"
    DECAY = "decay"

    @property
    def wire_name(self) -> str:
        """Dotted lowercase name used in filters and on the wire."""
        return self.value


EventFilter = frozenset

TRANSPORT_EVENTS = frozenset({
    EventCategory.TRACK_START,
    EventCategory.TRACK_END,
    EventCategory.TRACK_POSITION,
    EventCategory.TRACK_ABORT,
    EventCategory.TRACK_PREPARE,
})

FAMILIES: dict[str, tuple[EventCategory, ...]] = {
    "transport": (
        EventCategory.TRACK_START,
        EventCategory.TRACK_END,
        EventCategory.TRACK_POSITION,
        EventCategory.TRACK_ABORT,
        EventCategory.TRACK_PREPARE,
    ),
    "rhythm": (
        EventCategory.BEAT,
        EventCategory.TEMPO_CHANGE,
        EventCategory.DOWNBEAT,
    ),
    "onset": (
        EventCategory.ONSET,
        EventCategory.ONSET_RATE,
        EventCategory.NOVELTY,
    ),
    "tonal": (
        EventCategory.KEY_CHANGE,
        EventCategory.CHORD_CHANGE,
        EventCategory.CHROMA,
        EventCategory.TUNING,
        EventCategory.DISSONANCE,
        EventCategory.INHARMONICITY,
    ),
    "pitch": (
        EventCategory.PITCH,
        EventCategory.PITCH_CHANGE,
        EventCategory.MELODY,
    ),
    "loudness": (
        EventCategory.LOUDNESS,
        EventCategory.LOUDNESS_PEAK,
        EventCategory.ENERGY,
        EventCategory.DYNAMIC_CHANGE,
    ),
    "silence": (
        EventCategory.SILENCE_START,
        EventCategory.SILENCE_END,
        EventCategory.GAP,
    ),
    "spectral": (
        EventCategory.SPECTRAL_CENTROID,
        EventCategory.SPECTRAL_FLUX,
        EventCategory.SPECTRAL_COMPLEXITY,
        EventCategory.SPECTRAL_CONTRAST,
        EventCategory.SPECTRAL_ROLLOFF,
        EventCategory.MFCC,
        EventCategory.TIMBRE_CHANGE,
    ),
    "bands": (
        EventCategory.BANDS_MEL,
        EventCategory.BANDS_BARK,
        EventCategory.BANDS_ERB,
        EventCategory.HFC,
    ),
    "structure": (
        EventCategory.SEGMENT_BOUNDARY,
        EventCategory.FADE_IN,
        EventCategory.FADE_OUT,
    ),
    "quality": (
        EventCategory.CLICK,
        EventCategory.DISCONTINUITY,
        EventCategory.NOISE_BURST,
        EventCategory.SATURATION,
        EventCategory.HUM,
    ),
    "envelope": (
        EventCategory.ENVELOPE,
        EventCategory.ATTACK,
        EventCategory.DECAY,
    ),
}

_BY_NAME = {category.value: category for category in EventCategory}


def is_transport_event(category: EventCategory) -> bool:
    """Transport-framing events are always emitted and never filterable."""
    return category in TRANSPORT_EVENTS


def event_from_name(name: str) -> EventCategory | None:
    """Look up a category by its dotted name, or None if unknown."""
    return _BY_NAME.get(name)


def selectable_event_names() -> list[str]:
    """Sorted names of every category a user may put in a filter."""
    return sorted(c.value for c in EventCategory if not is_transport_event(c))


def default_events() -> frozenset:
    """Beat and onset only."""
    return frozenset({EventCategory.BEAT, EventCategory.ONSET})


def tier1_events() -> frozenset:
    """Primary categories: rhythm, onset, silence, loudness and energy."""
    return frozenset({
        EventCategory.BEAT,
        EventCategory.ONSET,
        EventCategory.SILENCE_START,
        EventCategory.SILENCE_END,
        EventCategory.GAP,
        EventCategory.LOUDNESS,
        EventCategory.LOUDNESS_PEAK,
        EventCategory.ENERGY,
        EventCategory.DYNAMIC_CHANGE,
    })


def tier2_events() -> frozenset:
    """Tier 1 plus every family backed by an analysis pass."""
    extra = (
        FAMILIES["rhythm"]
        + FAMILIES["onset"]
        + FAMILIES["tonal"]
        + FAMILIES["pitch"]
        + FAMILIES["spectral"]
        + FAMILIES["bands"]
        + FAMILIES["structure"]
    )
    return tier1_events() | frozenset(extra)


def all_events() -> frozenset:
    """Every non-transport category."""
    return frozenset(c for c in EventCategory if not is_transport_event(c))


PRESETS = {
    "default": default_events,
    "tier1": tier1_events,
    "primary": tier1_events,
    "tier2": tier2_events,
    "all": all_events,
}


def parse_event_filter(csv: str) -> frozenset:
    """
    Parse a comma-separated list of category names into a filter.

    Unknown names and transport-only names are dropped with a warning.
    The result may be empty; callers decide whether that is an error.

    Args:
        csv: Names such as "beat, onset,key.change".

    Returns:
        Frozen set of selected categories.
    """
    selected = set()
    for token in csv.split(","):
        name = token.strip()
        if not name:
            continue
        category = event_from_name(name)
        if category is None:
            logger.warning("unknown event type '%s', skipping", name)
            continue
        if is_transport_event(category):
            logger.warning("transport event '%s' is always enabled, skipping", name)
            continue
        selected.add(category)
    return frozenset(selected)


def resolve_event_filter(spec: str) -> frozenset:
    """
    Resolve a preset name or comma-separated list into a non-empty filter.

    Raises:
        ConfigError: If nothing valid remains after parsing.
    """
    preset = PRESETS.get(spec.strip().lower())
    if preset is not None:
        return preset()
    selected = parse_event_filter(spec)
    if not selected:
        raise ConfigError(f"no valid events specified in '{spec}'")
    return selected
