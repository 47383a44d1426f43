"""
Tonal feature helpers.

Pitch-class profiles from spectral peaks, key and chord estimation by
template correlation, and peak-based dissonance and inharmonicity.
"""

import numpy as np

PITCH_CLASSES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]

# Krumhansl-Kessler probe tone profiles, tonic at index 0.
MAJOR_PROFILE = np.array([6.35, 2.23, 3.48, 2.33, 4.38, 4.09, 2.52, 5.19, 2.39, 3.66, 2.29, 2.88])
MINOR_PROFILE = np.array([6.33, 2.68, 3.52, 5.38, 2.60, 3.53, 2.54, 4.75, 3.98, 2.69, 3.34, 3.17])


def hpcp(
    frequencies: list[np.ndarray],
    magnitudes: list[np.ndarray],
    reference_hz: float = 440.0,
    min_hz: float = 40.0,
    max_hz: float = 5000.0,
) -> np.ndarray:
    """
    Harmonic pitch class profile per frame.

    Each peak adds its squared magnitude to the pitch class nearest its
    frequency. Profiles are normalized to a maximum of 1.

    Returns:
        Array of shape (n_frames, 12), C at index 0.
    """
    profiles = np.zeros((len(frequencies), 12))
    for i, (freqs, mags) in enumerate(zip(frequencies, magnitudes)):
        keep = (freqs >= min_hz) & (freqs <= max_hz)
        if not keep.any():
            continue
        semitones = np.round(12.0 * np.log2(freqs[keep] / reference_hz)).astype(int)
        classes = (semitones + 9) % 12
        np.add.at(profiles[i], classes, mags[keep] ** 2)
        peak = profiles[i].max()
        if peak > 0:
            profiles[i] /= peak
    return profiles


def _correlate(profile: np.ndarray, template: np.ndarray) -> float:
    a = profile - profile.mean()
    b = template - template.mean()
    denom = np.sqrt(np.sum(a ** 2) * np.sum(b ** 2))
    if denom == 0:
        return 0.0
    return float(np.sum(a * b) / denom)


def best_key(profile: np.ndarray) -> tuple[str, str, float]:
    """Best matching (key, scale, strength) for one pitch class profile."""
    best = ("C", "major", 0.0)
    best_score = -np.inf
    for tonic in range(12):
        for scale, template in (("major", MAJOR_PROFILE), ("minor", MINOR_PROFILE)):
            score = _correlate(profile, np.roll(template, tonic))
            if score > best_score:
                best_score = score
                best = (PITCH_CLASSES[tonic], scale, score)
    return best


def estimate_keys(profiles: np.ndarray) -> tuple[list[str], list[str], np.ndarray]:
    """
    Running key estimate over the accumulated profile up to each frame.

    Returns:
        Tuple of (keys, scales, strengths), one entry per frame.
    """
    keys, scales = [], []
    strengths = np.zeros(len(profiles))
    accumulated = np.cumsum(profiles, axis=0) if len(profiles) else profiles
    for i, profile in enumerate(accumulated):
        key, scale, strength = best_key(profile)
        keys.append(key)
        scales.append(scale)
        strengths[i] = strength
    return keys, scales, strengths


def _chord_templates() -> list[tuple[str, np.ndarray]]:
    templates = []
    for root in range(12):
        major = np.zeros(12)
        major[[root, (root + 4) % 12, (root + 7) % 12]] = 1.0
        minor = np.zeros(12)
        minor[[root, (root + 3) % 12, (root + 7) % 12]] = 1.0
        templates.append((PITCH_CLASSES[root], major))
        templates.append((PITCH_CLASSES[root] + "m", minor))
    return templates


CHORD_TEMPLATES = _chord_templates()


def detect_chords(profiles: np.ndarray, window_frames: int = 1) -> tuple[list[str], np.ndarray]:
    """
    Chord label per frame from a moving average of the profiles.

    Returns:
        Tuple of (labels, strengths), one entry per frame.
    """
    n_frames = len(profiles)
    labels: list[str] = []
    strengths = np.zeros(n_frames)
    if n_frames == 0:
        return labels, strengths

    window_frames = max(1, window_frames)
    kernel = np.ones(window_frames) / window_frames
    smoothed = np.stack(
        [np.convolve(profiles[:, c], kernel, mode="same") for c in range(12)],
        axis=1,
    )

    for i, profile in enumerate(smoothed):
        label, score = "N", 0.0
        best_score = -np.inf
        for name, template in CHORD_TEMPLATES:
            s = _correlate(profile, template)
            if s > best_score:
                best_score, label, score = s, name, s
        labels.append(label)
        strengths[i] = score
    return labels, strengths


def dissonance(freqs: np.ndarray, mags: np.ndarray, max_peaks: int = 50) -> float:
    """
    Sensory roughness of a set of partials (Plomp-Levelt, Sethares form).

    Normalized by the summed pairwise amplitude products, so values fall
    in [0, 1].
    """
    if len(freqs) < 2:
        return 0.0
    if len(freqs) > max_peaks:
        strongest = np.argsort(mags)[::-1][:max_peaks]
        freqs, mags = freqs[strongest], mags[strongest]

    f1, f2 = np.meshgrid(freqs, freqs)
    a1, a2 = np.meshgrid(mags, mags)
    upper = np.triu(np.ones_like(f1, dtype=bool), k=1)
    f_low = np.minimum(f1, f2)[upper]
    df = np.abs(f1 - f2)[upper]
    amp = (a1 * a2)[upper]

    s = 0.24 / (0.021 * f_low + 19.0)
    roughness = amp * (np.exp(-3.5 * s * df) - np.exp(-5.75 * s * df))
    total = amp.sum()
    if total <= 0:
        return 0.0
    return float(np.clip(roughness.sum() / total, 0.0, 1.0))


def inharmonicity(freqs: np.ndarray, mags: np.ndarray) -> float:
    """
    Deviation of partials from the harmonic series of the lowest peak.

    Returns a value in [0, 0.5]; 0 for a perfectly harmonic spectrum.
    """
    if len(freqs) < 2:
        return 0.0
    f0 = freqs[0]
    if f0 <= 0:
        return 0.0
    harmonics = np.maximum(np.round(freqs / f0), 1.0)
    power = mags ** 2
    total = power.sum()
    if total <= 0:
        return 0.0
    deviation = np.abs(freqs - harmonics * f0) / f0
    return float(np.sum(deviation * power) / total)
