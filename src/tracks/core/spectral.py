"""
Spectral feature helpers.

Frame-wise computations over a magnitude spectrogram of shape
(n_bins, n_frames), as produced by librosa.stft. Scalar features return
an array of length n_frames; band features return (n_frames, n_bands).
"""

import librosa
import numpy as np
from scipy import signal as scipy_signal

# Critical band edges in Hz (Zwicker).
BARK_EDGES = np.array([
    0.0, 50.0, 100.0, 150.0, 200.0, 300.0, 400.0, 510.0, 630.0, 770.0,
    920.0, 1080.0, 1270.0, 1480.0, 1720.0, 2000.0, 2320.0, 2700.0, 3150.0,
    3700.0, 4400.0, 5300.0, 6400.0, 7700.0, 9500.0, 12000.0, 15500.0,
    20500.0, 27000.0,
])


def magnitude_spectrum(y: np.ndarray, frame_size: int, hop_size: int) -> np.ndarray:
    """Hann-windowed magnitude spectrogram, frames centered on i * hop."""
    return np.abs(
        librosa.stft(y, n_fft=frame_size, hop_length=hop_size, window="hann")
    )


def time_frames(y: np.ndarray, frame_size: int, hop_size: int) -> np.ndarray:
    """
    Slice a signal into overlapping frames aligned with the spectrogram.

    Returns:
        Array of shape (frame_size, n_frames).
    """
    padded = np.pad(y, frame_size // 2)
    if len(padded) < frame_size:
        padded = np.pad(padded, (0, frame_size - len(padded)))
    return librosa.util.frame(padded, frame_length=frame_size, hop_length=hop_size)


def _band_energies(S: np.ndarray, freqs: np.ndarray, edges: np.ndarray) -> np.ndarray:
    power = S ** 2
    bands = []
    for low, high in zip(edges[:-1], edges[1:]):
        mask = (freqs >= low) & (freqs < high)
        bands.append(power[mask].sum(axis=0) if mask.any() else np.zeros(S.shape[1]))
    return np.stack(bands, axis=1)


def bark_bands(S: np.ndarray, sr: int, n_fft: int) -> np.ndarray:
    """Energy in each Bark critical band below Nyquist."""
    freqs = librosa.fft_frequencies(sr=sr, n_fft=n_fft)
    edges = BARK_EDGES[BARK_EDGES < sr / 2]
    edges = np.append(edges, sr / 2 + 1.0)
    return _band_energies(S, freqs, edges)


def erb_bands(
    S: np.ndarray,
    sr: int,
    n_fft: int,
    n_bands: int = 40,
    low_hz: float = 50.0,
) -> np.ndarray:
    """Energy in bands equally spaced on the ERB-rate scale."""
    freqs = librosa.fft_frequencies(sr=sr, n_fft=n_fft)
    high_hz = sr / 2

    def to_erb(f):
        return 21.4 * np.log10(1.0 + 0.00437 * f)

    def from_erb(e):
        return (10.0 ** (e / 21.4) - 1.0) / 0.00437

    edges = from_erb(np.linspace(to_erb(low_hz), to_erb(high_hz), n_bands + 1))
    return _band_energies(S, freqs, edges)


def high_frequency_content(S: np.ndarray) -> np.ndarray:
    """Bin-index weighted spectral power per frame."""
    k = np.arange(S.shape[0])[:, np.newaxis]
    return np.sum(k * S ** 2, axis=0)


def spectral_flux(S: np.ndarray) -> np.ndarray:
    """L2 distance between consecutive L1-normalized spectra."""
    norms = S.sum(axis=0, keepdims=True)
    normalized = np.divide(S, norms, out=np.zeros_like(S), where=norms > 0)
    diff = np.diff(normalized, axis=1, prepend=normalized[:, :1])
    return np.sqrt(np.sum(diff ** 2, axis=0))


def spectral_complexity(S: np.ndarray, magnitude_threshold: float = 0.005) -> np.ndarray:
    """Number of spectral peaks above a magnitude threshold per frame."""
    counts = np.zeros(S.shape[1])
    for i in range(S.shape[1]):
        peaks, _ = scipy_signal.find_peaks(S[:, i], height=magnitude_threshold)
        counts[i] = len(peaks)
    return counts


def spectral_peaks(
    S: np.ndarray,
    sr: int,
    n_fft: int,
    max_peaks: int = 100,
    min_frequency: float = 0.0,
    max_frequency: float | None = None,
) -> tuple[list[np.ndarray], list[np.ndarray]]:
    """
    Locate the strongest peaks of every frame.

    Returns:
        Tuple of (frequencies, magnitudes), one array per frame, each
        sorted by ascending frequency.
    """
    max_frequency = max_frequency or sr / 2
    bin_hz = sr / n_fft
    all_freqs, all_mags = [], []

    for i in range(S.shape[1]):
        column = S[:, i]
        idx, _ = scipy_signal.find_peaks(column)
        freqs = idx * bin_hz
        keep = (freqs >= min_frequency) & (freqs <= max_frequency) & (column[idx] > 0)
        idx, freqs = idx[keep], freqs[keep]
        mags = column[idx]

        if len(idx) > max_peaks:
            strongest = np.argsort(mags)[::-1][:max_peaks]
            strongest.sort()
            freqs, mags = freqs[strongest], mags[strongest]

        all_freqs.append(freqs.astype(float))
        all_mags.append(mags.astype(float))

    return all_freqs, all_mags


def spectral_pitch(
    S: np.ndarray,
    sr: int,
    n_fft: int,
    min_hz: float = 40.0,
    max_hz: float = 2000.0,
    n_harmonics: int = 3,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Harmonic product spectrum pitch estimate.

    Confidence is the share of frame power found within one bin of the
    first five harmonics of the estimate.

    Returns:
        Tuple of (frequency_hz, confidence) arrays; silent frames give 0, 0.
    """
    n_bins, n_frames = S.shape
    bin_hz = sr / n_fft
    lo = max(1, int(np.ceil(min_hz / bin_hz)))
    hi = min(n_bins // n_harmonics, int(max_hz / bin_hz) + 1)

    frequencies = np.zeros(n_frames)
    confidences = np.zeros(n_frames)
    if hi <= lo:
        return frequencies, confidences

    power = S ** 2
    for i in range(n_frames):
        total = power[:, i].sum()
        if total <= 0:
            continue
        hps = S[:hi, i].copy()
        for h in range(2, n_harmonics + 1):
            hps *= S[::h, i][:hi]
        f0_bin = lo + int(np.argmax(hps[lo:hi]))

        harmonic_power = 0.0
        for h in range(1, 6):
            center = f0_bin * h
            if center >= n_bins:
                break
            harmonic_power += power[max(0, center - 1):center + 2, i].sum()

        frequencies[i] = f0_bin * bin_hz
        confidences[i] = min(1.0, harmonic_power / total)

    return frequencies, confidences
