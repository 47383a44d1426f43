"""
Feature extraction boundary.

The planner drives extraction through the FeatureExtractor interface:
decode a source once, then request named computations whose outputs are
named feature series. LibrosaExtractor is the production implementation;
tests substitute a fake.
"""

import abc
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Union

import librosa
import numpy as np

from tracks.config import AnalysisConfig
from tracks.core import spectral, tonal
from tracks.exceptions import ExtractionError

logger = logging.getLogger(__name__)


@dataclass
class DecodedAudio:
    """Mono signal decoded from one source."""

    signal: np.ndarray
    sample_rate: int
    source: str

    @property
    def n_samples(self) -> int:
        """Total number of samples in the signal."""
        return len(self.signal)

    @property
    def duration(self) -> float:
        """Length of the signal in seconds."""
        return self.n_samples / self.sample_rate


class FeatureExtractor(abc.ABC):
    """Capability interface to a feature extraction backend."""

    @abc.abstractmethod
    def decode(self, source: Union[str, Path], sample_rate: int) -> DecodedAudio:
        """Decode a source to a mono signal at the given rate."""

    @abc.abstractmethod
    def compute(
        self,
        name: str,
        audio: DecodedAudio,
        upstream: Mapping[str, Any],
        params: AnalysisConfig,
    ) -> dict[str, Any]:
        """
        Run one named computation.

        Args:
            name: Computation name, e.g. "spectrum" or "mfcc".
            audio: Decoded source.
            upstream: Outputs of the computations this one requires.
            params: Framing parameters.

        Returns:
            Every output the computation produces, keyed by output name.
        """

    @abc.abstractmethod
    def segment(self, features: np.ndarray, n_segments: int) -> list[int]:
        """
        Segment a (n_coefficients, n_frames) feature matrix.

        Returns:
            Boundary frame indices, including the first and last frame.
        """


class LibrosaExtractor(FeatureExtractor):
    """
    Feature extraction backed by librosa, numpy and scipy.

    Every computation works on frames of params.frame_size samples spaced
    params.hop_size apart, with frame i centered at i * hop_size, so frame
    indices convert to time as i * hop_size / sample_rate.
    """

    def __init__(
        self,
        n_mfcc: int = 13,
        n_mel_bands: int = 24,
        chord_window_seconds: float = 2.0,
        silence_threshold_db: float = -60.0,
    ):
        """
        Initialize the extractor.

        Args:
            n_mfcc: Number of cepstral coefficients.
            n_mel_bands: Number of mel bands for the bands.mel series.
            chord_window_seconds: Smoothing window for chord detection.
            silence_threshold_db: Frame level below which a frame is silent.
        """
        self.n_mfcc = n_mfcc
        self.n_mel_bands = n_mel_bands
        self.chord_window_seconds = chord_window_seconds
        self.silence_threshold_db = silence_threshold_db

    def decode(self, source: Union[str, Path], sample_rate: int) -> DecodedAudio:
        try:
            y, sr = librosa.load(source, sr=sample_rate, mono=True)
        except Exception as e:
            raise ExtractionError(f"cannot decode {source}: {e}") from e
        return DecodedAudio(signal=y, sample_rate=sr, source=str(source))

    def compute(
        self,
        name: str,
        audio: DecodedAudio,
        upstream: Mapping[str, Any],
        params: AnalysisConfig,
    ) -> dict[str, Any]:
        handler = getattr(self, f"_compute_{name}", None)
        if handler is None:
            raise ExtractionError(f"unsupported computation: {name}")
        try:
            return handler(audio, upstream, params)
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"computation '{name}' failed: {e}") from e

    def segment(self, features: np.ndarray, n_segments: int) -> list[int]:
        n_frames = features.shape[1]
        k = int(np.clip(n_segments, 1, n_frames))
        bounds = librosa.segment.agglomerative(features, k)
        boundaries = [int(b) for b in bounds]
        if not boundaries or boundaries[0] != 0:
            boundaries.insert(0, 0)
        if boundaries[-1] != n_frames - 1:
            boundaries.append(n_frames - 1)
        return boundaries

    # --- Rhythm ---

    def _compute_onset_envelope(self, audio, upstream, params):
        onset_env = librosa.onset.onset_strength(
            y=audio.signal, sr=audio.sample_rate, hop_length=params.hop_size
        )
        return {"rhythm.novelty": onset_env}

    def _compute_beats(self, audio, upstream, params):
        sr, hop = audio.sample_rate, params.hop_size
        onset_env = upstream["rhythm.novelty"]
        _, beat_frames = librosa.beat.beat_track(
            onset_envelope=onset_env,
            sr=sr,
            hop_length=hop,
        )
        ticks = librosa.frames_to_time(beat_frames, sr=sr, hop_length=hop)

        peak = float(onset_env.max()) if len(onset_env) else 0.0
        if peak > 0:
            confidence = onset_env[beat_frames] / peak
        else:
            confidence = np.zeros(len(beat_frames))

        return {"rhythm.ticks": ticks, "rhythm.confidence": confidence}

    def _compute_onsets(self, audio, upstream, params):
        sr, hop = audio.sample_rate, params.hop_size
        onset_env = upstream["rhythm.novelty"]
        onset_frames = librosa.onset.onset_detect(
            onset_envelope=onset_env,
            sr=sr,
            hop_length=hop,
        )
        onset_times = librosa.frames_to_time(onset_frames, sr=sr, hop_length=hop)
        rate = len(onset_times) / audio.duration if audio.duration > 0 else 0.0

        return {"rhythm.onset_times": onset_times, "rhythm.onset_rate": np.array([rate])}

    # --- Time-domain frames ---

    def _compute_frames(self, audio, upstream, params):
        return {"frames": spectral.time_frames(audio.signal, params.frame_size, params.hop_size)}

    def _compute_silence(self, audio, upstream, params):
        frames = upstream["frames"]
        power = np.mean(frames ** 2, axis=0)
        level_db = 10.0 * np.log10(power + 1e-20)
        loud = np.flatnonzero(level_db > self.silence_threshold_db)

        if len(loud):
            start, stop = int(loud[0]), int(loud[-1])
        else:
            start, stop = 0, 0

        return {
            "silence.start_frame": np.array([start]),
            "silence.stop_frame": np.array([stop]),
        }

    def _compute_loudness(self, audio, upstream, params):
        energy = np.sum(upstream["frames"] ** 2, axis=0)
        return {"loudness.values": energy ** 0.67}

    def _compute_energy(self, audio, upstream, params):
        return {"energy.values": np.sum(upstream["frames"] ** 2, axis=0)}

    # --- Spectrum and its consumers ---

    def _compute_spectrum(self, audio, upstream, params):
        return {
            "spectrum": spectral.magnitude_spectrum(
                audio.signal, params.frame_size, params.hop_size
            )
        }

    def _compute_centroid(self, audio, upstream, params):
        S = upstream["spectrum"]
        centroid = librosa.feature.spectral_centroid(
            S=S, sr=audio.sample_rate, n_fft=params.frame_size
        )[0]
        return {"spectral.centroid": centroid}

    def _compute_flux(self, audio, upstream, params):
        return {"spectral.flux": spectral.spectral_flux(upstream["spectrum"])}

    def _compute_complexity(self, audio, upstream, params):
        return {"spectral.complexity": spectral.spectral_complexity(upstream["spectrum"])}

    def _compute_contrast(self, audio, upstream, params):
        sr = audio.sample_rate
        fmin = 200.0
        n_bands = 6
        # Every band edge below the top one has to stay under Nyquist.
        while n_bands > 1 and fmin * 2 ** (n_bands - 1) >= sr / 2:
            n_bands -= 1
        contrast = librosa.feature.spectral_contrast(
            S=upstream["spectrum"],
            sr=sr,
            n_fft=params.frame_size,
            fmin=fmin,
            n_bands=n_bands,
        )
        return {"spectral.contrast": contrast.T}

    def _compute_rolloff(self, audio, upstream, params):
        rolloff = librosa.feature.spectral_rolloff(
            S=upstream["spectrum"], sr=audio.sample_rate, n_fft=params.frame_size
        )[0]
        return {"spectral.rolloff": rolloff}

    def _compute_hfc(self, audio, upstream, params):
        return {"spectral.hfc": spectral.high_frequency_content(upstream["spectrum"])}

    def _compute_mfcc(self, audio, upstream, params):
        mel = librosa.feature.melspectrogram(
            S=upstream["spectrum"] ** 2,
            sr=audio.sample_rate,
            n_fft=params.frame_size,
            n_mels=40,
        )
        mfcc = librosa.feature.mfcc(S=librosa.power_to_db(mel), n_mfcc=self.n_mfcc)
        return {"spectral.mfcc": mfcc.T, "mfcc.bands": mel.T}

    def _compute_mel_bands(self, audio, upstream, params):
        mel = librosa.feature.melspectrogram(
            S=upstream["spectrum"] ** 2,
            sr=audio.sample_rate,
            n_fft=params.frame_size,
            n_mels=self.n_mel_bands,
        )
        return {"bands.mel": mel.T}

    def _compute_bark_bands(self, audio, upstream, params):
        return {
            "bands.bark": spectral.bark_bands(
                upstream["spectrum"], audio.sample_rate, params.frame_size
            )
        }

    def _compute_erb_bands(self, audio, upstream, params):
        return {
            "bands.erb": spectral.erb_bands(
                upstream["spectrum"], audio.sample_rate, params.frame_size
            )
        }

    # --- Peaks and tonal ---

    def _compute_peaks(self, audio, upstream, params):
        freqs, mags = spectral.spectral_peaks(
            upstream["spectrum"], audio.sample_rate, params.frame_size
        )
        return {"peaks.frequencies": freqs, "peaks.magnitudes": mags}

    def _compute_filtered_peaks(self, audio, upstream, params):
        # 0 Hz peaks make the roughness and harmonicity models degenerate.
        freqs, mags = spectral.spectral_peaks(
            upstream["spectrum"],
            audio.sample_rate,
            params.frame_size,
            min_frequency=20.0,
        )
        return {"filtered_peaks.frequencies": freqs, "filtered_peaks.magnitudes": mags}

    def _compute_hpcp(self, audio, upstream, params):
        profiles = tonal.hpcp(upstream["peaks.frequencies"], upstream["peaks.magnitudes"])
        return {"tonal.hpcp": profiles}

    def _compute_key(self, audio, upstream, params):
        keys, scales, strengths = tonal.estimate_keys(upstream["tonal.hpcp"])
        return {
            "tonal.key": keys,
            "tonal.scale": scales,
            "tonal.key_strength": strengths,
        }

    def _compute_chords(self, audio, upstream, params):
        window = int(round(self.chord_window_seconds * audio.sample_rate / params.hop_size))
        chords, strengths = tonal.detect_chords(upstream["tonal.hpcp"], window)
        return {"tonal.chords": chords, "tonal.chord_strength": strengths}

    def _compute_tuning(self, audio, upstream, params):
        deviation = librosa.estimate_tuning(
            S=upstream["spectrum"], sr=audio.sample_rate, n_fft=params.frame_size
        )
        return {"tonal.tuning": np.array([440.0 * 2.0 ** (float(deviation) / 12.0)])}

    def _compute_dissonance(self, audio, upstream, params):
        values = [
            tonal.dissonance(f, m)
            for f, m in zip(
                upstream["filtered_peaks.frequencies"],
                upstream["filtered_peaks.magnitudes"],
            )
        ]
        return {"tonal.dissonance": np.array(values)}

    def _compute_inharmonicity(self, audio, upstream, params):
        values = [
            tonal.inharmonicity(f, m)
            for f, m in zip(
                upstream["filtered_peaks.frequencies"],
                upstream["filtered_peaks.magnitudes"],
            )
        ]
        return {"tonal.inharmonicity": np.array(values)}

    # --- Pitch and melody ---

    def _compute_pitch(self, audio, upstream, params):
        frequency, confidence = spectral.spectral_pitch(
            upstream["spectrum"], audio.sample_rate, params.frame_size
        )
        return {"pitch.values": frequency, "pitch.confidence": confidence}

    def _compute_melody(self, audio, upstream, params):
        f0, _, voiced_prob = librosa.pyin(
            audio.signal,
            fmin=librosa.note_to_hz("C2"),
            fmax=librosa.note_to_hz("C7"),
            sr=audio.sample_rate,
            frame_length=params.frame_size,
            hop_length=params.hop_size,
        )
        return {
            "melody.pitch": np.nan_to_num(f0, nan=0.0),
            "melody.confidence": np.nan_to_num(voiced_prob, nan=0.0),
        }
