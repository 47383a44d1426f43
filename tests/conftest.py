"""Pytest configuration and shared fixtures."""

import numpy as np
import pytest

from tracks.config import Config
from tracks.core.extractor import DecodedAudio, FeatureExtractor
from tracks.core.planner import COMPUTATIONS_BY_NAME
from tracks.core.pool import FeaturePool
from tracks.io.transport import Transport

# Sample rate for synthetic test audio
TEST_SR = 22050


class FakeExtractor(FeatureExtractor):
    """Extractor that records every request and returns canned series."""

    def __init__(self, duration=10.0, outputs=None, boundaries=None, fail_on=None):
        self.duration = duration
        self.outputs = outputs or {}
        self.boundaries = boundaries
        self.fail_on = fail_on
        self.decoded = []
        self.computed = []
        self.upstreams = {}
        self.segment_calls = []

    def decode(self, source, sample_rate):
        self.decoded.append(str(source))
        n_samples = int(self.duration * sample_rate)
        return DecodedAudio(np.zeros(n_samples, dtype=np.float32), sample_rate, str(source))

    def compute(self, name, audio, upstream, params):
        if name == self.fail_on:
            from tracks.exceptions import ExtractionError

            raise ExtractionError(f"{name} failed")
        self.computed.append(name)
        self.upstreams[name] = dict(upstream)
        return {
            key: self.outputs.get(key, np.zeros(4))
            for key in COMPUTATIONS_BY_NAME[name].outputs
        }

    def segment(self, features, n_segments):
        self.segment_calls.append((features.shape, n_segments))
        if self.boundaries is not None:
            return list(self.boundaries)
        return [0, features.shape[1] - 1]


class FakeTransport(Transport):
    """Transport that keeps every envelope it is given."""

    def __init__(self, clock=None):
        self.clock = clock
        self.sent = []
        self.sent_at = []
        self.closed = False

    def send(self, envelope):
        self.sent.append(envelope)
        if self.clock is not None:
            self.sent_at.append(self.clock())

    def close(self):
        self.closed = True

    @property
    def categories(self):
        return [e.category.value for e in self.sent]


class FakeClock:
    """
    Manually advanced monotonic clock.

    sleep() advances time instead of blocking; callbacks registered with
    at() fire once the clock reaches their time.
    """

    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []
        self._triggers = []

    def __call__(self):
        return self.now

    def at(self, when, callback):
        self._triggers.append((when, callback))

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        due = [t for t in self._triggers if t[0] <= self.now]
        for trigger in due:
            self._triggers.remove(trigger)
            trigger[1]()


def make_pool(**series) -> FeaturePool:
    """Pool from keyword series; double underscores become dots."""
    pool = FeaturePool()
    for key, value in series.items():
        pool.put(key.replace("__", "."), value)
    return pool


@pytest.fixture
def config() -> Config:
    """Default configuration."""
    return Config()


@pytest.fixture
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_transport(fake_clock) -> FakeTransport:
    return FakeTransport(clock=fake_clock)


@pytest.fixture
def sample_rate() -> int:
    """Sample rate for synthetic signals."""
    return TEST_SR


@pytest.fixture
def tone_with_silence(sample_rate: int) -> tuple[np.ndarray, int]:
    """
    A 440Hz tone framed by half a second of silence on each side.

    Returns:
        Tuple of (audio_signal, sample_rate).
    """
    pad = np.zeros(int(0.5 * sample_rate), dtype=np.float32)
    t = np.arange(int(2.0 * sample_rate)) / sample_rate
    tone = (0.5 * np.sin(2 * np.pi * 440.0 * t)).astype(np.float32)
    return np.concatenate([pad, tone, pad]), sample_rate


@pytest.fixture
def click_track(sample_rate: int) -> tuple[np.ndarray, int]:
    """
    Decaying clicks at 120 BPM over a quiet chord, 4 seconds long.

    Returns:
        Tuple of (audio_signal, sample_rate).
    """
    duration = 4.0
    n_samples = int(sample_rate * duration)
    t = np.arange(n_samples) / sample_rate
    y = 0.1 * (
        np.sin(2 * np.pi * 261.63 * t)
        + np.sin(2 * np.pi * 329.63 * t)
        + np.sin(2 * np.pi * 392.00 * t)
    )

    samples_per_beat = int(sample_rate * 0.5)
    click_length = int(sample_rate * 0.01)
    decay = 0.8 * np.exp(-np.linspace(0, 5, click_length))
    for start in range(0, n_samples - click_length, samples_per_beat):
        y[start:start + click_length] += decay

    return y.astype(np.float32), sample_rate


@pytest.fixture
def audio_file(tmp_path, tone_with_silence):
    """Tone-with-silence written to a temporary WAV file."""
    import soundfile as sf

    y, sr = tone_with_silence
    path = tmp_path / "tone.wav"
    sf.write(path, y, sr)
    return path


@pytest.fixture
def click_file(tmp_path, click_track):
    """Click track written to a temporary WAV file."""
    import soundfile as sf

    y, sr = click_track
    path = tmp_path / "clicks.wav"
    sf.write(path, y, sr)
    return path
