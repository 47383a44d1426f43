"""
Timeline: the merged, time-ordered sequence of envelopes for one track.
"""

from collections import Counter
from typing import Iterable, Iterator

from tracks.events import EventCategory
from tracks.payloads import Envelope, TrackEnd, TrackPosition, TrackStart


class Timeline:
    """
    Envelopes sorted ascending by timestamp.

    Sorting is stable, so envelopes sharing a timestamp keep the order in
    which they were supplied.
    """

    def __init__(self, envelopes: Iterable[Envelope] = ()):
        self._envelopes = sorted(envelopes, key=lambda e: e.timestamp)

    @classmethod
    def framed(
        cls,
        events: Iterable[Envelope],
        duration: float,
        filename: str,
        sample_rate: int,
        position_interval: float = 1.0,
    ) -> "Timeline":
        """
        Wrap synthesized events in transport framing.

        Adds track.start at 0, a track.position heartbeat at every multiple
        of position_interval strictly inside (0, duration) and track.end at
        duration. Start is placed first and end last before sorting, so
        ties at either boundary resolve in their favor.

        track.start always reports one channel, because sources are
        downmixed to mono when decoded.
        """
        start = Envelope(0.0, TrackStart(filename, float(duration), int(sample_rate), 1))

        positions = []
        k = 1
        while k * position_interval < duration:
            t = k * position_interval
            positions.append(Envelope(t, TrackPosition(t)))
            k += 1

        end = Envelope(float(duration), TrackEnd())
        return cls([start, *events, *positions, end])

    @property
    def duration(self) -> float:
        """Timestamp of the last envelope, or 0 for an empty timeline."""
        return self._envelopes[-1].timestamp if self._envelopes else 0.0

    def counts(self) -> Counter:
        """Number of envelopes per category."""
        return Counter(e.category for e in self._envelopes)

    def of(self, category: EventCategory) -> list[Envelope]:
        """Envelopes of one category, in timeline order."""
        return [e for e in self._envelopes if e.category is category]

    def __iter__(self) -> Iterator[Envelope]:
        return iter(self._envelopes)

    def __len__(self) -> int:
        return len(self._envelopes)

    def __getitem__(self, index):
        return self._envelopes[index]
