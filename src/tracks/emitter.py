"""
Real-time timeline replay.

The Emitter walks a Timeline and hands each envelope to a Transport when
its timestamp comes due on the wall clock. Waiting happens in short
slices so a cancellation request is noticed within one slice, at which
point a single track.abort is sent in place of the rest of the timeline.
"""

import enum
import logging
import threading
import time
from typing import Callable, Iterable

from tracks.io.transport import Transport
from tracks.payloads import Envelope, TrackAbort, TrackPrepare

logger = logging.getLogger(__name__)

ABORT_REASON = "user_interrupt"


class CancellationToken:
    """
    One-shot cancellation signal.

    Safe to set from a signal handler or another thread. Once set it
    stays set.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()


class EmitterState(enum.Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    PLAYING = "playing"
    COMPLETED = "completed"
    ABORTED = "aborted"


class Emitter:
    """
    Replays a timeline against the wall clock.

    The clock and sleep function are injectable so scheduling can be
    driven by a fake clock in tests.
    """

    def __init__(
        self,
        transport: Transport,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        slice_seconds: float = 0.1,
    ):
        """
        Initialize the emitter.

        Args:
            transport: Destination for every envelope.
            clock: Monotonic clock in seconds.
            sleep: Blocking sleep in seconds.
            slice_seconds: Longest single sleep between cancellation checks.
        """
        self.transport = transport
        self.clock = clock
        self.sleep = sleep
        self.slice_seconds = slice_seconds
        self.state = EmitterState.IDLE
        self.sent = 0

    def _send(self, envelope: Envelope) -> None:
        self.transport.send(envelope)
        self.sent += 1

    def _wait_until(self, deadline: float, token: CancellationToken) -> bool:
        """Sleep until deadline; False if cancellation was seen first."""
        while True:
            if token.is_set():
                return False
            remaining = deadline - self.clock()
            if remaining <= 0:
                return True
            self.sleep(min(remaining, self.slice_seconds))

    def _abort(self, timestamp: float) -> EmitterState:
        logger.info("interrupted, sending track.abort at %.3fs", timestamp)
        self._send(Envelope(timestamp, TrackAbort(ABORT_REASON)))
        self.state = EmitterState.ABORTED
        return self.state

    def run(
        self,
        timeline: Iterable[Envelope],
        token: CancellationToken,
        prepare_seconds: float = 0.0,
        filename: str = "",
    ) -> EmitterState:
        """
        Emit a timeline in real time.

        Args:
            timeline: Envelopes in ascending timestamp order.
            token: Cancellation signal, checked at least once per slice.
            prepare_seconds: Pre-roll announced with track.prepare before
                             playback starts; 0 disables it.
            filename: Resolved path announced in track.prepare.

        Returns:
            COMPLETED after the whole timeline is sent, ABORTED otherwise.
        """
        self.sent = 0
        self.state = EmitterState.IDLE

        if prepare_seconds > 0:
            self.state = EmitterState.PREPARING
            timestamp = -float(prepare_seconds)
            logger.info("prepare: %.1fs countdown for %s", prepare_seconds, filename)
            self._send(Envelope(timestamp, TrackPrepare(filename, float(prepare_seconds))))
            if not self._wait_until(self.clock() + prepare_seconds, token):
                return self._abort(timestamp)

        self.state = EmitterState.PLAYING
        reference = self.clock()

        for envelope in timeline:
            if not self._wait_until(reference + envelope.timestamp, token):
                return self._abort(envelope.timestamp)
            self._send(envelope)

        self.state = EmitterState.COMPLETED
        logger.debug("emitted %d envelopes", self.sent)
        return self.state
