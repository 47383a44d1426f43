"""
Main analysis and emission pipeline.

Orchestrates the complete flow from audio file to a real-time event
stream: plan and run the analysis, synthesize the timeline, then replay
it over the transport.
"""

import logging
from pathlib import Path
from typing import Any, Union

from tracks.config import Config
from tracks.core.extractor import FeatureExtractor, LibrosaExtractor
from tracks.core.planner import PipelinePlanner
from tracks.core.pool import FeaturePool
from tracks.core.synthesizer import TimelineSynthesizer
from tracks.core.timeline import Timeline
from tracks.emitter import CancellationToken, Emitter, EmitterState
from tracks.io.transport import MulticastTransport, Transport

logger = logging.getLogger(__name__)


class TracksPipeline:
    """
    Complete audio-to-event-stream pipeline.

    Combines planning, extraction, synthesis and emission into a single
    unified interface. The transport is opened on first use unless one
    is supplied.
    """

    def __init__(
        self,
        config: Config | None = None,
        extractor: FeatureExtractor | None = None,
        transport: Transport | None = None,
        emitter: Emitter | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Resolved run configuration.
            extractor: Feature backend; defaults to LibrosaExtractor.
            transport: Envelope destination; defaults to a multicast
                       sender built from config.network.
            emitter: Replay engine; defaults to a wall-clock Emitter.
        """
        self.config = config or Config()
        self.extractor = extractor or LibrosaExtractor()
        self.planner = PipelinePlanner(self.extractor, self.config.analysis)
        self.synthesizer = TimelineSynthesizer(segmenter=self.extractor.segment)
        self._transport = transport
        self._owns_transport = transport is None
        self._emitter = emitter

    @property
    def transport(self) -> Transport:
        if self._transport is None:
            self._transport = MulticastTransport(self.config.network)
        return self._transport

    @property
    def emitter(self) -> Emitter:
        if self._emitter is None:
            self._emitter = Emitter(self.transport)
        return self._emitter

    def analyze(
        self,
        audio_path: Union[str, Path],
        token: CancellationToken | None = None,
    ) -> tuple[FeaturePool, float]:
        """
        Phase A: Run the analysis passes the event filter needs.

        Args:
            audio_path: Path to audio file.
            token: Optional cancellation signal.

        Returns:
            Tuple of (FeaturePool, duration in seconds).
        """
        return self.planner.plan_and_run(self.config.events.enabled, audio_path, cancel=token)

    def synthesize(
        self,
        pool: FeaturePool,
        duration: float,
        filename: str,
    ) -> Timeline:
        """
        Phase B: Derive the framed event timeline.

        Args:
            pool: Feature series from analyze().
            duration: Track length in seconds.
            filename: Name announced in track.start.

        Returns:
            Sorted Timeline.
        """
        return self.synthesizer.synthesize(
            pool,
            self.config.events.enabled,
            self.config,
            duration,
            filename=filename,
        )

    def emit(
        self,
        timeline: Timeline,
        token: CancellationToken,
        filename: str = "",
    ) -> EmitterState:
        """
        Phase C: Replay the timeline in real time.

        Args:
            timeline: Timeline from synthesize().
            token: Cancellation signal.
            filename: Resolved path announced in track.prepare.

        Returns:
            Final emitter state.
        """
        return self.emitter.run(
            timeline,
            token,
            prepare_seconds=self.config.transport.prepare_time,
            filename=filename,
        )

    def process(
        self,
        audio_path: Union[str, Path],
        token: CancellationToken | None = None,
        emit: bool = True,
    ) -> dict[str, Any]:
        """
        Run the complete pipeline for one file.

        Args:
            audio_path: Path to input audio file.
            token: Cancellation signal; a fresh one is used if None.
            emit: Whether to replay the timeline after synthesis.

        Returns:
            Dictionary with the timeline, duration, per-category counts
            and the final emitter state (None when emit is False).
        """
        token = token or CancellationToken()

        pool, duration = self.analyze(audio_path, token)
        logger.info("duration: %.2fs", duration)

        timeline = self.synthesize(pool, duration, filename=str(audio_path))
        logger.info("timeline: %d events", len(timeline))

        state = None
        if emit:
            state = self.emit(timeline, token, filename=str(Path(audio_path).resolve()))

        return {
            "timeline": timeline,
            "duration": duration,
            "counts": timeline.counts(),
            "state": state,
        }

    def close(self) -> None:
        """Close the transport if this pipeline opened one.

        A transport passed to the constructor belongs to the caller and is
        left open.
        """
        if self._owns_transport and self._transport is not None:
            self._transport.close()
            self._transport = None
