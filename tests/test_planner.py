"""Tests for the analysis planner and feature pool."""

import logging

import numpy as np
import pytest

from tracks.config import AnalysisConfig
from tracks.core.planner import (
    CATEGORY_SOURCES,
    COMPUTATIONS,
    PASSES,
    PRODUCER,
    PipelinePlanner,
    needs_any,
)
from tracks.core.pool import FeaturePool
from tracks.emitter import CancellationToken
from tracks.events import EventCategory as C, all_events, default_events
from tracks.exceptions import AnalysisCancelled, ExtractionError

from conftest import FakeExtractor


class TestFeaturePool:
    """Tests for the write-once store."""

    def test_put_get(self):
        """Stored series come back unchanged."""
        pool = FeaturePool()
        pool.put("a", [1, 2])
        assert pool.has("a")
        assert "a" in pool
        assert pool.get("a") == [1, 2]
        assert len(pool) == 1

    def test_write_once(self):
        """A key cannot be written twice in one run."""
        pool = FeaturePool()
        pool.put("a", 1)
        with pytest.raises(KeyError):
            pool.put("a", 2)

    def test_missing(self):
        """Absent keys report has() False."""
        assert not FeaturePool().has("nothing")

    def test_keys_sorted(self):
        """Iteration is over sorted keys."""
        pool = FeaturePool()
        pool.put("b", 1)
        pool.put("a", 2)
        assert list(pool) == ["a", "b"]


class TestDependencyTable:
    """Consistency of the computation and pass tables."""

    def test_table_is_in_dependency_order(self):
        """Every requirement is declared before its consumer."""
        seen = set()
        for computation in COMPUTATIONS:
            assert set(computation.requires) <= seen
            seen.add(computation.name)

    def test_every_source_has_a_producer(self):
        """Every series a category reads is produced by some computation."""
        for keys in CATEGORY_SOURCES.values():
            for key in keys:
                assert key in PRODUCER

    def test_passes_partition_analyzable_categories(self):
        """Each analyzable category is gated by exactly one pass."""
        gated = [c for p in PASSES for c in p.categories]
        assert len(gated) == len(set(gated))
        assert set(gated) == set(CATEGORY_SOURCES)

    def test_needs_any(self):
        """needs_any is a membership test against the filter."""
        assert needs_any(frozenset({C.BEAT}), [C.ONSET, C.BEAT])
        assert not needs_any(frozenset({C.BEAT}), [C.ONSET])
        assert not needs_any(frozenset(), [C.ONSET])


class TestPlan:
    """Tests for PipelinePlanner.plan()."""

    def test_default_filter(self, fake_extractor):
        """beat and onset need only their own passes."""
        plan = PipelinePlanner(fake_extractor).plan(default_events())

        assert plan.passes == ["rhythm", "onsets"]
        assert plan.computations == ["onset_envelope", "beats", "onsets"]
        assert "spectrum" not in plan.computations
        assert "rhythm.novelty" not in plan.published

    def test_shared_spectrum_computed_once(self, fake_extractor):
        """Several spectral consumers share one spectrum."""
        plan = PipelinePlanner(fake_extractor).plan(
            frozenset({C.MFCC, C.PITCH, C.BANDS_BARK, C.SPECTRAL_CENTROID})
        )

        assert plan.computations.count("spectrum") == 1
        assert plan.computations[0] == "spectrum"
        assert set(plan.computations) == {"spectrum", "mfcc", "pitch", "bark_bands", "centroid"}

    def test_unrequested_siblings_not_computed(self, fake_extractor):
        """Only requested spectral consumers are scheduled."""
        plan = PipelinePlanner(fake_extractor).plan(frozenset({C.HFC}))
        assert plan.computations == ["spectrum", "hfc"]

    def test_transitive_requirements(self, fake_extractor):
        """Key needs hpcp, which needs peaks, which needs the spectrum."""
        plan = PipelinePlanner(fake_extractor).plan(frozenset({C.KEY_CHANGE}))
        assert plan.computations == ["spectrum", "peaks", "hpcp", "key"]
        assert "tonal.hpcp" not in plan.published

    def test_chroma_publishes_hpcp(self, fake_extractor):
        """An intermediate is published when a category reads it."""
        plan = PipelinePlanner(fake_extractor).plan(frozenset({C.CHROMA, C.KEY_CHANGE}))
        assert "tonal.hpcp" in plan.published

    def test_no_category_silently_dropped(self, fake_extractor):
        """Every analyzable category in the filter has all its series scheduled."""
        event_filter = all_events()
        plan = PipelinePlanner(fake_extractor).plan(event_filter)

        produced = {key for name in plan.computations for key in
                    next(c for c in COMPUTATIONS if c.name == name).outputs}
        for category in event_filter:
            for key in CATEGORY_SOURCES.get(category, ()):
                assert key in produced

    def test_unanalyzable_categories(self, fake_extractor):
        """Categories without an analysis are reported, not dropped silently."""
        plan = PipelinePlanner(fake_extractor).plan(frozenset({C.HUM, C.BEAT}))
        assert plan.unanalyzable == {C.HUM}

    def test_decode_only(self, fake_extractor):
        """A filter with nothing analyzable plans no computations."""
        plan = PipelinePlanner(fake_extractor).plan(frozenset({C.DOWNBEAT}))
        assert plan.decode_only
        assert plan.passes == []


class TestRun:
    """Tests for PipelinePlanner.run() and plan_and_run()."""

    def test_decodes_once(self, fake_extractor):
        """One decode per run regardless of pass count."""
        planner = PipelinePlanner(fake_extractor)
        planner.plan_and_run(all_events(), "song.wav")
        assert fake_extractor.decoded == ["song.wav"]

    def test_returns_duration(self):
        """Duration comes from the decoded signal."""
        extractor = FakeExtractor(duration=3.0)
        planner = PipelinePlanner(extractor, AnalysisConfig(sample_rate=1000))
        _, duration = planner.plan_and_run(default_events(), "x.wav")
        assert duration == pytest.approx(3.0)

    def test_decode_only_run(self, caplog):
        """With nothing to analyze the run still yields a duration."""
        extractor = FakeExtractor(duration=2.0)
        planner = PipelinePlanner(extractor, AnalysisConfig(sample_rate=1000))
        with caplog.at_level(logging.WARNING):
            pool, duration = planner.plan_and_run(frozenset({C.FADE_IN}), "x.wav")

        assert extractor.computed == []
        assert len(pool) == 0
        assert duration == pytest.approx(2.0)
        assert "fade.in" in caplog.text

    def test_publishes_only_consumed_series(self, fake_extractor):
        """Internal and unconsumed outputs stay out of the pool."""
        pool, _ = PipelinePlanner(fake_extractor).plan_and_run(frozenset({C.MFCC}), "x.wav")

        assert pool.keys() == ["spectral.mfcc"]

    def test_unconsumed_output_is_discarded(self, fake_extractor, caplog):
        """Outputs with no consumer are dropped with a debug note."""
        with caplog.at_level(logging.DEBUG, logger="tracks.core.planner"):
            PipelinePlanner(fake_extractor).plan_and_run(frozenset({C.MFCC}), "x.wav")
        assert "mfcc.bands" in caplog.text

    def test_upstream_passed_to_consumers(self):
        """Consumers receive the outputs of what they require."""
        spectrum = np.ones((5, 3))
        extractor = FakeExtractor(outputs={"spectrum": spectrum})
        PipelinePlanner(extractor).plan_and_run(frozenset({C.HFC, C.PITCH}), "x.wav")

        assert extractor.upstreams["hfc"]["spectrum"] is spectrum
        assert extractor.upstreams["pitch"]["spectrum"] is spectrum
        assert extractor.upstreams["spectrum"] == {}

    def test_chained_upstream(self, fake_extractor):
        """hpcp is handed to both key and chords."""
        PipelinePlanner(fake_extractor).plan_and_run(
            frozenset({C.KEY_CHANGE, C.CHORD_CHANGE}), "x.wav"
        )
        assert "tonal.hpcp" in fake_extractor.upstreams["key"]
        assert "tonal.hpcp" in fake_extractor.upstreams["chords"]
        assert fake_extractor.computed.count("hpcp") == 1

    def test_onset_envelope_shared(self, fake_extractor):
        """beats and onsets read one onset envelope, computed once."""
        PipelinePlanner(fake_extractor).plan_and_run(default_events(), "x.wav")

        assert fake_extractor.computed.count("onset_envelope") == 1
        envelope = fake_extractor.upstreams["beats"]["rhythm.novelty"]
        assert fake_extractor.upstreams["onsets"]["rhythm.novelty"] is envelope

    def test_novelty_published_when_requested(self, fake_extractor):
        """The shared envelope reaches the pool only for the novelty category."""
        pool, _ = PipelinePlanner(fake_extractor).plan_and_run(
            frozenset({C.BEAT, C.NOVELTY}), "x.wav"
        )
        assert pool.keys() == ["rhythm.confidence", "rhythm.novelty", "rhythm.ticks"]

    def test_extraction_error_propagates(self):
        """Extractor failures end the run."""
        extractor = FakeExtractor(fail_on="beats")
        with pytest.raises(ExtractionError):
            PipelinePlanner(extractor).plan_and_run(default_events(), "x.wav")

    def test_cancelled(self, fake_extractor):
        """A set token stops analysis before the next computation."""
        token = CancellationToken()
        token.cancel()
        with pytest.raises(AnalysisCancelled):
            PipelinePlanner(fake_extractor).plan_and_run(default_events(), "x.wav", cancel=token)
        assert fake_extractor.computed == []
