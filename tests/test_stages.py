"""
Tests for stages.py - stage derivation and eligibility predicates.
"""

import pytest
from datetime import datetime, timedelta

from hitarchive.stages import (
    Condition,
    EligibilityParams,
    RecordStage,
    Step,
    derive_stage,
    eligibility_for,
    is_eligible,
    stage_conditions,
)

NOW = datetime(2024, 6, 1, 12, 0, 0)


def record(**fields):
    base = {
        "external_id": "1",
        "source": "github",
        "description": "x" * 200,
        "relevance_score": None,
        "summary": None,
        "embedded_at": None,
        "enrich_attempt_count": 0,
        "content_checked_at": None,
        "created_at": NOW - timedelta(hours=1),
        "sent_to_telegram_at": None,
        "sent_to_slack_at": None,
    }
    base.update(fields)
    return base


class TestDeriveStage:
    """Every record is in exactly one stage."""

    def test_fetched(self):
        assert derive_stage(record()) == RecordStage.FETCHED

    def test_scored(self):
        assert derive_stage(record(relevance_score=0.3)) == RecordStage.SCORED

    def test_zero_score_counts_as_scored(self):
        assert derive_stage(record(relevance_score=0.0)) == RecordStage.SCORED

    def test_enriched(self):
        assert derive_stage(record(relevance_score=0.9, summary="s")) == RecordStage.ENRICHED

    def test_embedded(self):
        assert derive_stage(record(relevance_score=0.9, summary="s", embedded_at=NOW)) == RecordStage.EMBEDDED

    def test_furthest_marker_wins(self):
        """Imported records may carry a summary without a score."""
        assert derive_stage(record(summary="s")) == RecordStage.ENRICHED

    def test_stage_sets_are_disjoint(self):
        samples = [
            record(),
            record(relevance_score=0.1),
            record(summary="s"),
            record(relevance_score=0.9, summary="s"),
            record(embedded_at=NOW),
            record(relevance_score=0.9, summary="s", embedded_at=NOW),
        ]
        for sample in samples:
            matches = [
                stage for stage in RecordStage
                if all(c.test(sample) for c in stage_conditions(stage))
            ]
            assert len(matches) == 1

    def test_works_on_objects(self):
        class Obj:
            relevance_score = 0.5
            summary = None
            embedded_at = None

        assert derive_stage(Obj()) == RecordStage.SCORED


class TestConditions:
    def test_ops(self):
        r = record(relevance_score=0.8, description="abc")
        assert Condition("relevance_score", "ge", 0.8).test(r)
        assert not Condition("relevance_score", "lt", 0.8).test(r)
        assert Condition("source", "eq", "github").test(r)
        assert Condition("summary", "is_null").test(r)
        assert Condition("description_length", "lt", 4).test(r)

    def test_comparisons_false_on_null(self):
        assert not Condition("relevance_score", "ge", 0.0).test(record())
        assert not Condition("relevance_score", "lt", 1.0).test(record())

    def test_unknown_op(self):
        with pytest.raises(ValueError):
            Condition("source", "like", "git%").test(record())


class TestEligibility:
    """Test step eligibility rules."""

    def test_score_takes_fetched_only(self):
        assert is_eligible(record(), Step.SCORE)
        assert not is_eligible(record(relevance_score=0.1), Step.SCORE)

    def test_enrich_threshold_is_inclusive(self):
        params = EligibilityParams(threshold=0.8)
        assert is_eligible(record(relevance_score=0.8), Step.ENRICH, params)
        assert not is_eligible(record(relevance_score=0.79), Step.ENRICH, params)

    def test_enrich_stops_at_attempt_ceiling(self):
        params = EligibilityParams(threshold=0.5, max_attempts=3)
        assert is_eligible(record(relevance_score=0.9, enrich_attempt_count=2), Step.ENRICH, params)
        assert not is_eligible(record(relevance_score=0.9, enrich_attempt_count=3), Step.ENRICH, params)

    def test_embed_takes_enriched(self):
        assert is_eligible(record(relevance_score=0.9, summary="s"), Step.EMBED)
        assert not is_eligible(record(relevance_score=0.9, summary="s", embedded_at=NOW), Step.EMBED)

    def test_content_needs_short_github_description(self):
        assert is_eligible(record(description="tiny"), Step.CONTENT)
        assert not is_eligible(record(description="tiny", source="reddit"), Step.CONTENT)
        assert not is_eligible(record(description="tiny", content_checked_at=NOW), Step.CONTENT)
        assert not is_eligible(record(), Step.CONTENT)

    def test_notify(self):
        params = EligibilityParams(channel="telegram", channel_floor=0.7, now=NOW)
        enriched = record(relevance_score=0.75, summary="s")

        assert is_eligible(enriched, Step.NOTIFY, params)
        assert is_eligible({**enriched, "embedded_at": NOW}, Step.NOTIFY, params)
        assert not is_eligible({**enriched, "relevance_score": 0.6}, Step.NOTIFY, params)
        assert not is_eligible({**enriched, "sent_to_telegram_at": NOW}, Step.NOTIFY, params)
        assert not is_eligible({**enriched, "created_at": NOW - timedelta(days=4)}, Step.NOTIFY, params)

    def test_notify_markers_are_per_channel(self):
        sent = record(relevance_score=0.9, summary="s", sent_to_telegram_at=NOW)
        slack = EligibilityParams(channel="slack", now=NOW)
        assert is_eligible(sent, Step.NOTIFY, slack)

    def test_notify_floor_defaults_to_threshold(self):
        params = EligibilityParams(channel="slack", threshold=0.9, now=NOW)
        assert not is_eligible(record(relevance_score=0.85, summary="s"), Step.NOTIFY, params)

    def test_notify_requires_known_channel(self):
        with pytest.raises(ValueError):
            eligibility_for(Step.NOTIFY, EligibilityParams(channel="email"))
