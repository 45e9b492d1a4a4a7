"""
Tests for pipeline.py - step ordering, skip flags and abort handling.
"""

import pytest
from types import SimpleNamespace

from hitarchive import pipeline
from hitarchive.context import build_context
from hitarchive.pipeline import STEPS, RunOptions, run_pipeline, run_steps
from hitarchive.retry import StorageError
from hitarchive.storage import RecordStore


@pytest.fixture
def calls(monkeypatch):
    """Replace every step with a recorder."""
    seen = []
    for name in STEPS:
        def step(ctx, options, name=name):
            seen.append(name)
            return {"ran": name}
        monkeypatch.setitem(pipeline.STEP_FUNCTIONS, name, step)
    return seen


@pytest.fixture
def opened(tmp_path):
    """Context factory that tracks the store it opens."""
    stores = []

    def factory(settings, stack, sleep):
        store = stack.enter_context(RecordStore(tmp_path / "pipeline.db"))
        stores.append(store)
        return SimpleNamespace(settings=settings, store=store, stack=stack, sleep=sleep)

    factory.stores = stores
    return factory


class TestRunOptions:
    """Test flag validation and skip rules."""

    def test_defaults(self):
        options = RunOptions()
        assert [name for _, name in options.selected_steps()] == list(STEPS)
        assert all(options.skip_reason(name) is None for name in STEPS)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"skip": frozenset({"teleport"})},
            {"only_step": 0},
            {"only_step": len(STEPS) + 1},
            {"sources": frozenset({"hackernews"})},
            {"lookback_days": 0},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            RunOptions(**kwargs)

    def test_skip_llm_also_skips_embed(self):
        options = RunOptions(skip_llm=True)
        assert options.skip_reason("score")
        assert options.skip_reason("enrich")
        assert options.skip_reason("embed")
        assert options.skip_reason("fetch") is None

    def test_content_needs_github(self):
        assert RunOptions(sources=frozenset({"reddit"})).skip_reason("content")
        assert RunOptions(sources=frozenset({"github"})).skip_reason("content") is None

    def test_only_step(self):
        assert list(RunOptions(only_step=4).selected_steps()) == [(4, "score")]


class TestRunSteps:
    def test_runs_in_order(self, calls):
        summary = run_steps(SimpleNamespace(), RunOptions())
        assert calls == list(STEPS)
        assert summary["score"] == {"ran": "score"}

    def test_skipped_steps_reported(self, calls):
        summary = run_steps(SimpleNamespace(), RunOptions(skip=frozenset({"import", "export"}), skip_notify=True))

        assert "import" not in calls
        assert summary["import"] == {"skipped": True}
        assert summary["export"] == {"skipped": True}
        assert summary["notify"] == {"skipped": True}
        assert calls == ["fetch", "content", "score", "enrich", "embed"]

    def test_only_step_summary(self, calls):
        summary = run_steps(SimpleNamespace(), RunOptions(only_step=1))
        assert list(summary) == ["import"]


class TestRunPipeline:
    """Test the full orchestrated run."""

    def test_summary_and_store_closed(self, settings, calls, opened, fake_sleep):
        summary = run_pipeline(RunOptions(), settings, sleep=fake_sleep, context_factory=opened)

        assert list(summary) == list(STEPS)
        assert opened.stores[0]._session is None

    def test_abort_closes_store_and_propagates(self, settings, calls, opened, monkeypatch):
        def broken(ctx, options):
            raise StorageError("disk I/O error")

        monkeypatch.setitem(pipeline.STEP_FUNCTIONS, "score", broken)

        with pytest.raises(StorageError):
            run_pipeline(RunOptions(), settings, context_factory=opened)

        assert "enrich" not in calls
        assert opened.stores[0]._session is None

    def test_real_context_wiring(self, settings, calls, fake_sleep):
        """build_context opens the store under data_dir and shares the sleep."""
        summary = run_pipeline(RunOptions(only_step=8), settings, sleep=fake_sleep, context_factory=build_context)

        assert summary == {"notify": {"ran": "notify"}}
        assert settings.pipeline.db_path.exists()
