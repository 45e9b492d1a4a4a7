"""
Tests for the pipeline steps, run against a real store with fake clients.
"""

import csv
import json
import sqlite3
from contextlib import ExitStack
from dataclasses import replace
from pathlib import Path

import pytest

from hitarchive.context import build_context
from hitarchive.llm import LLMClients
from hitarchive.retry import StorageError
from hitarchive.stages import RecordStage, Step, derive_stage
from hitarchive.steps import content, embed, enrich, export, importer, notify, score


class FakeEmbedder:
    def __init__(self):
        self.batches = []

    def embed(self, texts):
        self.batches.append(list(texts))
        return [[1.0, float(len(text))] for text in texts]


@pytest.fixture
def ctx(settings, fake_sleep, fake_llm_class):
    with ExitStack() as stack:
        context = build_context(settings, stack, fake_sleep)
        context.llm = LLMClients(fast=fake_llm_class(), strong=fake_llm_class())
        context.embedder = FakeEmbedder()
        yield context


class TestScoreStep:
    def test_scores_fetched_records(self, ctx, make_record):
        ctx.store.upsert_batch([make_record(external_id="1"), make_record(external_id="2")])
        ctx.llm.fast.replies = [
            '{"score": 0.9, "matched_interest": "agents"}',
            '{"score": 0.2, "matched_interest": null}',
        ]

        result = score.run(ctx)

        assert result["processed"] == 2
        scores = sorted(ctx.store.get((k, "github")).relevance_score for k in ("1", "2"))
        assert scores == [0.2, 0.9]
        assert "Python developer" in ctx.llm.fast.prompts[0]

    def test_bad_reply_stays_fetched(self, ctx, make_record):
        ctx.store.upsert_batch([make_record(external_id="1")])
        ctx.llm.fast.replies = ["no idea"]

        result = score.run(ctx)

        assert result["failed"] == 1
        assert derive_stage(ctx.store.get(("1", "github"))) == RecordStage.FETCHED
        failed = Path(ctx.settings.pipeline.data_dir) / "score-failed.jsonl"
        assert json.loads(failed.read_text().strip())["response"] == "no idea"


class TestEnrichStep:
    def test_enriches_above_threshold(self, ctx, make_record):
        ctx.store.upsert_batch([make_record(external_id="hi"), make_record(external_id="lo")])
        ctx.store.apply_stage_result(("hi", "github"), {"relevance_score": 0.8, "matched_category": "agents"})
        ctx.store.apply_stage_result(("lo", "github"), {"relevance_score": 0.5})
        ctx.llm.strong.replies = ['{"summary": "An agent toolkit."}']

        result = enrich.run(ctx)

        assert result["selected"] == 1
        assert ctx.store.get(("hi", "github")).summary == "An agent toolkit."
        assert ctx.store.get(("lo", "github")).summary is None

    def test_failures_count_attempts(self, ctx, make_record):
        ctx.store.upsert_batch([make_record(external_id="1")])
        ctx.store.apply_stage_result(("1", "github"), {"relevance_score": 0.9})
        ctx.llm.strong.replies = ['{"summary": ""}'] * 3

        for _ in range(3):
            enrich.run(ctx)

        assert ctx.store.get(("1", "github")).enrich_attempt_count == 3
        assert enrich.run(ctx)["selected"] == 0


class TestEmbedStep:
    def test_embeds_and_indexes(self, ctx, make_record):
        ctx.store.upsert_batch([make_record(external_id=str(i)) for i in range(3)])
        for i in range(3):
            ctx.store.apply_stage_result((str(i), "github"), {"relevance_score": 0.9, "summary": "s" * (i + 1)})

        result = embed.run(ctx)

        assert result["processed"] == 3
        assert len(ctx.embedder.batches) == 1
        assert ctx.get_vectors().count() == 3
        assert ctx.store.count_eligible(Step.EMBED) == 0
        hits = ctx.get_vectors().search([1.0, 3.0], limit=1)
        assert hits[0]["summary"] == "sss"


class TestContentStep:
    def test_backfills_short_descriptions(self, ctx, make_record, monkeypatch):
        ctx.store.upsert_batch([
            make_record(external_id="1", description="tiny", url="https://github.com/a/one"),
            make_record(external_id="2", description="", url="https://github.com/a/two"),
        ])
        readmes = {"https://github.com/a/one": "# One\nA real readme", "https://github.com/a/two": None}
        monkeypatch.setattr(content, "fetch_readme", lambda url, token=None: readmes[url])

        result = content.run(ctx)

        assert result["processed"] == 2
        one = ctx.store.get(("1", "github"))
        assert "A real readme" in one.description
        assert one.content_checked_at is not None
        assert ctx.store.get(("2", "github")).content_checked_at is not None
        assert ctx.store.count_eligible(Step.CONTENT) == 0


class TestExportStep:
    def test_writes_escaped_csv(self, ctx, make_record, tmp_path):
        ctx.store.upsert_batch([make_record(external_id="1", title="=HYPERLINK(\"x\")", description="-rm")])
        ctx.store.apply_stage_result(("1", "github"), {"relevance_score": 0.876})
        path = tmp_path / "out" / "feed.csv"

        result = export.run(ctx, path=path)

        assert result == {"exported": 1, "path": str(path)}
        with path.open(newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert rows[0]["title"] == "'=HYPERLINK(\"x\")"
        assert rows[0]["description"] == "'-rm"
        assert rows[0]["relevance_score"] == "0.88"
        assert rows[0]["summary"] == ""

    def test_escape_cell(self):
        assert export.escape_cell("@sum") == "'@sum"
        assert export.escape_cell("plain") == "plain"
        assert export.escape_cell(12) == "12"
        assert export.escape_cell(None) == ""


class TestNotifyStep:
    def test_unconfigured_channels_skipped(self, ctx):
        assert notify.run(ctx) == {
            "telegram": {"sent": 0, "skipped": True},
            "slack": {"sent": 0, "skipped": True},
        }

    def test_marks_only_after_successful_send(self, ctx, make_record):
        ctx.store.upsert_batch([make_record(external_id="1")])
        ctx.store.apply_stage_result(("1", "github"), {"relevance_score": 0.95, "summary": "s"})
        sent = []

        result = notify.notify_channel(ctx, "slack", lambda records, stats: sent.append(records) or 1)

        assert result == {"sent": 1, "messages": 1}
        assert ctx.store.get(("1", "github")).sent_to_slack_at is not None
        assert ctx.store.get(("1", "github")).sent_to_telegram_at is None
        assert notify.notify_channel(ctx, "slack", lambda r, s: 1) == {"sent": 0}

    def test_failed_send_leaves_records_unmarked(self, ctx, make_record):
        ctx.store.upsert_batch([make_record(external_id="1")])
        ctx.store.apply_stage_result(("1", "github"), {"relevance_score": 0.95, "summary": "s"})

        def broken(records, stats):
            raise RuntimeError("webhook down")

        result = notify.notify_channel(ctx, "telegram", broken)

        assert result["sent"] == 0
        assert "webhook down" in result["error"]
        assert ctx.store.get(("1", "github")).sent_to_telegram_at is None

    def test_channel_floor(self, ctx, make_record):
        ctx.settings = replace(
            ctx.settings,
            notifications=replace(ctx.settings.notifications, telegram_min_score=0.9),
        )
        ctx.store.upsert_batch([make_record(external_id="1")])
        ctx.store.apply_stage_result(("1", "github"), {"relevance_score": 0.85, "summary": "s"})

        assert notify.notify_channel(ctx, "telegram", lambda r, s: 1) == {"sent": 0}
        assert notify.notify_channel(ctx, "slack", lambda r, s: 1)["sent"] == 1


class TestImportStep:
    @pytest.fixture
    def import_db(self, tmp_path):
        path = tmp_path / "other.db"
        conn = sqlite3.connect(path)
        conn.execute(
            "CREATE TABLE posts (id INTEGER, source TEXT, username TEXT, name TEXT, stars INTEGER,"
            " description TEXT, url TEXT, created_at TEXT, relevance_score REAL,"
            " matched_interest TEXT, summary TEXT, scored_at TEXT)"
        )
        conn.executemany(
            "INSERT INTO posts VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                (1, "github", "octo", "kit", 50, "desc", "https://github.com/octo/kit",
                 "2024-01-01T00:00:00Z", 0.9, "agents", "A kit.", "2024-01-02T00:00:00Z"),
                (2, "github", "octo", "raw", 5, "desc", "https://github.com/octo/raw",
                 "2024-01-01T00:00:00Z", None, None, None, None),
                (3, "reddit", "user", "post", 5, "", "https://reddit.com/x",
                 "2024-01-01T00:00:00Z", 0.9, None, "Post.", None),
            ],
        )
        conn.commit()
        conn.close()
        return path

    def test_imports_summarized_github_rows(self, ctx, import_db):
        ctx.settings = replace(ctx.settings, import_db_path=import_db)

        assert importer.run(ctx) == {"imported": 1}

        record = ctx.store.get(("1", "github"))
        assert record.summary == "A kit."
        assert record.matched_category == "agents"
        assert derive_stage(record) == RecordStage.ENRICHED

    def test_import_keeps_existing_summary(self, ctx, import_db, make_record):
        ctx.store.upsert_batch([make_record(external_id="1")])
        ctx.store.apply_stage_result(("1", "github"), {"relevance_score": 0.5, "summary": "Ours."})
        ctx.settings = replace(ctx.settings, import_db_path=import_db)

        importer.run(ctx)

        assert ctx.store.get(("1", "github")).summary == "Ours."

    def test_missing_path_skips(self, ctx, tmp_path):
        ctx.settings = replace(ctx.settings, import_db_path=tmp_path / "nope.db")
        assert importer.run(ctx) == {"imported": 0}

    def test_unreadable_db(self, tmp_path):
        path = tmp_path / "empty.db"
        sqlite3.connect(path).close()
        with pytest.raises(StorageError):
            importer.read_import_rows(path)
