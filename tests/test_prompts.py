"""
Tests for prompts.py - prompt rendering and response parsing.
"""

import pytest

from hitarchive.prompts import (
    build_enrichment_prompt,
    build_scoring_prompt,
    extract_json,
    parse_enrichment_response,
    parse_score_response,
)
from hitarchive.retry import MalformedResponseError

RECORD = {
    "external_id": "1",
    "source": "github",
    "title": "agent-kit",
    "author": "octo",
    "popularity": 420,
    "description": "Toolkit for building {tool-using} agents",
    "url": "https://github.com/octo/agent-kit",
    "matched_category": "agents",
}


class TestPrompts:
    def test_scoring_prompt(self):
        prompt = build_scoring_prompt(RECORD, "Python developer", {"high": ["agents"]}, ["crypto", "nft"])

        assert "Python developer" in prompt
        assert "- agents" in prompt
        assert "crypto, nft" in prompt
        assert "{tool-using}" in prompt
        assert '{"score": <0.0-1.0>' in prompt

    def test_scoring_prompt_without_description(self):
        prompt = build_scoring_prompt(dict(RECORD, description=""), "", {}, [])
        assert "(no description)" in prompt

    def test_enrichment_prompt_english(self):
        prompt = build_enrichment_prompt(RECORD, "Python developer")
        assert "Matched interest: agents" in prompt
        assert "summary_local" not in prompt

    def test_enrichment_prompt_localized(self):
        prompt = build_enrichment_prompt(RECORD, "Python developer", language="de")
        assert '"summary_local"' in prompt
        assert "in de, keep technical terms in English" in prompt


class TestParsing:
    """Test response parsers."""

    def test_score_in_code_fence(self):
        reply = 'Sure:\n```json\n{"score": 0.82, "matched_interest": "agents"}\n```'
        assert parse_score_response(reply) == {"score": 0.82, "matched_interest": "agents"}

    def test_score_clamped(self):
        assert parse_score_response('{"score": 1.7}')["score"] == 1.0
        assert parse_score_response('{"score": -2}')["score"] == 0.0

    def test_null_interest(self):
        assert parse_score_response('{"score": 0.1, "matched_interest": null}')["matched_interest"] is None

    @pytest.mark.parametrize(
        "reply",
        ["I'd say 0.7", '{"score": "high"}', '{"matched_interest": "agents"}', "{not json}", ""],
    )
    def test_bad_score_replies(self, reply):
        with pytest.raises(MalformedResponseError) as exc_info:
            parse_score_response(reply)
        assert exc_info.value.response == reply

    def test_extract_json_rejects_arrays(self):
        with pytest.raises(MalformedResponseError):
            extract_json("[1, 2]")

    def test_enrichment(self):
        parsed = parse_enrichment_response('{"summary": " A toolkit. ", "summary_local": "Ein Toolkit."}')
        assert parsed == {"summary": "A toolkit.", "summary_local": "Ein Toolkit."}

    def test_enrichment_without_local(self):
        assert parse_enrichment_response('{"summary": "A toolkit."}')["summary_local"] is None

    def test_empty_summary(self):
        with pytest.raises(MalformedResponseError):
            parse_enrichment_response('{"summary": "  "}')
