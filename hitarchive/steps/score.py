"""Relevance scoring of fetched records with the fast model."""

from typing import Any, Dict

from ..llm import classify_llm_error
from ..normalize import utcnow
from ..prompts import build_scoring_prompt, parse_score_response
from ..runner import FailurePolicy, StageDefinition, StageResult
from ..stages import Step


def score_record(record, client, settings) -> StageResult:
    prompt = build_scoring_prompt(record, settings.profile, settings.interests, settings.exclude)
    parsed = parse_score_response(client.complete(prompt))
    return StageResult({
        "relevance_score": parsed["score"],
        "matched_category": parsed["matched_interest"],
        "scored_at": utcnow(),
    })


def build_definition(ctx) -> StageDefinition:
    settings = ctx.settings
    client = ctx.get_llm().fast
    return StageDefinition(
        name="score",
        step=Step.SCORE,
        limit=settings.pipeline.score_limit,
        group_size=settings.pipeline.group_size,
        pacing=settings.pipeline.score_pacing,
        progress_every=100,
        transform=lambda record: score_record(record, client, settings),
        failure_policy=FailurePolicy.LEAVE,
        classify=classify_llm_error,
        executor=ctx.llm_executor,
    )


def run(ctx, options=None) -> Dict[str, Any]:
    return ctx.runner.run_stage(build_definition(ctx)).to_dict()
