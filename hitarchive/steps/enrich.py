"""
Summaries for records scoring at or above the threshold, with the strong model.

A record that fails enrichment ``max_enrich_attempts`` times is retired:
it stays scored but is never selected for enrichment again.
"""

from typing import Any, Dict

from ..llm import classify_llm_error
from ..prompts import build_enrichment_prompt, parse_enrichment_response
from ..runner import FailurePolicy, StageDefinition, StageResult
from ..stages import EligibilityParams, Step


def enrich_record(record, client, settings) -> StageResult:
    prompt = build_enrichment_prompt(record, settings.profile, settings.language)
    parsed = parse_enrichment_response(client.complete(prompt))
    return StageResult({
        "summary": parsed["summary"],
        "summary_localized": parsed["summary_local"],
    })


def build_definition(ctx) -> StageDefinition:
    settings = ctx.settings
    client = ctx.get_llm().strong
    return StageDefinition(
        name="enrich",
        step=Step.ENRICH,
        params=EligibilityParams(
            threshold=settings.min_score,
            max_attempts=settings.pipeline.max_enrich_attempts,
        ),
        limit=settings.pipeline.enrich_limit,
        group_size=settings.pipeline.group_size,
        pacing=settings.pipeline.enrich_pacing,
        progress_every=50,
        transform=lambda record: enrich_record(record, client, settings),
        failure_policy=FailurePolicy.COUNT_ATTEMPT,
        classify=classify_llm_error,
        executor=ctx.llm_executor,
    )


def run(ctx, options=None) -> Dict[str, Any]:
    return ctx.runner.run_stage(build_definition(ctx)).to_dict()
