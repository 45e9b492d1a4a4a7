"""README backfill for GitHub records whose description is too thin to score."""

from typing import Any, Dict

from ..fetchers.common import classify_github_error
from ..fetchers.readme import combine_description, fetch_readme
from ..normalize import utcnow
from ..runner import FailurePolicy, StageDefinition, StageResult
from ..stages import EligibilityParams, Step


def content_result(record, token=None) -> StageResult:
    readme = fetch_readme(record.url, token=token)
    fields: Dict[str, Any] = {"content_checked_at": utcnow()}
    if readme:
        fields["description"] = combine_description(record.description, readme)
    return StageResult(fields, extra=bool(readme))


def build_definition(ctx) -> StageDefinition:
    pipeline = ctx.settings.pipeline
    token = ctx.settings.github.token
    return StageDefinition(
        name="content",
        step=Step.CONTENT,
        params=EligibilityParams(),
        limit=pipeline.content_limit,
        group_size=pipeline.group_size,
        pacing=pipeline.content_pacing,
        progress_every=100,
        transform=lambda record: content_result(record, token),
        failure_policy=FailurePolicy.LEAVE,
        classify=classify_github_error,
        executor=ctx.github_executor,
    )


def run(ctx, options=None) -> Dict[str, Any]:
    return ctx.runner.run_stage(build_definition(ctx)).to_dict()
