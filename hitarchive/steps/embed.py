"""Embeddings of summaries, one API call per group, stored in the vector index."""

from typing import Any, Dict, List

from ..llm import classify_llm_error
from ..normalize import utcnow
from ..runner import FailurePolicy, StageDefinition, StageResult
from ..stages import Step


def embedding_text(record) -> str:
    return record.summary or ""


def embed_group(records, embedder) -> List[StageResult]:
    vectors = embedder.embed([embedding_text(r) for r in records])
    now = utcnow()
    return [StageResult({"embedded_at": now}, extra=vector) for vector in vectors]


def store_vectors(pairs, index) -> None:
    index.upsert(
        {
            "external_id": record.external_id,
            "source": record.source,
            "vector": result.extra,
            "title": record.title,
            "author": record.author,
            "url": record.url,
            "popularity": record.popularity,
            "relevance_score": record.relevance_score,
            "summary": record.summary,
        }
        for record, result in pairs
    )


def build_definition(ctx) -> StageDefinition:
    pipeline = ctx.settings.pipeline
    embedder = ctx.get_embedder()
    index = ctx.get_vectors()
    return StageDefinition(
        name="embed",
        step=Step.EMBED,
        limit=pipeline.embed_limit,
        group_size=pipeline.embed_batch_size,
        pacing=pipeline.embed_pacing,
        progress_every=500,
        transform_group=lambda records: embed_group(records, embedder),
        failure_policy=FailurePolicy.LEAVE,
        classify=classify_llm_error,
        executor=ctx.llm_executor,
        before_write=lambda pairs: store_vectors(pairs, index),
    )


def run(ctx, options=None) -> Dict[str, Any]:
    return ctx.runner.run_stage(build_definition(ctx)).to_dict()
