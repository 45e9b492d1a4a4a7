"""
Resources shared by the steps of one pipeline run.

Everything a step touches (store, runner, executors, clients, vector index)
hangs off a RunContext, so tests can swap any piece for a fake. Clients and
the vector index are created on first use; the vector index is registered
on the run's ExitStack and closed with it.
"""

import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Callable, Optional

from .config import Settings
from .llm import LLMClients, build_llm_clients
from .logger import get_logger
from .retry import RetryExecutor
from .runner import StageRunner
from .storage import RecordStore
from .vectors import OpenAIEmbedder, VectorIndex


@dataclass
class RunContext:
    settings: Settings
    store: RecordStore
    runner: StageRunner
    llm_executor: RetryExecutor
    github_executor: RetryExecutor
    http_executor: RetryExecutor
    stack: ExitStack = field(default_factory=ExitStack)
    sleep: Callable[[float], None] = time.sleep
    llm: Optional[LLMClients] = None
    embedder: Optional[OpenAIEmbedder] = None
    vectors: Optional[VectorIndex] = None

    def get_llm(self) -> LLMClients:
        if self.llm is None:
            self.llm = build_llm_clients(self.settings.llm)
            get_logger().info(
                f"LLM provider {self.settings.llm.provider}: "
                f"fast={self.llm.fast.model}, strong={self.llm.strong.model}"
            )
        return self.llm

    def get_embedder(self) -> OpenAIEmbedder:
        if self.embedder is None:
            self.embedder = OpenAIEmbedder(
                self.settings.llm.openai_api_key,
                model=self.settings.llm.embedding_model,
                timeout=self.settings.llm.timeout,
            )
        return self.embedder

    def get_vectors(self) -> VectorIndex:
        if self.vectors is None:
            self.vectors = self.stack.enter_context(VectorIndex(self.settings.vectors_path))
        return self.vectors


def build_context(
    settings: Settings,
    stack: ExitStack,
    sleep: Callable[[float], None] = time.sleep,
) -> RunContext:
    """Open the record store on ``stack`` and wire executors and runner."""
    logger = get_logger()
    store = stack.enter_context(RecordStore(settings.pipeline.db_path))

    llm = settings.llm
    llm_executor = RetryExecutor(
        max_attempts=llm.max_attempts,
        base_delay=llm.base_delay,
        rate_limit_cooldown=llm.rate_limit_cooldown,
        name=llm.provider,
        sleep=sleep,
        logger=logger,
    )
    github_executor = RetryExecutor(
        rate_limit_cooldown=settings.github.rate_limit_cooldown,
        name="github",
        sleep=sleep,
        logger=logger,
    )
    http_executor = RetryExecutor(
        rate_limit_cooldown=settings.github.rate_limit_cooldown,
        name="http",
        sleep=sleep,
        logger=logger,
    )
    runner = StageRunner(
        store,
        executor=llm_executor,
        data_dir=settings.pipeline.data_dir,
        sleep=sleep,
        logger=logger,
    )
    return RunContext(
        settings=settings,
        store=store,
        runner=runner,
        llm_executor=llm_executor,
        github_executor=github_executor,
        http_executor=http_executor,
        stack=stack,
        sleep=sleep,
    )
