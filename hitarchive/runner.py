"""
Stage runner: drives one pipeline step over its eligible records.

Records are pulled from the store in priority order and processed in small
groups. Each record's transform runs through the retry executor in a thread
pool sized to the group; results are written back from the main thread as
they complete, then the runner pauses before the next group.
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .database import Record
from .logger import FailureLog, ProgressLog, get_logger
from .retry import ConfigError, ErrorKind, RetryExecutor, StorageError
from .stages import EligibilityParams, Step
from .storage import RecordStore


class FailurePolicy(str, Enum):
    """What a failed record costs."""

    LEAVE = "leave"  # stays eligible, retried on every run
    COUNT_ATTEMPT = "count_attempt"  # bumps enrich_attempt_count


@dataclass
class StageResult:
    """Output of a transform: fields to write plus optional side data."""

    fields: Dict[str, Any]
    extra: Any = None


@dataclass
class StageDefinition:
    """
    Everything the runner needs to process one step.

    Exactly one of ``transform`` (one call per record) or ``transform_group``
    (one call per group, returning results aligned with the group) is set.
    ``before_write`` receives the successful (record, result) pairs of a
    write batch before their fields are applied; the embed step uses it to
    store vectors first.
    """

    name: str
    step: Step
    params: Optional[EligibilityParams] = None
    limit: Optional[int] = None
    group_size: int = 10
    pacing: float = 0.0
    progress_every: int = 100
    transform: Optional[Callable[[Record], StageResult]] = None
    transform_group: Optional[Callable[[List[Record]], Sequence[StageResult]]] = None
    failure_policy: FailurePolicy = FailurePolicy.LEAVE
    classify: Optional[Callable[[BaseException], ErrorKind]] = None
    executor: Optional[RetryExecutor] = None
    before_write: Optional[Callable[[List[Tuple[Record, StageResult]]], None]] = None

    def __post_init__(self):
        if (self.transform is None) == (self.transform_group is None):
            raise ValueError(f"Stage {self.name}: set exactly one of transform / transform_group")
        if self.group_size < 1:
            raise ValueError(f"Stage {self.name}: group_size must be >= 1")


@dataclass
class StageOutcome:
    processed: int = 0
    failed: int = 0
    selected: int = 0
    elapsed: float = 0.0
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected": self.selected,
            "processed": self.processed,
            "failed": self.failed,
            "elapsed": round(self.elapsed, 1),
            **self.extra,
        }


def _failure_response(error: BaseException) -> Optional[str]:
    """Raw payload attached to an error (or the error it wraps), if any."""
    for candidate in (error, error.__cause__):
        response = getattr(candidate, "response", None)
        if isinstance(response, str):
            return response
    return None


class _RunState:
    def __init__(self, definition: StageDefinition, total: int, progress: ProgressLog):
        self.definition = definition
        self.total = total
        self.progress = progress
        self.started = time.monotonic()
        self.processed = 0
        self.failed = 0

    @property
    def handled(self) -> int:
        return self.processed + self.failed

    def tick(self) -> None:
        every = self.definition.progress_every
        if every and self.handled % every == 0:
            elapsed = time.monotonic() - self.started
            rate = self.handled / elapsed * 60 if elapsed > 0 else 0.0
            self.progress.write(
                f"{self.definition.name}: {self.handled}/{self.total} "
                f"({elapsed:.0f}s elapsed, {rate:.1f}/min, {self.failed} failed)"
            )


class StageRunner:
    """
    Runs stage definitions against a record store.

    Args:
        store: Record store shared by all stages of a run
        executor: Default retry executor for stages that do not bring one
        data_dir: Directory for the progress and failure logs
        sleep: Sleep function used for pacing, injectable for tests
    """

    def __init__(
        self,
        store: RecordStore,
        executor: Optional[RetryExecutor] = None,
        data_dir: Path = Path("data"),
        sleep: Callable[[float], None] = time.sleep,
        logger=None,
    ):
        self.store = store
        self.executor = executor
        self.data_dir = Path(data_dir)
        self._sleep = sleep
        self._logger = logger or get_logger()

    def run_stage(self, definition: StageDefinition) -> StageOutcome:
        records = self.store.select_eligible(definition.step, definition.params, definition.limit)
        outcome = StageOutcome(selected=len(records))
        if not records:
            self._logger.info(f"{definition.name}: nothing to do")
            return outcome

        executor = definition.executor or self.executor or RetryExecutor(name=definition.name, logger=self._logger)
        progress = ProgressLog(self.data_dir / f"{definition.name}-progress.log", logger=self._logger)
        failures = FailureLog(self.data_dir / f"{definition.name}-failed.jsonl", logger=self._logger)
        state = _RunState(definition, len(records), progress)

        progress.write(f"Starting {definition.name}: {len(records)} eligible records")

        groups = [
            records[i:i + definition.group_size]
            for i in range(0, len(records), definition.group_size)
        ]
        for index, group in enumerate(groups):
            if definition.transform_group is not None:
                self._run_group_call(definition, executor, group, state, failures)
            else:
                self._run_per_record(definition, executor, group, state, failures)

            if index < len(groups) - 1 and definition.pacing > 0:
                self._sleep(definition.pacing)

        outcome.processed = state.processed
        outcome.failed = state.failed
        outcome.elapsed = time.monotonic() - state.started
        self._logger.record_stage_result(definition.name, outcome.processed, outcome.failed)
        progress.write(
            f"Finished {definition.name}: {outcome.processed} processed, "
            f"{outcome.failed} failed in {outcome.elapsed:.0f}s"
        )
        return outcome

    def _run_per_record(self, definition, executor, group, state, failures) -> None:
        def call(record: Record) -> StageResult:
            return executor.execute(
                lambda: definition.transform(record),
                classify=definition.classify,
                identifier=f"{record.source}:{record.external_id}",
            )

        with ThreadPoolExecutor(max_workers=len(group)) as pool:
            future_map = {pool.submit(call, record): record for record in group}
            for future in as_completed(future_map):
                record = future_map[future]
                try:
                    result = future.result()
                except (StorageError, ConfigError):
                    raise
                except Exception as exc:
                    self._record_failure(definition, record, exc, state, failures)
                    continue
                self._write(definition, [(record, result)], state, failures)

    def _run_group_call(self, definition, executor, group, state, failures) -> None:
        try:
            results = executor.execute(
                lambda: definition.transform_group(group),
                classify=definition.classify,
                identifier=f"group of {len(group)}",
            )
            if len(results) != len(group):
                raise ValueError(f"Expected {len(group)} results, got {len(results)}")
        except (StorageError, ConfigError):
            raise
        except Exception as exc:
            for record in group:
                self._record_failure(definition, record, exc, state, failures)
            return
        self._write(definition, list(zip(group, results)), state, failures)

    def _write(self, definition, pairs, state, failures) -> None:
        if definition.before_write is not None:
            try:
                definition.before_write(pairs)
            except (StorageError, ConfigError):
                raise
            except Exception as exc:
                for record, _ in pairs:
                    self._record_failure(definition, record, exc, state, failures)
                return

        for record, result in pairs:
            if result.fields:
                self.store.apply_stage_result(record.key, result.fields)
            state.processed += 1
            state.tick()

    def _record_failure(self, definition, record, error, state, failures) -> None:
        failures.append(
            {"external_id": record.external_id, "source": record.source, "title": record.title},
            str(error),
            _failure_response(error),
        )
        if definition.failure_policy == FailurePolicy.COUNT_ATTEMPT:
            self.store.mark_attempt_failed(record.key)
        self._logger.warning(
            f"{definition.name} failed for {record.source}:{record.external_id}",
            error=str(error),
        )
        state.failed += 1
        state.tick()
