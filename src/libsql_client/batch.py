"""Batch graph compiler.

A stateless transport sends one request per call and cannot hold a
transaction open between requests. An atomic batch is therefore compiled
into a single request carrying a linear graph of conditional steps::

    0: BEGIN
    1: stmt[0]      if ok(0)
    ...
    n: stmt[n-1]    if ok(n-1)
    n+1: COMMIT     if ok(n)
    n+2: ROLLBACK   if not ok(n+1)

A statement never runs after its predecessor failed, and ROLLBACK runs both
when a statement fails and when COMMIT itself fails.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from libsql_client.errors import ErrorCode, LibsqlError
from libsql_client.result import ResultSet
from libsql_client.statements import Statement, to_statement

logger = logging.getLogger(__name__)


# -- Conditions --


class BatchCond:
    """Boolean expression over the outcomes of earlier steps."""

    def evaluate(self, outcomes: Sequence[bool | None]) -> bool:
        """Evaluate against recorded outcomes.

        ``outcomes[i]`` is True if step i succeeded, False if it failed and
        None if it was skipped.
        """
        raise NotImplementedError

    def steps(self) -> Iterable[int]:
        """Step indices referenced by this condition."""
        raise NotImplementedError


@dataclass(frozen=True)
class OkCond(BatchCond):
    """True if the step ran and succeeded."""

    step: int

    def evaluate(self, outcomes: Sequence[bool | None]) -> bool:
        """Evaluate against recorded outcomes."""
        return outcomes[self.step] is True

    def steps(self) -> Iterable[int]:
        """Step indices referenced by this condition."""
        return (self.step,)


@dataclass(frozen=True)
class ErrorCond(BatchCond):
    """True if the step ran and failed."""

    step: int

    def evaluate(self, outcomes: Sequence[bool | None]) -> bool:
        """Evaluate against recorded outcomes."""
        return outcomes[self.step] is False

    def steps(self) -> Iterable[int]:
        """Step indices referenced by this condition."""
        return (self.step,)


@dataclass(frozen=True)
class NotCond(BatchCond):
    """Negation of another condition."""

    cond: BatchCond

    def evaluate(self, outcomes: Sequence[bool | None]) -> bool:
        """Evaluate against recorded outcomes."""
        return not self.cond.evaluate(outcomes)

    def steps(self) -> Iterable[int]:
        """Step indices referenced by this condition."""
        return self.cond.steps()


@dataclass(frozen=True)
class AndCond(BatchCond):
    """True if every condition is true (and if there are none)."""

    conds: tuple[BatchCond, ...]

    def evaluate(self, outcomes: Sequence[bool | None]) -> bool:
        """Evaluate against recorded outcomes."""
        return all(c.evaluate(outcomes) for c in self.conds)

    def steps(self) -> Iterable[int]:
        """Step indices referenced by this condition."""
        return [s for c in self.conds for s in c.steps()]


@dataclass(frozen=True)
class OrCond(BatchCond):
    """True if any condition is true (false if there are none)."""

    conds: tuple[BatchCond, ...]

    def evaluate(self, outcomes: Sequence[bool | None]) -> bool:
        """Evaluate against recorded outcomes."""
        return any(c.evaluate(outcomes) for c in self.conds)

    def steps(self) -> Iterable[int]:
        """Step indices referenced by this condition."""
        return [s for c in self.conds for s in c.steps()]


# -- Steps and batches --


@dataclass(frozen=True)
class BatchStep:
    """A statement guarded by an optional condition."""

    stmt: Statement
    condition: BatchCond | None = None
    want_rows: bool = True


@dataclass
class Batch:
    """Ordered steps forming a DAG keyed by step index."""

    steps: list[BatchStep] = field(default_factory=list)

    def add_step(
        self,
        stmt: Statement | str,
        condition: BatchCond | None = None,
        *,
        want_rows: bool = True,
    ) -> int:
        """Append a step and return its index.

        Conditions may only reference earlier steps.
        """
        index = len(self.steps)
        if condition is not None:
            for ref in condition.steps():
                if not 0 <= ref < index:
                    raise ValueError(
                        f"Step {index} has a condition on step {ref}; "
                        "conditions may only reference earlier steps"
                    )
        self.steps.append(BatchStep(to_statement(stmt), condition, want_rows))
        return index


@dataclass
class BatchResult:
    """Transport-neutral outcome of a batch, one slot per step.

    A step that was skipped has neither a result nor an error.
    """

    step_results: list[ResultSet | None]
    step_errors: list[LibsqlError | None]


@dataclass(frozen=True)
class AtomicBatchPlan:
    """Step indices of a compiled atomic batch."""

    begin_step: int
    stmt_steps: tuple[int, ...]
    commit_step: int
    rollback_step: int

    def results(self, result: BatchResult) -> list[ResultSet]:
        """Turn the batch outcome into one result set per input statement.

        The first error between BEGIN and COMMIT (inclusive) is raised as the
        error of the whole batch.
        """
        for step in range(self.begin_step, self.commit_step + 1):
            error = _slot(result.step_errors, step)
            if error is not None:
                raise error
        return collect_results(self.stmt_steps, result)


def _slot(items: Sequence[Any], index: int) -> Any:
    return items[index] if index < len(items) else None


def collect_results(stmt_steps: Sequence[int], result: BatchResult) -> list[ResultSet]:
    """Pick the result set of each statement step.

    A missing result means the server skipped or dropped a step that should
    have run, which is reported as ``SERVER_ERROR``.
    """
    result_sets = []
    for step in stmt_steps:
        rs = _slot(result.step_results, step)
        if rs is None:
            raise LibsqlError(
                "Server did not return a result for statement in a batch",
                ErrorCode.SERVER_ERROR,
            )
        result_sets.append(rs)
    return result_sets


def compile_atomic_batch(stmts: Iterable[Any]) -> tuple[Batch, AtomicBatchPlan]:
    """Compile statements into a BEGIN/statements/COMMIT/ROLLBACK step graph."""
    batch = Batch()
    begin_step = batch.add_step("BEGIN", want_rows=False)

    last_step = begin_step
    stmt_steps = []
    for stmt in stmts:
        last_step = batch.add_step(to_statement(stmt), OkCond(last_step))
        stmt_steps.append(last_step)

    commit_step = batch.add_step("COMMIT", OkCond(last_step), want_rows=False)
    rollback_step = batch.add_step("ROLLBACK", NotCond(OkCond(commit_step)), want_rows=False)

    logger.debug("Compiled atomic batch of %d statements", len(stmt_steps))
    plan = AtomicBatchPlan(begin_step, tuple(stmt_steps), commit_step, rollback_step)
    return batch, plan


def compile_sequential_batch(stmts: Iterable[Any]) -> tuple[Batch, tuple[int, ...]]:
    """Compile statements into a chain where each step requires the previous one.

    Used inside an interactive transaction, which already provides atomicity.
    """
    batch = Batch()
    prev: int | None = None
    for stmt in stmts:
        prev = batch.add_step(to_statement(stmt), OkCond(prev) if prev is not None else None)
    return batch, tuple(range(len(batch.steps)))


def sequential_results(stmt_steps: Sequence[int], result: BatchResult) -> list[ResultSet]:
    """Raise the first step error, else return every step's result set."""
    for step in stmt_steps:
        error = _slot(result.step_errors, step)
        if error is not None:
            raise error
    return collect_results(stmt_steps, result)


async def evaluate_batch(
    batch: Batch,
    run_step: Callable[[BatchStep], Any],
) -> BatchResult:
    """Run a batch locally, step by step, honoring each step's condition.

    ``run_step`` is an async callable returning a ``ResultSet``; a
    ``LibsqlError`` it raises is recorded as that step's failure.
    """
    outcomes: list[bool | None] = []
    results: list[ResultSet | None] = []
    errors: list[LibsqlError | None] = []
    for step in batch.steps:
        if step.condition is not None and not step.condition.evaluate(outcomes):
            outcomes.append(None)
            results.append(None)
            errors.append(None)
            continue
        try:
            rs = await run_step(step)
        except LibsqlError as e:
            outcomes.append(False)
            results.append(None)
            errors.append(e)
        else:
            outcomes.append(True)
            results.append(rs)
            errors.append(None)
    return BatchResult(step_results=results, step_errors=errors)
