"""Tests for the batch graph compiler and the local evaluator."""

import pytest

from libsql_client.batch import (
    AndCond,
    Batch,
    BatchResult,
    ErrorCond,
    NotCond,
    OkCond,
    OrCond,
    compile_atomic_batch,
    compile_sequential_batch,
    evaluate_batch,
    sequential_results,
)
from libsql_client.errors import ErrorCode, LibsqlError
from libsql_client.result import ResultSet


def _rs(value=1):
    return ResultSet.from_values(["x"], [[value]])


class TestConditions:
    def test_ok_and_error(self):
        outcomes = [True, False, None]
        assert OkCond(0).evaluate(outcomes)
        assert not OkCond(1).evaluate(outcomes)
        assert not OkCond(2).evaluate(outcomes)
        assert ErrorCond(1).evaluate(outcomes)
        assert not ErrorCond(2).evaluate(outcomes)

    def test_not(self):
        assert NotCond(OkCond(0)).evaluate([None])
        assert not NotCond(OkCond(0)).evaluate([True])

    def test_and_or(self):
        outcomes = [True, False]
        assert AndCond((OkCond(0), ErrorCond(1))).evaluate(outcomes)
        assert not AndCond((OkCond(0), OkCond(1))).evaluate(outcomes)
        assert OrCond((OkCond(1), OkCond(0))).evaluate(outcomes)
        assert AndCond(()).evaluate(outcomes)
        assert not OrCond(()).evaluate(outcomes)

    def test_steps(self):
        cond = AndCond((OkCond(0), NotCond(OrCond((ErrorCond(1), OkCond(2))))))
        assert list(cond.steps()) == [0, 1, 2]


class TestBatch:
    def test_add_step_returns_index(self):
        batch = Batch()
        assert batch.add_step("SELECT 1") == 0
        assert batch.add_step("SELECT 2", OkCond(0)) == 1

    def test_condition_on_self_is_rejected(self):
        batch = Batch()
        batch.add_step("SELECT 1")
        with pytest.raises(ValueError):
            batch.add_step("SELECT 2", OkCond(1))

    def test_condition_on_later_step_is_rejected(self):
        batch = Batch()
        with pytest.raises(ValueError):
            batch.add_step("SELECT 1", NotCond(ErrorCond(3)))


class TestCompileAtomic:
    def test_structure(self):
        batch, plan = compile_atomic_batch(["SELECT 1", ("SELECT ?", [2])])
        sqls = [step.stmt.sql for step in batch.steps]
        assert sqls == ["BEGIN", "SELECT 1", "SELECT ?", "COMMIT", "ROLLBACK"]

        conds = [step.condition for step in batch.steps]
        assert conds == [
            None,
            OkCond(0),
            OkCond(1),
            OkCond(2),
            NotCond(OkCond(3)),
        ]
        assert (plan.begin_step, plan.stmt_steps) == (0, (1, 2))
        assert (plan.commit_step, plan.rollback_step) == (3, 4)

    def test_control_statements_do_not_want_rows(self):
        batch, _ = compile_atomic_batch(["SELECT 1"])
        assert [step.want_rows for step in batch.steps] == [False, True, False, False]

    def test_empty(self):
        batch, plan = compile_atomic_batch([])
        assert [step.stmt.sql for step in batch.steps] == ["BEGIN", "COMMIT", "ROLLBACK"]
        assert batch.steps[1].condition == OkCond(0)
        assert plan.stmt_steps == ()

    def test_results(self):
        _, plan = compile_atomic_batch(["SELECT 1", "SELECT 2"])
        result = BatchResult(
            step_results=[_rs(), _rs(1), _rs(2), _rs(), None],
            step_errors=[None] * 5,
        )
        assert [rs.rows[0][0] for rs in plan.results(result)] == [1, 2]

    def test_results_raise_first_error(self):
        _, plan = compile_atomic_batch(["SELECT 1", "SELECT foobar", "SELECT 3"])
        first = LibsqlError("no such column: foobar", "SQLITE_ERROR")
        result = BatchResult(
            step_results=[_rs(), _rs(), None, None, None, _rs()],
            step_errors=[None, None, first, None, None, None],
        )
        with pytest.raises(LibsqlError) as exc_info:
            plan.results(result)
        assert exc_info.value is first

    def test_commit_error_is_raised(self):
        _, plan = compile_atomic_batch(["SELECT 1"])
        commit_error = LibsqlError("database is locked", "SQLITE_BUSY")
        result = BatchResult(
            step_results=[_rs(), _rs(), None, _rs()],
            step_errors=[None, None, commit_error, None],
        )
        with pytest.raises(LibsqlError) as exc_info:
            plan.results(result)
        assert exc_info.value is commit_error

    def test_missing_result_is_server_error(self):
        _, plan = compile_atomic_batch(["SELECT 1"])
        result = BatchResult(step_results=[_rs()], step_errors=[None])
        with pytest.raises(LibsqlError) as exc_info:
            plan.results(result)
        assert exc_info.value.code == ErrorCode.SERVER_ERROR
        assert exc_info.value.message == "Server did not return a result for statement in a batch"


class TestCompileSequential:
    def test_chain(self):
        batch, steps = compile_sequential_batch(["SELECT 1", "SELECT 2", "SELECT 3"])
        assert steps == (0, 1, 2)
        assert [step.condition for step in batch.steps] == [None, OkCond(0), OkCond(1)]

    def test_results_raise_first_error(self):
        error = LibsqlError("boom", "SQLITE_ERROR")
        result = BatchResult(step_results=[_rs(), None, None], step_errors=[None, error, None])
        with pytest.raises(LibsqlError) as exc_info:
            sequential_results((0, 1, 2), result)
        assert exc_info.value is error


class TestEvaluateBatch:
    @pytest.mark.asyncio
    async def test_records_outcomes_and_skips(self):
        batch, plan = compile_atomic_batch(["SELECT 1", "SELECT foobar", "SELECT 3"])
        ran = []

        async def run_step(step):
            ran.append(step.stmt.sql)
            if step.stmt.sql == "SELECT foobar":
                raise LibsqlError("no such column: foobar", "SQLITE_ERROR")
            return _rs()

        result = await evaluate_batch(batch, run_step)

        assert ran == ["BEGIN", "SELECT 1", "SELECT foobar", "ROLLBACK"]
        assert result.step_results[3] is None
        assert result.step_errors[3] is None
        assert result.step_errors[2].code == "SQLITE_ERROR"
        with pytest.raises(LibsqlError):
            plan.results(result)

    @pytest.mark.asyncio
    async def test_rollback_after_commit_failure(self):
        batch, _ = compile_atomic_batch(["SELECT 1"])
        ran = []

        async def run_step(step):
            ran.append(step.stmt.sql)
            if step.stmt.sql == "COMMIT":
                raise LibsqlError("database is locked", "SQLITE_BUSY")
            return _rs()

        await evaluate_batch(batch, run_step)
        assert ran == ["BEGIN", "SELECT 1", "COMMIT", "ROLLBACK"]

    @pytest.mark.asyncio
    async def test_success_skips_rollback(self):
        batch, plan = compile_atomic_batch(["SELECT 1"])

        async def run_step(step):
            return _rs(7)

        result = await evaluate_batch(batch, run_step)
        assert result.step_results[plan.rollback_step] is None
        assert [rs.rows[0][0] for rs in plan.results(result)] == [7]
