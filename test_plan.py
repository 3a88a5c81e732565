"""
Tests for step-by-step plan execution.
"""

import pytest

from agent import ApplyResult, FileChangeProposal, FileOperation, PlanError, PlanExecutor, PlanState, PlanStep, StepStatus


class FakeApplier:
    def __init__(self, fail_paths=()):
        self.fail_paths = set(fail_paths)
        self.applied = []

    def apply(self, changes):
        results = []
        for change in changes:
            ok = change.path not in self.fail_paths
            if ok:
                self.applied.append(change.path)
            results.append(ApplyResult(change, ok, "" if ok else "boom"))
        return results


def _steps(n):
    return [PlanStep(step_id=f"s{i}", description=f"step {i}") for i in range(1, n + 1)]


def _change(path):
    return FileChangeProposal(FileOperation.CREATE, path=path, new_content="x")


def test_steps_run_one_at_a_time_after_acceptance():
    prompts = []
    executor = PlanExecutor(prompts.append, FakeApplier())
    executor.start(_steps(2), goal="Build it")

    assert len(prompts) == 1
    assert "step 1 of 2" in prompts[0]
    assert "Build it" in prompts[0]
    assert executor.current_step.status is StepStatus.RUNNING

    executor.on_step_execution_result([_change("a.py")])
    assert executor.awaiting_review
    assert len(prompts) == 1

    executor.accept_step()
    assert len(prompts) == 2
    assert executor.steps[0].status is StepStatus.ACCEPTED
    assert executor.steps[1].status is StepStatus.RUNNING

    executor.on_step_execution_result([])
    executor.accept_step()
    assert executor.state is PlanState.COMPLETED
    assert not executor.is_executing


def test_agent_mode_auto_accepts():
    prompts = []
    applier = FakeApplier()
    executor = PlanExecutor(prompts.append, applier, agent_mode=True)
    executor.start(_steps(2))
    executor.on_step_execution_result([_change("a.py")])
    executor.on_step_execution_result([_change("b.py")])
    assert applier.applied == ["a.py", "b.py"]
    assert executor.state is PlanState.COMPLETED


def test_failed_apply_halts_plan():
    prompts = []
    executor = PlanExecutor(prompts.append, FakeApplier(fail_paths={"bad.py"}))
    executor.start(_steps(3))
    executor.on_step_execution_result([_change("bad.py")])
    results = executor.accept_step()
    assert not results[0].success
    assert executor.last_results == results
    assert executor.state is PlanState.HALTED
    assert executor.steps[0].status is StepStatus.FAILED
    assert executor.steps[1].status is StepStatus.PENDING
    assert len(prompts) == 1


def test_discard_step_halts():
    executor = PlanExecutor(lambda p: None, FakeApplier())
    executor.start(_steps(2))
    executor.on_step_execution_result([_change("a.py")])
    executor.discard_step()
    assert executor.state is PlanState.HALTED
    assert executor.steps[0].status is StepStatus.DISCARDED


def test_invalid_transitions_raise():
    executor = PlanExecutor(lambda p: None, FakeApplier())
    with pytest.raises(PlanError):
        executor.accept_step()
    with pytest.raises(PlanError):
        executor.start([])
    executor.start(_steps(1))
    with pytest.raises(PlanError):
        executor.accept_step()
    with pytest.raises(PlanError):
        executor.start(_steps(1))


def test_on_change_notified():
    states = []
    executor = PlanExecutor(lambda p: None, FakeApplier(), on_change=lambda e: states.append(e.state))
    executor.start(_steps(1))
    executor.halt()
    assert states == [PlanState.STEP_RUNNING, PlanState.HALTED]
