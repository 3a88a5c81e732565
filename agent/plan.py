"""
Plan execution.
Runs an accepted plan one step at a time: each step is sent to the model,
its file changes are reviewed (or auto-accepted in agent mode), applied, and
only then does the next step start.
"""

import logging
from dataclasses import replace
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from .chat import ApplyResult, FileApplier
from .prompts import build_step_prompt
from .types import FileChangeProposal, PlanStep, StepStatus

logger = logging.getLogger(__name__)


class PlanState(str, Enum):
    NOT_STARTED = "not_started"
    STEP_RUNNING = "step_running"
    HALTED = "halted"
    COMPLETED = "completed"


class PlanError(Exception):
    """Invalid plan operation, e.g. accepting when no step awaits review."""
    pass


class PlanExecutor:
    def __init__(
        self,
        send_prompt: Callable[[str], None],
        applier: FileApplier,
        agent_mode: bool = False,
        on_change: Optional[Callable[["PlanExecutor"], None]] = None,
    ):
        self.send_prompt = send_prompt
        self.applier = applier
        self.agent_mode = agent_mode
        self.on_change = on_change
        self.state = PlanState.NOT_STARTED
        self.goal: Optional[str] = None
        self._steps: List[PlanStep] = []
        self._index = 0
        self._awaiting_review = False
        self.last_explanation = ""
        self.last_results: List[ApplyResult] = []

    @property
    def steps(self) -> Tuple[PlanStep, ...]:
        return tuple(self._steps)

    @property
    def is_executing(self) -> bool:
        return self.state is PlanState.STEP_RUNNING

    @property
    def awaiting_review(self) -> bool:
        return self.is_executing and self._awaiting_review

    @property
    def current_step(self) -> Optional[PlanStep]:
        if self.is_executing:
            return self._steps[self._index]
        return None

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self)

    def _set_status(self, status: StepStatus, **changes) -> None:
        self._steps[self._index] = replace(self._steps[self._index], status=status, **changes)

    def start(self, steps: Sequence[PlanStep], goal: Optional[str] = None) -> None:
        if self.is_executing:
            raise PlanError("A plan is already executing")
        if not steps:
            raise PlanError("Plan has no steps")
        self._steps = [replace(s, status=StepStatus.PENDING, file_changes=()) for s in steps]
        self.goal = goal
        self._index = 0
        self.state = PlanState.STEP_RUNNING
        logger.info(f"Plan started: {len(self._steps)} steps")
        self._run_current()

    def _run_current(self) -> None:
        self._awaiting_review = False
        self._set_status(StepStatus.RUNNING)
        step = self._steps[self._index]
        self._notify()
        logger.info(f"Plan step {self._index + 1}/{len(self._steps)}: {step.description}")
        self.send_prompt(build_step_prompt(step, self._index + 1, len(self._steps), self.goal))

    def on_step_execution_result(self, file_changes: Sequence[FileChangeProposal],
                                 raw_response: Optional[str] = None, explanation: str = "") -> None:
        """Record the model's answer for the running step."""
        if not self.is_executing:
            raise PlanError("No plan step is running")
        self._set_status(StepStatus.RUNNING, file_changes=tuple(file_changes))
        self._awaiting_review = True
        self.last_explanation = explanation
        self._notify()
        if self.agent_mode:
            self.accept_step()

    def accept_step(self) -> List[ApplyResult]:
        """Apply the current step's changes and move on. An apply failure halts the plan."""
        if not self.awaiting_review:
            raise PlanError("No plan step is awaiting review")
        step = self._steps[self._index]
        results = self.applier.apply(step.file_changes) if step.file_changes else []
        self.last_results = results
        failed = [r for r in results if not r.success]
        if failed:
            self._set_status(StepStatus.FAILED)
            self.state = PlanState.HALTED
            logger.warning(f"Plan halted: step {step.step_id} failed ({failed[0].message})")
            self._notify()
            return results

        self._set_status(StepStatus.ACCEPTED)
        self._index += 1
        if self._index >= len(self._steps):
            self._index = len(self._steps) - 1
            self.state = PlanState.COMPLETED
            self._awaiting_review = False
            logger.info("Plan completed")
            self._notify()
        else:
            self._run_current()
        return results

    def discard_step(self) -> None:
        """Discard the current step. Halts the plan."""
        if not self.is_executing:
            raise PlanError("No plan step is running")
        self._set_status(StepStatus.DISCARDED)
        self.state = PlanState.HALTED
        self._awaiting_review = False
        logger.info(f"Plan halted: step {self._steps[self._index].step_id} discarded")
        self._notify()

    def halt(self) -> None:
        """Stop without touching step statuses (used on cancel or stream error)."""
        if self.is_executing:
            self.state = PlanState.HALTED
            self._awaiting_review = False
            self._notify()
