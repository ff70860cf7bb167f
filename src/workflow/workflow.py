"""Workflow: ordered composition of steps with aggregate execute/rollback."""

import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from common import ExecutionContext
from errors import IllegalArgumentError, StepError
from reporting import Report, Status
from workflow.notify import Notifier
from workflow.step import Builder, HookFn, PrepareFn, Runnable

logger = logging.getLogger(__name__)

RollbackFn = Callable[[ExecutionContext, 'Workflow'], Report]


class ExecutionMode(str, Enum):
    """What a workflow does when a step fails."""
    ROLLBACK_ON_ERROR = 'rollback'
    STOP_ON_ERROR = 'stop'
    CONTINUE_ON_ERROR = 'continue'


class Workflow:
    """Runs steps strictly in order; a Workflow is itself a Runnable.

    Under ROLLBACK_ON_ERROR the first failure stops the run and every step
    that ran (the failed one included) is rolled back in reverse order. The
    rollback reports are attached to the corresponding step reports; the
    workflow report keeps the original failure.
    """

    def __init__(
        self,
        workflow_id: str,
        steps: list[Runnable],
        mode: ExecutionMode = ExecutionMode.ROLLBACK_ON_ERROR,
        prepare: Optional[PrepareFn] = None,
        on_failure: Optional[HookFn] = None,
        on_completion: Optional[HookFn] = None,
        rollback: Optional[RollbackFn] = None
    ):
        self.id = workflow_id
        self.steps = list(steps)
        self.mode = mode
        self._prepare = prepare
        self._on_failure = on_failure
        self._on_completion = on_completion
        self._rollback = rollback
        self.report: Optional[Report] = None
        self.rollback_report: Optional[Report] = None

    def __repr__(self) -> str:
        return f"Workflow({self.id!r}, steps={[s.id for s in self.steps]})"

    def apply_mode(self, mode: ExecutionMode) -> None:
        """Set the execution mode on this workflow and every nested one."""
        self.mode = mode
        for step in self.steps:
            if isinstance(step, Workflow):
                step.apply_mode(mode)

    def walk(self, depth: int = 0):
        """Yield (depth, runnable) for every descendant in execution order."""
        for step in self.steps:
            yield depth, step
            if isinstance(step, Workflow):
                yield from step.walk(depth + 1)

    def execute(self, ctx: ExecutionContext) -> Report:
        started = datetime.now()
        try:
            ctx.check()
            if self._prepare is not None:
                ctx = self._prepare(ctx, self) or ctx
        except StepError as e:
            return self._finish(ctx, Report.failure(self.id, e), started)
        except Exception as e:
            logger.exception(f"Prepare of workflow {self.id} raised unexpectedly")
            return self._finish(ctx, Report.failure(self.id, StepError.wrap(e, f"workflow {self.id} prepare raised")), started)

        reports: list[Report] = []
        ran: list[tuple[Runnable, Report]] = []
        first_error: Optional[StepError] = None

        for step in self.steps:
            report = step.execute(ctx)
            reports.append(report)
            ran.append((step, report))
            if not report.failed:
                continue

            if first_error is None:
                first_error = report.error
            logger.error(f"[{self.id}] step {step.id} failed: {report.error}")

            if self.mode is ExecutionMode.CONTINUE_ON_ERROR:
                continue
            if self.mode is ExecutionMode.ROLLBACK_ON_ERROR:
                self._compensate(ctx, ran)
            break

        if first_error is not None:
            report = Report.failure(self.id, first_error, step_reports=reports)
        else:
            report = Report.success(self.id, step_reports=reports)
        return self._finish(ctx, report, started)

    def rollback(self, ctx: ExecutionContext) -> Report:
        """Undo every step in reverse order; safe to call repeatedly."""
        started = datetime.now()
        if self._rollback is not None:
            try:
                report = self._rollback(ctx, self)
                report.id = self.id
            except StepError as e:
                report = Report.failure(self.id, e)
            except Exception as e:
                logger.exception(f"Rollback of workflow {self.id} raised unexpectedly")
                report = Report.failure(self.id, StepError.wrap(e, f"rollback of workflow {self.id} raised"))
        else:
            reports = [step.rollback(ctx) for step in reversed(self.steps)]
            report = aggregate_rollback(self.id, reports)

        report.started_at = started
        report.finished_at = datetime.now()
        self.rollback_report = report
        return report

    def _compensate(self, ctx: ExecutionContext, ran: list[tuple[Runnable, Report]]) -> None:
        logger.info(f"[{self.id}] rolling back {len(ran)} step(s)")
        rollback_ctx = ctx.detached()
        for step, report in reversed(ran):
            rb = step.rollback(rollback_ctx)
            report.rollback = rb
            if rb.failed:
                logger.error(f"[{self.id}] rollback of {step.id} failed: {rb.error}")

    def _finish(self, ctx: ExecutionContext, report: Report, started: datetime) -> Report:
        report.started_at = started
        report.finished_at = datetime.now()
        self.report = report
        hook = self._on_failure if report.failed else self._on_completion
        if hook is not None:
            try:
                hook(ctx, self, report)
            except Exception:
                logger.exception(f"Hook for workflow {self.id} raised")
        return report


def aggregate_rollback(workflow_id: str, reports: list[Report]) -> Report:
    """Combine child rollback reports.

    FAILED with the first error if any child failed, SKIPPED if every child
    was skipped, SUCCESS otherwise.
    """
    for r in reports:
        if r.failed:
            return Report.failure(workflow_id, r.error, step_reports=reports)
    if all(r.status is Status.SKIPPED for r in reports):
        return Report.skipped(workflow_id, detail='nothing to roll back', step_reports=reports)
    return Report.success(workflow_id, step_reports=reports)


class WorkflowBuilder:
    """Fluent builder for workflows; child builders are built on build()."""

    def __init__(self, workflow_id: str = ''):
        self.id = workflow_id
        self._steps: list[Builder] = []
        self._mode = ExecutionMode.ROLLBACK_ON_ERROR
        self._prepare: Optional[PrepareFn] = None
        self._on_failure: Optional[HookFn] = None
        self._on_completion: Optional[HookFn] = None
        self._rollback: Optional[RollbackFn] = None

    def with_id(self, workflow_id: str) -> 'WorkflowBuilder':
        self.id = workflow_id
        return self

    def steps(self, *builders: Builder) -> 'WorkflowBuilder':
        self._steps.extend(builders)
        return self

    def with_mode(self, mode: ExecutionMode) -> 'WorkflowBuilder':
        self._mode = mode
        return self

    def with_prepare(self, fn: PrepareFn) -> 'WorkflowBuilder':
        self._prepare = fn
        return self

    def with_on_failure(self, fn: HookFn) -> 'WorkflowBuilder':
        self._on_failure = fn
        return self

    def with_on_completion(self, fn: HookFn) -> 'WorkflowBuilder':
        self._on_completion = fn
        return self

    def with_rollback(self, fn: RollbackFn) -> 'WorkflowBuilder':
        """Replace the default reverse-order rollback."""
        self._rollback = fn
        return self

    def with_notifications(self, notifier: Notifier, start: str, failure: str, completion: str) -> 'WorkflowBuilder':
        def prepare(ctx, wf):
            notifier.step_start(wf.id, start)
            return ctx

        self._prepare = prepare
        self._on_failure = lambda ctx, wf, rpt: notifier.step_failure(wf.id, rpt, failure)
        self._on_completion = lambda ctx, wf, rpt: notifier.step_completion(wf.id, rpt, completion)
        return self

    def build(self) -> Workflow:
        if not self.id:
            raise IllegalArgumentError("workflow id must not be empty")
        if not self._steps:
            raise IllegalArgumentError(f"workflow {self.id} has no steps")

        steps = [b.build() for b in self._steps]
        seen: set[str] = set()
        for step in steps:
            if step.id in seen:
                raise IllegalArgumentError(f"workflow {self.id} has duplicate step id: {step.id}")
            seen.add(step.id)

        return Workflow(
            self.id,
            steps,
            mode=self._mode,
            prepare=self._prepare,
            on_failure=self._on_failure,
            on_completion=self._on_completion,
            rollback=self._rollback,
        )
