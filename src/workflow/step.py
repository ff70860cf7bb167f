"""Step: the atomic, individually reversible unit of provisioning."""

import logging
from datetime import datetime
from typing import Callable, Optional, Protocol, runtime_checkable

from common import ExecutionContext
from errors import IllegalArgumentError, IllegalStateError, StepError
from reporting import Report
from workflow.notify import Notifier
from workflow.state import StateBag

logger = logging.getLogger(__name__)

PrepareFn = Callable[[ExecutionContext, 'Step'], ExecutionContext]
ExecuteFn = Callable[[ExecutionContext, 'Step'], Report]
HookFn = Callable[[ExecutionContext, 'Step', Report], None]


@runtime_checkable
class Runnable(Protocol):
    """Anything a workflow can run: a Step or a nested Workflow."""
    id: str

    def execute(self, ctx: ExecutionContext) -> Report:
        """Run forward."""

    def rollback(self, ctx: ExecutionContext) -> Report:
        """Compensate what execute changed."""


@runtime_checkable
class Builder(Protocol):
    """Produces a fresh Runnable on every build()."""

    def build(self) -> Runnable:
        """Validate and create the runnable."""


class Step:
    """A single step with prepare/execute/rollback callbacks.

    Callbacks return a Report (use step.success()/skipped()/failure()) or
    raise StepError; any other exception is converted into a failed report.
    """

    def __init__(
        self,
        step_id: str,
        execute: ExecuteFn,
        prepare: Optional[PrepareFn] = None,
        rollback: Optional[ExecuteFn] = None,
        on_failure: Optional[HookFn] = None,
        on_completion: Optional[HookFn] = None
    ):
        self.id = step_id
        self._execute = execute
        self._prepare = prepare
        self._rollback = rollback
        self._on_failure = on_failure
        self._on_completion = on_completion
        self._state = StateBag()
        self.report: Optional[Report] = None
        self.rollback_report: Optional[Report] = None

    def __repr__(self) -> str:
        return f"Step({self.id!r})"

    @property
    def state(self) -> StateBag:
        return self._state

    @property
    def executed(self) -> bool:
        return self.report is not None

    def success(self, detail: str = '', metadata: Optional[dict] = None) -> Report:
        return Report.success(self.id, detail=detail, metadata=metadata)

    def skipped(self, detail: str = '', metadata: Optional[dict] = None) -> Report:
        return Report.skipped(self.id, detail=detail, metadata=metadata)

    def failure(self, error: StepError, detail: str = '', metadata: Optional[dict] = None) -> Report:
        return Report.failure(self.id, error, detail=detail, metadata=metadata)

    def execute(self, ctx: ExecutionContext) -> Report:
        started = datetime.now()
        try:
            ctx.check()
            if self._prepare is not None:
                ctx = self._prepare(ctx, self) or ctx
            report = self._call(self._execute, ctx)
        except StepError as e:
            report = self.failure(e)
        except Exception as e:
            logger.exception(f"Step {self.id} raised unexpectedly")
            report = self.failure(StepError.wrap(e, f"step {self.id} raised"))

        report.started_at = started
        report.finished_at = datetime.now()
        self.report = report

        hook = self._on_failure if report.failed else self._on_completion
        if hook is not None:
            try:
                hook(ctx, self, report)
            except Exception:
                logger.exception(f"Hook for step {self.id} raised")
        return report

    def rollback(self, ctx: ExecutionContext) -> Report:
        started = datetime.now()
        if self._rollback is None:
            report = self.skipped('no rollback defined')
        else:
            try:
                report = self._call(self._rollback, ctx)
            except StepError as e:
                report = self.failure(e)
            except Exception as e:
                logger.exception(f"Rollback of step {self.id} raised unexpectedly")
                report = self.failure(StepError.wrap(e, f"rollback of step {self.id} raised"))

        report.started_at = started
        report.finished_at = datetime.now()
        self.rollback_report = report
        return report

    def _call(self, fn: ExecuteFn, ctx: ExecutionContext) -> Report:
        report = fn(ctx, self)
        if not isinstance(report, Report):
            raise IllegalStateError(f"step {self.id} returned {type(report).__name__} instead of a Report")
        report.id = self.id
        return report


class StepBuilder:
    """Fluent builder; every build() yields a new Step with an empty state bag."""

    def __init__(self, step_id: str = ''):
        self.id = step_id
        self._prepare: Optional[PrepareFn] = None
        self._execute: Optional[ExecuteFn] = None
        self._rollback: Optional[ExecuteFn] = None
        self._on_failure: Optional[HookFn] = None
        self._on_completion: Optional[HookFn] = None

    def with_id(self, step_id: str) -> 'StepBuilder':
        self.id = step_id
        return self

    def with_prepare(self, fn: PrepareFn) -> 'StepBuilder':
        self._prepare = fn
        return self

    def with_execute(self, fn: ExecuteFn) -> 'StepBuilder':
        self._execute = fn
        return self

    def with_rollback(self, fn: ExecuteFn) -> 'StepBuilder':
        self._rollback = fn
        return self

    def with_on_failure(self, fn: HookFn) -> 'StepBuilder':
        self._on_failure = fn
        return self

    def with_on_completion(self, fn: HookFn) -> 'StepBuilder':
        self._on_completion = fn
        return self

    def with_notifications(self, notifier: Notifier, start: str, failure: str, completion: str) -> 'StepBuilder':
        """Wire prepare/on_failure/on_completion to a notifier."""
        def prepare(ctx, stp):
            notifier.step_start(stp.id, start)
            return ctx

        self._prepare = prepare
        self._on_failure = lambda ctx, stp, rpt: notifier.step_failure(stp.id, rpt, failure)
        self._on_completion = lambda ctx, stp, rpt: notifier.step_completion(stp.id, rpt, completion)
        return self

    def build(self) -> Step:
        if not self.id:
            raise IllegalArgumentError("step id must not be empty")
        if self._execute is None:
            raise IllegalArgumentError(f"step {self.id} has no execute callback")
        return Step(
            self.id,
            self._execute,
            prepare=self._prepare,
            rollback=self._rollback,
            on_failure=self._on_failure,
            on_completion=self._on_completion,
        )
