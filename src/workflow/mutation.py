"""Idempotent mutation with compensation.

Every resource step follows the same shape:

1. Observe the resource along its axes, e.g. kernel module (loaded,
   persisted) or bind mount (mounted, inFstab), and record each observation
   in the step's state as ``already<Axis>``.
2. If every axis already holds, return SKIPPED without touching anything.
3. Otherwise apply only the missing axes, in order, and set the axis flag
   (``<axis>ByThisStep``) plus ``modifiedByThisStep`` right after each
   sub-action completes. A failure leaves the flags of completed
   sub-actions set, so rollback can undo partial work.
4. Rollback uses the recorded state only: nothing flagged means SKIPPED.
   It re-observes the resource and undoes each flagged axis, in reverse
   order, only while the change is still in place, then clears the flag.
   A second rollback therefore finds nothing to do and is SKIPPED.

    loaded | persisted | execute         | rollback
    -------+-----------+-----------------+--------------------
    T      | T         | none (skipped)  | none (skipped)
    T      | F         | persist         | un-persist
    F      | T         | load            | unload
    F      | F         | load + persist  | un-persist + unload
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from common import ExecutionContext
from errors import ErrorKind, StepError
from reporting import Report
from workflow.notify import Notifier
from workflow.step import Step, StepBuilder

logger = logging.getLogger(__name__)

KEY_MODIFIED_BY_THIS_STEP = 'modifiedByThisStep'


def already_key(axis_name: str) -> str:
    return 'already' + axis_name[0].upper() + axis_name[1:]


@dataclass(frozen=True)
class Axis:
    """One independently reversible aspect of a resource."""
    name: str
    apply: Callable[[ExecutionContext], None]
    revert: Callable[[ExecutionContext], None]
    flag: str = ''

    @property
    def flag_key(self) -> str:
        return self.flag or f'{self.name}ByThisStep'

    @property
    def already_key(self) -> str:
        return already_key(self.name)


class StatefulResource(ABC):
    """Adapter between a concrete resource and the mutation protocol.

    Subclasses set ``axes`` (usually a pair) in __init__ and implement
    observe(), which must return one bool per axis.
    """

    axes: tuple[Axis, ...] = ()
    error_kind: ErrorKind = ErrorKind.ILLEGAL_STATE

    @abstractmethod
    def observe(self, ctx: ExecutionContext) -> tuple[bool, ...]:
        """Current state of each axis."""

    def describe(self) -> str:
        return type(self).__name__

    def metadata(self) -> dict[str, str]:
        """Identifying facts recorded on every report."""
        return {}


def _observe(ctx: ExecutionContext, resource: StatefulResource) -> tuple[bool, ...]:
    try:
        observed = tuple(bool(v) for v in resource.observe(ctx))
    except StepError:
        raise
    except OSError as e:
        raise StepError.wrap(e, f"failed to observe {resource.describe()}", kind=ErrorKind.ILLEGAL_STATE) from e
    if len(observed) != len(resource.axes):
        raise StepError(
            f"{resource.describe()} observed {len(observed)} values for {len(resource.axes)} axes",
            kind=ErrorKind.ILLEGAL_STATE)
    return observed


def _run(ctx: ExecutionContext, resource: StatefulResource, fn: Callable[[ExecutionContext], None], what: str):
    try:
        fn(ctx)
    except StepError:
        raise
    except OSError as e:
        raise StepError.wrap(e, f"failed to {what} {resource.describe()}", kind=resource.error_kind) from e


def execute_mutation(ctx: ExecutionContext, stp: Step, resource: StatefulResource) -> Report:
    """Forward half of the protocol."""
    meta = dict(resource.metadata())
    observed = _observe(ctx, resource)

    for axis, present in zip(resource.axes, observed):
        stp.state.set(axis.already_key, present)
        meta[axis.already_key] = present
        meta[axis.flag_key] = False
    meta[KEY_MODIFIED_BY_THIS_STEP] = False

    if all(observed):
        return stp.skipped(f"{resource.describe()} is already in the desired state", metadata=meta)

    for axis, present in zip(resource.axes, observed):
        if present:
            continue
        try:
            _run(ctx, resource, axis.apply, f"apply {axis.name} for")
        except StepError as e:
            return stp.failure(e, metadata=meta)
        stp.state.set(axis.flag_key, True)
        stp.state.set(KEY_MODIFIED_BY_THIS_STEP, True)
        meta[axis.flag_key] = True
        meta[KEY_MODIFIED_BY_THIS_STEP] = True

    return stp.success(metadata=meta)


def rollback_mutation(ctx: ExecutionContext, stp: Step, resource: StatefulResource) -> Report:
    """Compensating half of the protocol."""
    axes = resource.axes
    if not all(stp.state.has(axis.already_key) for axis in axes):
        return stp.skipped("step did not observe the resource, nothing to roll back")
    if all(stp.state.bool(axis.already_key) for axis in axes):
        return stp.skipped(f"{resource.describe()} was not modified by this step, skipping rollback")
    if not any(stp.state.bool(axis.flag_key) for axis in axes):
        return stp.skipped(f"no changes to {resource.describe()} left to roll back")

    current = _observe(ctx, resource)
    reverted = []
    for axis, present in reversed(list(zip(axes, current))):
        if not stp.state.bool(axis.flag_key):
            continue
        if not present:
            logger.info(f"[{stp.id}] {axis.name} of {resource.describe()} already reverted")
            stp.state.delete(axis.flag_key)
            continue
        try:
            _run(ctx, resource, axis.revert, f"revert {axis.name} for")
        except StepError as e:
            return stp.failure(e, metadata={'reverted': ','.join(reverted)})
        stp.state.delete(axis.flag_key)
        reverted.append(axis.name)

    stp.state.delete(KEY_MODIFIED_BY_THIS_STEP)
    if not reverted:
        return stp.skipped(f"changes to {resource.describe()} were already reverted")
    return stp.success(f"reverted {', '.join(reverted)}", metadata={'reverted': ','.join(reverted)})


def mutation_step(
    step_id: str,
    resource_factory: Callable[[], StatefulResource],
    notifier: Optional[Notifier] = None,
    start: str = '',
    failure: str = '',
    completion: str = ''
) -> StepBuilder:
    """StepBuilder wired to execute_mutation/rollback_mutation.

    The factory is called once per callback so rollback works on a fresh
    adapter, with only the state bag carrying facts across.
    """
    builder = (
        StepBuilder(step_id)
        .with_execute(lambda ctx, stp: execute_mutation(ctx, stp, resource_factory()))
        .with_rollback(lambda ctx, stp: rollback_mutation(ctx, stp, resource_factory()))
    )
    if notifier is not None:
        builder.with_notifications(notifier, start or f"Running {step_id}",
                                   failure or f"Failed {step_id}", completion or f"Completed {step_id}")
    return builder
