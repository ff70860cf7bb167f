"""Step/workflow execution engine."""

from workflow.mutation import (
    KEY_MODIFIED_BY_THIS_STEP,
    Axis,
    StatefulResource,
    execute_mutation,
    mutation_step,
    rollback_mutation,
)
from workflow.notify import Notifier
from workflow.state import StateBag
from workflow.step import Builder, Runnable, Step, StepBuilder
from workflow.workflow import ExecutionMode, Workflow, WorkflowBuilder, aggregate_rollback
from workflow.store import StateStore, iter_steps

__all__ = [
    'KEY_MODIFIED_BY_THIS_STEP',
    'Axis',
    'StatefulResource',
    'execute_mutation',
    'mutation_step',
    'rollback_mutation',
    'Notifier',
    'StateBag',
    'Builder',
    'Runnable',
    'Step',
    'StepBuilder',
    'StateStore',
    'iter_steps',
    'ExecutionMode',
    'Workflow',
    'WorkflowBuilder',
    'aggregate_rollback',
]
