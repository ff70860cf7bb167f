"""Host readiness checks; nothing here changes the host."""

from actions import validate_cpu, validate_memory, validate_os, validate_privileges, validate_storage
from runtime import Runtime
from workflow import ExecutionMode, WorkflowBuilder


def node_preflight(runtime: Runtime) -> WorkflowBuilder:
    return (
        WorkflowBuilder('node-preflight')
        .steps(validate_privileges(runtime), validate_os(runtime), validate_cpu(runtime),
               validate_memory(runtime), validate_storage(runtime))
        .with_mode(ExecutionMode.STOP_ON_ERROR)
        .with_notifications(runtime.notifier, "Running node preflight checks",
                            "Node preflight checks failed", "Node preflight checks passed")
    )
