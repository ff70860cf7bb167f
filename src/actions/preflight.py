"""Read-only host checks run before any node changes are made.

None of these steps has a rollback: they only observe the host and fail
with IllegalStateError when it does not meet config.requirements.
"""

import logging

from errors import IllegalStateError
from runtime import Runtime
from workflow import StepBuilder

logger = logging.getLogger(__name__)


def _check(runtime: Runtime, step_id: str, what: str, check) -> StepBuilder:
    def execute(ctx, stp):
        return stp.success(metadata=check())

    return (
        StepBuilder(step_id)
        .with_execute(execute)
        .with_notifications(runtime.notifier, f"Validating {what}",
                            f"{what.capitalize()} check failed", f"{what.capitalize()} check passed")
    )


def validate_privileges(runtime: Runtime) -> StepBuilder:
    def check():
        if not runtime.host.is_root():
            raise IllegalStateError("provisioner must run as root")
        return {'root': 'true'}

    return _check(runtime, 'validate-privileges', 'privileges', check)


def validate_os(runtime: Runtime) -> StepBuilder:
    supported = [s.lower() for s in runtime.config.requirements.supported_os]

    def check():
        os_id = runtime.host.os_id()
        version = runtime.host.os_version()
        if os_id not in supported:
            raise IllegalStateError(f"unsupported OS '{os_id or 'unknown'}' (supported: {', '.join(supported)})")
        return {'os': os_id, 'version': version}

    return _check(runtime, 'validate-os', 'operating system', check)


def validate_cpu(runtime: Runtime) -> StepBuilder:
    minimum = runtime.config.requirements.min_cpu_cores

    def check():
        cores = runtime.host.cpu_cores()
        if cores < minimum:
            raise IllegalStateError(f"{cores} CPU cores available, {minimum} required")
        return {'cores': str(cores), 'required': str(minimum)}

    return _check(runtime, 'validate-cpu', 'CPU', check)


def validate_memory(runtime: Runtime) -> StepBuilder:
    minimum = runtime.config.requirements.min_memory_gb

    def check():
        memory = runtime.host.memory_gb()
        if memory < minimum:
            raise IllegalStateError(f"{memory:.1f} GB memory available, {minimum} GB required")
        return {'memoryGB': f'{memory:.1f}', 'required': str(minimum)}

    return _check(runtime, 'validate-memory', 'memory', check)


def validate_storage(runtime: Runtime) -> StepBuilder:
    minimum = runtime.config.requirements.min_storage_gb
    sandbox = runtime.config.paths.sandbox_dir

    def check():
        free = runtime.host.storage_gb(sandbox)
        if free < minimum:
            raise IllegalStateError(f"{free:.1f} GB free under {sandbox}, {minimum} GB required")
        logger.debug(f"{free:.1f} GB free under {sandbox}")
        return {'freeGB': f'{free:.1f}', 'required': str(minimum)}

    return _check(runtime, 'validate-storage', 'storage', check)
