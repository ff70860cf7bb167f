"""Host preparation: sandbox, swap, kernel modules, sysctl, bind mounts."""

from actions import (
    configure_sysctl,
    disable_swap,
    install_kernel_module,
    setup_bind_mounts,
    setup_directories,
)
from runtime import Runtime
from workflow import WorkflowBuilder


def install_kernel_modules(runtime: Runtime) -> WorkflowBuilder:
    return (
        WorkflowBuilder('install-kernel-modules')
        .steps(*[install_kernel_module(runtime, name) for name in runtime.config.kernel_modules])
        .with_notifications(runtime.notifier, "Installing kernel modules",
                            "Failed to install kernel modules", "Kernel modules installed")
    )


def setup_node(runtime: Runtime) -> WorkflowBuilder:
    builders = [setup_directories(runtime), disable_swap(runtime)]
    if runtime.config.kernel_modules:
        builders.append(install_kernel_modules(runtime))
    builders.append(configure_sysctl(runtime))
    if runtime.config.bind_mounts:
        builders.append(setup_bind_mounts(runtime))
    return (
        WorkflowBuilder('setup-node')
        .steps(*builders)
        .with_notifications(runtime.notifier, "Preparing node", "Failed to prepare node", "Node prepared")
    )
