"""Kernel module step: (loaded, persisted)."""

import logging
from dataclasses import dataclass

from common import ExecutionContext
from errors import ErrorKind
from runtime import Runtime
from system import KernelModules
from workflow import Axis, StatefulResource, StepBuilder, mutation_step

logger = logging.getLogger(__name__)


@dataclass
class KernelModuleResource(StatefulResource):
    """Loaded into the running kernel and listed in modules-load.d."""
    name: str
    kernel: KernelModules

    error_kind = ErrorKind.INSTALLATION

    def __post_init__(self):
        self.axes = (
            Axis('loaded',
                 apply=lambda ctx: self.kernel.load(self.name, ctx),
                 revert=lambda ctx: self.kernel.unload(self.name, ctx)),
            Axis('persisted',
                 apply=lambda ctx: self.kernel.persist(self.name),
                 revert=lambda ctx: self.kernel.unpersist(self.name)),
        )

    def observe(self, ctx: ExecutionContext) -> tuple[bool, bool]:
        return self.kernel.is_loaded(self.name), self.kernel.is_persisted(self.name)

    def describe(self) -> str:
        return f"kernel module {self.name}"

    def metadata(self) -> dict:
        return {'module': self.name}


def install_kernel_module(runtime: Runtime, name: str) -> StepBuilder:
    return mutation_step(
        f'install-kernel-module-{name}',
        lambda: KernelModuleResource(name, runtime.kernel),
        runtime.notifier,
        start=f"Installing kernel module {name}",
        failure=f"Failed to install kernel module {name}",
        completion=f"Kernel module {name} installed",
    )
