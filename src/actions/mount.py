"""Bind mount steps: (mounted, inFstab) per target."""

import logging
from dataclasses import dataclass
from pathlib import Path

from common import ExecutionContext
from errors import ErrorKind
from runtime import Runtime
from system import BindMounts
from workflow import Axis, ExecutionMode, StatefulResource, StepBuilder, WorkflowBuilder, mutation_step

logger = logging.getLogger(__name__)


@dataclass
class BindMountResource(StatefulResource):
    source: Path
    target: Path
    mounts: BindMounts

    error_kind = ErrorKind.CONFIGURATION

    def __post_init__(self):
        # fstab first so a mount that fails leaves a restorable record
        self.axes = (
            Axis('inFstab',
                 apply=lambda ctx: self.mounts.add_fstab_entry(self.source, self.target),
                 revert=lambda ctx: self.mounts.remove_fstab_entry(self.source, self.target)),
            Axis('mounted',
                 apply=lambda ctx: self.mounts.mount(self.source, self.target, ctx),
                 revert=lambda ctx: self.mounts.unmount(self.target, ctx)),
        )

    def observe(self, ctx: ExecutionContext) -> tuple[bool, bool]:
        return (self.mounts.in_fstab(self.source, self.target),
                self.mounts.is_mounted(self.source, self.target))

    def describe(self) -> str:
        return f"bind mount {self.source} -> {self.target}"

    def metadata(self) -> dict:
        return {'source': str(self.source), 'target': str(self.target)}


def _resource(runtime: Runtime, target: str) -> BindMountResource:
    return BindMountResource(runtime.config.paths.sandbox_path(target), Path(target), runtime.mounts)


def setup_bind_mount(runtime: Runtime, name: str, target: str) -> StepBuilder:
    return mutation_step(
        f'setup-bind-mount-for-{name}',
        lambda: _resource(runtime, target),
        runtime.notifier,
        start=f"Setting up bind mount for {target}",
        failure=f"Failed to set up bind mount for {target}",
        completion=f"Bind mount for {target} set up",
    )


def remove_bind_mount(runtime: Runtime, name: str, target: str) -> StepBuilder:
    """Unmount and drop the fstab entry regardless of who created them."""
    def execute(ctx, stp):
        resource = _resource(runtime, target)
        in_fstab, mounted = resource.observe(ctx)
        if not in_fstab and not mounted:
            return stp.skipped(f"{resource.describe()} not present", metadata=resource.metadata())
        if mounted:
            runtime.mounts.unmount(resource.target, ctx)
        if in_fstab:
            runtime.mounts.remove_fstab_entry(resource.source, resource.target)
        return stp.success(metadata={**resource.metadata(), 'wasMounted': mounted, 'wasInFstab': in_fstab})

    return (
        StepBuilder(f'teardown-bind-mount-for-{name}')
        .with_execute(execute)
        .with_notifications(runtime.notifier, f"Removing bind mount for {target}",
                            f"Failed to remove bind mount for {target}", f"Bind mount for {target} removed")
    )


def setup_bind_mounts(runtime: Runtime) -> WorkflowBuilder:
    return (
        WorkflowBuilder('setup-bind-mounts')
        .steps(*[setup_bind_mount(runtime, name, target)
                 for name, target in runtime.config.bind_mounts.items()])
        .with_notifications(runtime.notifier, "Setting up bind mounts",
                            "Failed to set up bind mounts", "Bind mounts set up")
    )


def teardown_bind_mounts(runtime: Runtime) -> WorkflowBuilder:
    # reverse order: nested targets are released before their parents
    items = list(runtime.config.bind_mounts.items())
    return (
        WorkflowBuilder('teardown-bind-mounts')
        .with_mode(ExecutionMode.CONTINUE_ON_ERROR)
        .steps(*[remove_bind_mount(runtime, name, target) for name, target in reversed(items)])
        .with_notifications(runtime.notifier, "Tearing down bind mounts",
                            "Failed to tear down bind mounts", "Bind mounts torn down")
    )
