"""Systemd unit: (enabled, running)."""

from dataclasses import dataclass

from common import ExecutionContext
from errors import ErrorKind
from readiness import wait_for
from runtime import Runtime
from system import Systemd
from workflow import Axis, StatefulResource, StepBuilder, mutation_step


@dataclass
class ServiceResource(StatefulResource):
    unit: str
    systemd: Systemd
    timeout: float = 60
    interval: float = 3.0

    error_kind = ErrorKind.CONFIGURATION

    def __post_init__(self):
        # rollback walks axes in reverse: stop, then disable
        self.axes = (
            Axis('enabled', apply=self._enable,
                 revert=lambda ctx: self.systemd.disable(self.unit, ctx), flag='enabledByThisStep'),
            Axis('running', apply=self._start,
                 revert=lambda ctx: self.systemd.stop(self.unit, ctx), flag='startedByThisStep'),
        )

    def _enable(self, ctx: ExecutionContext) -> None:
        self.systemd.daemon_reload(ctx)
        self.systemd.enable(self.unit, ctx)

    def _start(self, ctx: ExecutionContext) -> None:
        self.systemd.daemon_reload(ctx)
        self.systemd.restart(self.unit, ctx)
        wait_for(ctx, lambda: self.systemd.is_running(self.unit, ctx), self.timeout, self.interval,
                 description=f"{self.unit} to become active")

    def observe(self, ctx: ExecutionContext) -> tuple[bool, bool]:
        return self.systemd.is_enabled(self.unit, ctx), self.systemd.is_running(self.unit, ctx)

    def describe(self) -> str:
        return f"service {self.unit}"

    def metadata(self) -> dict:
        return {'unit': self.unit}


def setup_systemd_service(runtime: Runtime, name: str) -> StepBuilder:
    unit = name if name.endswith('.service') else f'{name}.service'
    timeouts = runtime.config.timeouts
    return mutation_step(
        f'setup-systemd-service-{name}',
        lambda: ServiceResource(unit, runtime.systemd, timeouts.service, timeouts.poll_interval),
        runtime.notifier,
        start=f"Setting up systemd service {unit}",
        failure=f"Failed to set up systemd service {unit}",
        completion=f"Systemd service {unit} is running",
    )
