"""Kernel parameters: (configPresent, settingsApplied)."""

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from common import ExecutionContext
from errors import ErrorKind
from runtime import Runtime
from system import Sysctl
from workflow import Axis, StatefulResource, StepBuilder, mutation_step

logger = logging.getLogger(__name__)


@dataclass
class SysctlResource(StatefulResource):
    """Drop-in file plus live values; previous values are kept in backup_file."""
    settings: dict[str, str]
    sysctl: Sysctl
    backup_file: Path

    error_kind = ErrorKind.CONFIGURATION

    def __post_init__(self):
        self.axes = (
            Axis('configPresent',
                 apply=lambda ctx: self.sysctl.write_file(self.settings),
                 revert=lambda ctx: self.sysctl.remove_file()),
            Axis('settingsApplied', apply=self._apply, revert=self._restore),
        )

    def _apply(self, ctx: ExecutionContext) -> None:
        previous = {k: v for k, v in self.sysctl.current_values(self.settings).items() if v is not None}
        self.backup_file.parent.mkdir(parents=True, exist_ok=True)
        self.backup_file.write_text(yaml.safe_dump(previous, sort_keys=True))
        self.sysctl.apply_file(ctx)

    def _restore(self, ctx: ExecutionContext) -> None:
        if not self.backup_file.exists():
            logger.warning(f"No sysctl backup at {self.backup_file}, leaving live values")
            return
        previous = yaml.safe_load(self.backup_file.read_text()) or {}
        self.sysctl.set_values({str(k): str(v) for k, v in previous.items()}, ctx)
        self.backup_file.unlink()

    def observe(self, ctx: ExecutionContext) -> tuple[bool, bool]:
        return self.sysctl.file_matches(self.settings), self.sysctl.applied(self.settings)

    def describe(self) -> str:
        return "sysctl settings"

    def metadata(self) -> dict:
        return {'file': str(self.sysctl.drop_in)}


def configure_sysctl(runtime: Runtime) -> StepBuilder:
    backup = runtime.config.paths.backup_dir / 'sysctl.previous.yaml'
    return mutation_step(
        'configure-sysctl',
        lambda: SysctlResource(runtime.config.sysctl, runtime.sysctl, backup),
        runtime.notifier,
        start="Configuring sysctl settings",
        failure="Failed to configure sysctl settings",
        completion="Sysctl settings configured",
    )
