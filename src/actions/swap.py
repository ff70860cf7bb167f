"""Disable swap: (swapOff, fstabSwapDisabled)."""

from dataclasses import dataclass

from common import ExecutionContext
from errors import ErrorKind
from runtime import Runtime
from system import Swap
from workflow import Axis, StatefulResource, StepBuilder, mutation_step


@dataclass
class SwapResource(StatefulResource):
    swap: Swap

    error_kind = ErrorKind.CONFIGURATION

    def __post_init__(self):
        self.axes = (
            Axis('swapOff', apply=self.swap.swap_off, revert=self.swap.swap_on),
            Axis('fstabSwapDisabled',
                 apply=lambda ctx: self.swap.comment_fstab_swap(),
                 revert=lambda ctx: self.swap.restore_fstab()),
        )

    def observe(self, ctx: ExecutionContext) -> tuple[bool, bool]:
        return self.swap.is_off(), self.swap.is_fstab_disabled()

    def describe(self) -> str:
        return "swap"

    def metadata(self) -> dict:
        return {'activeSwaps': ','.join(self.swap.active_swaps())}


def disable_swap(runtime: Runtime) -> StepBuilder:
    return mutation_step(
        'disable-swap',
        lambda: SwapResource(runtime.swap),
        runtime.notifier,
        start="Disabling swap",
        failure="Failed to disable swap",
        completion="Swap disabled",
    )
