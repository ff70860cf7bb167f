"""Common utilities and types for host provisioning."""

import logging
import subprocess
import threading
import time
from pathlib import Path
from typing import Any, Optional

from errors import CancelledError, CommandError, ErrorKind, WaitTimeoutError

logger = logging.getLogger(__name__)

# How often a running command is checked for cancellation
COMMAND_POLL_INTERVAL = 0.2


class ExecutionContext:
    """Cancellation token and value carrier passed to every step.

    Children created with with_value()/with_timeout() share the parent's
    cancel event, so cancelling the root cancels everything derived from it.
    """

    def __init__(
        self,
        cancel_event: Optional[threading.Event] = None,
        values: Optional[dict] = None,
        deadline: Optional[float] = None
    ):
        self._cancel_event = cancel_event or threading.Event()
        self._values: dict[str, Any] = dict(values or {})
        self.deadline = deadline

    def with_value(self, key: str, value: Any) -> 'ExecutionContext':
        values = dict(self._values)
        values[key] = value
        return ExecutionContext(self._cancel_event, values, self.deadline)

    def with_timeout(self, seconds: float) -> 'ExecutionContext':
        deadline = time.monotonic() + seconds
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return ExecutionContext(self._cancel_event, self._values, deadline)

    def detached(self) -> 'ExecutionContext':
        """Copy of this context that ignores the parent's cancellation and deadline.

        Used for compensation, which must run even after the run was cancelled.
        """
        return ExecutionContext(None, self._values, None)

    def value(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without one."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        """Raise if the context is cancelled or past its deadline."""
        if self.cancelled:
            raise CancelledError("operation cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise WaitTimeoutError("context deadline exceeded")

    def sleep(self, seconds: float) -> None:
        """Sleep, waking early (and raising) on cancellation."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        if self._cancel_event.wait(seconds):
            raise CancelledError("operation cancelled")
        self.check()


def background() -> ExecutionContext:
    """Fresh root context with no deadline."""
    return ExecutionContext()


def run_command(
    cmd: list[str],
    ctx: Optional[ExecutionContext] = None,
    cwd: Optional[Path] = None,
    timeout: int = 600,
    env: Optional[dict] = None,
    input_text: Optional[str] = None
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr).

    Timeouts and spawn failures are reported as returncode -1. Cancelling
    ctx kills the process and raises CancelledError.
    """
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=cwd,
            stdin=subprocess.PIPE if input_text is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
    except OSError as e:
        return -1, '', str(e)

    start = time.monotonic()
    pending_input = input_text
    while True:
        try:
            out, err = proc.communicate(input=pending_input, timeout=COMMAND_POLL_INTERVAL)
            return proc.returncode, out, err
        except subprocess.TimeoutExpired:
            pending_input = None
        if ctx is not None and ctx.cancelled:
            proc.kill()
            proc.communicate()
            raise CancelledError(f"cancelled while running '{' '.join(cmd)}'")
        if time.monotonic() - start >= timeout:
            proc.kill()
            proc.communicate()
            return -1, '', f'Command timed out after {timeout}s'


def check_command(
    cmd: list[str],
    ctx: Optional[ExecutionContext] = None,
    kind: ErrorKind = ErrorKind.EXECUTION,
    timeout: int = 600,
    input_text: Optional[str] = None
) -> str:
    """Run a command, raising CommandError on a non-zero exit. Returns stdout."""
    rc, out, err = run_command(cmd, ctx=ctx, timeout=timeout, input_text=input_text)
    if rc != 0:
        raise CommandError(cmd, rc, err, kind=kind)
    return out
