"""systemctl wrapper."""

import logging
from typing import Optional

from common import ExecutionContext, check_command, run_command
from errors import ErrorKind

logger = logging.getLogger(__name__)


class Systemd:
    def _systemctl(self, args: list[str], ctx: Optional[ExecutionContext], kind: ErrorKind) -> str:
        return check_command(['systemctl'] + args, ctx=ctx, kind=kind)

    def daemon_reload(self, ctx: Optional[ExecutionContext] = None) -> None:
        self._systemctl(['daemon-reload'], ctx, ErrorKind.CONFIGURATION)

    def is_enabled(self, unit: str, ctx: Optional[ExecutionContext] = None) -> bool:
        rc, out, _ = run_command(['systemctl', 'is-enabled', unit], ctx=ctx, timeout=30)
        return rc == 0 and out.strip() in ('enabled', 'enabled-runtime', 'alias')

    def is_running(self, unit: str, ctx: Optional[ExecutionContext] = None) -> bool:
        rc, out, _ = run_command(['systemctl', 'is-active', unit], ctx=ctx, timeout=30)
        return rc == 0 and out.strip() == 'active'

    def enable(self, unit: str, ctx: Optional[ExecutionContext] = None) -> None:
        logger.info(f"Enabling {unit}")
        self._systemctl(['enable', unit], ctx, ErrorKind.CONFIGURATION)

    def disable(self, unit: str, ctx: Optional[ExecutionContext] = None) -> None:
        logger.info(f"Disabling {unit}")
        self._systemctl(['disable', unit], ctx, ErrorKind.ROLLBACK)

    def start(self, unit: str, ctx: Optional[ExecutionContext] = None) -> None:
        logger.info(f"Starting {unit}")
        self._systemctl(['start', unit], ctx, ErrorKind.CONFIGURATION)

    def restart(self, unit: str, ctx: Optional[ExecutionContext] = None) -> None:
        logger.info(f"Restarting {unit}")
        self._systemctl(['restart', unit], ctx, ErrorKind.CONFIGURATION)

    def stop(self, unit: str, ctx: Optional[ExecutionContext] = None) -> None:
        logger.info(f"Stopping {unit}")
        self._systemctl(['stop', unit], ctx, ErrorKind.ROLLBACK)
