"""Step lifecycle notifications."""

import logging
from typing import Optional

from reporting import Report

logger = logging.getLogger(__name__)


class Notifier:
    """Logs step start, failure and completion.

    Skipped steps are reported at completion with their detail, failures
    with the typed error kind.
    """

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def step_start(self, step_id: str, message: str) -> None:
        self.log.info(f"[{step_id}] {message}")

    def step_failure(self, step_id: str, report: Report, message: str) -> None:
        error = report.error
        reason = f" ({error.kind.value}: {error.message})" if error else ''
        self.log.error(f"[{step_id}] {message}{reason}")

    def step_completion(self, step_id: str, report: Report, message: str) -> None:
        if report.was_skipped:
            suffix = f": {report.detail}" if report.detail else ''
            self.log.info(f"[{step_id}] Skipped{suffix}")
            return
        self.log.info(f"[{step_id}] {message}")
