"""Typed errors raised by steps and collaborators.

Every expected failure is a StepError carrying an ErrorKind, so callers can
tell which phase failed without matching on messages:

    try:
        installer.download()
    except StepError as e:
        if e.kind is ErrorKind.DOWNLOAD:
            ...
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Discriminant for StepError."""
    DOWNLOAD = 'DownloadError'
    INSTALLATION = 'InstallationError'
    CONFIGURATION = 'ConfigurationError'
    CLEANUP = 'CleanupError'
    ILLEGAL_ARGUMENT = 'IllegalArgument'
    ILLEGAL_STATE = 'IllegalState'
    TIMEOUT = 'TimeoutError'
    CANCELLED = 'Cancelled'
    EXECUTION = 'ExecutionError'
    ROLLBACK = 'RollbackError'


class StepError(Exception):
    """Base exception for provisioning errors."""

    kind: ErrorKind = ErrorKind.EXECUTION

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        if kind is not None:
            self.kind = kind
        self.message = message
        super().__init__(f"{self.kind.value}: {message}")

    @classmethod
    def wrap(cls, cause: BaseException, message: str, kind: Optional[ErrorKind] = None) -> 'StepError':
        """Wrap a lower-level error, keeping it as __cause__.

        A StepError cause keeps its own kind unless one is given explicitly.
        """
        if kind is None and cls is StepError and isinstance(cause, StepError):
            kind = cause.kind
        err = cls(f"{message}: {cause}", kind=kind)
        err.__cause__ = cause
        return err

    def to_dict(self) -> dict:
        return {'kind': self.kind.value, 'message': self.message}


class DownloadError(StepError):
    kind = ErrorKind.DOWNLOAD


class InstallationError(StepError):
    kind = ErrorKind.INSTALLATION


class ConfigurationError(StepError):
    kind = ErrorKind.CONFIGURATION


class CleanupError(StepError):
    kind = ErrorKind.CLEANUP


class IllegalArgumentError(StepError):
    kind = ErrorKind.ILLEGAL_ARGUMENT


class IllegalStateError(StepError):
    kind = ErrorKind.ILLEGAL_STATE


class WaitTimeoutError(StepError):
    kind = ErrorKind.TIMEOUT


class CancelledError(StepError):
    kind = ErrorKind.CANCELLED


class CommandError(StepError):
    """External command exited non-zero."""
    kind = ErrorKind.EXECUTION

    def __init__(self, cmd: list[str], returncode: int, stderr: str = '', kind: Optional[ErrorKind] = None):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else 'no output'
        super().__init__(f"'{' '.join(cmd)}' exited with {returncode}: {detail}", kind=kind)
