"""Kernel parameters via sysctl drop-in files."""

import logging
from pathlib import Path
from typing import Optional

from common import ExecutionContext, check_command
from errors import ErrorKind

logger = logging.getLogger(__name__)

DROP_IN_NAME = '99-provisioner.conf'


class Sysctl:
    def __init__(self, sysctl_dir: Path = Path('/etc/sysctl.d'), proc_sys: Path = Path('/proc/sys')):
        self.sysctl_dir = Path(sysctl_dir)
        self.proc_sys = Path(proc_sys)

    @property
    def drop_in(self) -> Path:
        return self.sysctl_dir / DROP_IN_NAME

    @staticmethod
    def render(settings: dict[str, str]) -> str:
        return ''.join(f'{k} = {v}\n' for k, v in sorted(settings.items()))

    def file_matches(self, settings: dict[str, str]) -> bool:
        return self.drop_in.exists() and self.drop_in.read_text() == self.render(settings)

    def write_file(self, settings: dict[str, str]) -> None:
        self.sysctl_dir.mkdir(parents=True, exist_ok=True)
        self.drop_in.write_text(self.render(settings))
        logger.debug(f"Wrote {self.drop_in}")

    def remove_file(self) -> None:
        if self.drop_in.exists():
            self.drop_in.unlink()

    def _key_path(self, key: str) -> Path:
        return self.proc_sys / key.replace('.', '/')

    def current(self, key: str) -> Optional[str]:
        path = self._key_path(key)
        if not path.exists():
            return None
        return ' '.join(path.read_text().split())

    def current_values(self, keys) -> dict[str, Optional[str]]:
        return {k: self.current(k) for k in keys}

    def applied(self, settings: dict[str, str]) -> bool:
        return all(self.current(k) == str(v) for k, v in settings.items())

    def apply_file(self, ctx: Optional[ExecutionContext] = None) -> None:
        logger.info(f"Applying {self.drop_in}")
        check_command(['sysctl', '-p', str(self.drop_in)], ctx=ctx, kind=ErrorKind.CONFIGURATION)

    def set_values(self, values: dict[str, str], ctx: Optional[ExecutionContext] = None) -> None:
        if not values:
            return
        check_command(['sysctl', '-w'] + [f'{k}={v}' for k, v in values.items()],
                      ctx=ctx, kind=ErrorKind.ROLLBACK)
