"""Kernel module loading and persistence."""

import logging
from pathlib import Path
from typing import Optional

from common import ExecutionContext, check_command
from errors import ErrorKind

logger = logging.getLogger(__name__)


class KernelModules:
    """modprobe plus /etc/modules-load.d persistence."""

    def __init__(
        self,
        modules_load_dir: Path = Path('/etc/modules-load.d'),
        proc_modules: Path = Path('/proc/modules'),
        sys_module_dir: Path = Path('/sys/module')
    ):
        self.modules_load_dir = Path(modules_load_dir)
        self.proc_modules = Path(proc_modules)
        self.sys_module_dir = Path(sys_module_dir)

    def conf_path(self, name: str) -> Path:
        return self.modules_load_dir / f'{name}.conf'

    def is_loaded(self, name: str) -> bool:
        """True if the module shows up in /sys/module or /proc/modules."""
        # modprobe normalises dashes to underscores
        normalized = name.replace('-', '_')
        if (self.sys_module_dir / normalized).is_dir():
            return True
        if not self.proc_modules.exists():
            return False
        for line in self.proc_modules.read_text().splitlines():
            fields = line.split()
            if fields and fields[0].replace('-', '_') == normalized:
                return True
        return False

    def is_persisted(self, name: str) -> bool:
        path = self.conf_path(name)
        if not path.exists():
            return False
        lines = [ln.strip() for ln in path.read_text().splitlines()]
        return name in lines

    def load(self, name: str, ctx: Optional[ExecutionContext] = None) -> None:
        logger.info(f"Loading kernel module {name}")
        check_command(['modprobe', name], ctx=ctx, kind=ErrorKind.INSTALLATION)

    def unload(self, name: str, ctx: Optional[ExecutionContext] = None) -> None:
        logger.info(f"Unloading kernel module {name}")
        check_command(['modprobe', '-r', name], ctx=ctx, kind=ErrorKind.ROLLBACK)

    def persist(self, name: str) -> None:
        self.modules_load_dir.mkdir(parents=True, exist_ok=True)
        self.conf_path(name).write_text(f'{name}\n')
        logger.debug(f"Persisted {name} to {self.conf_path(name)}")

    def unpersist(self, name: str) -> None:
        path = self.conf_path(name)
        if path.exists():
            path.unlink()
            logger.debug(f"Removed {path}")
