"""Swap state: /proc/swaps and fstab swap lines."""

import logging
import shutil
from pathlib import Path
from typing import Optional

from common import ExecutionContext, check_command
from errors import ErrorKind
from system.mount import FstabEntry

logger = logging.getLogger(__name__)

DISABLED_MARKER = '# disabled by provisioner: '


class Swap:
    def __init__(
        self,
        fstab: Path = Path('/etc/fstab'),
        proc_swaps: Path = Path('/proc/swaps'),
        backup_dir: Path = Path('/opt/provisioner/backup')
    ):
        self.fstab = Path(fstab)
        self.proc_swaps = Path(proc_swaps)
        self.backup_dir = Path(backup_dir)

    @property
    def backup_path(self) -> Path:
        return self.backup_dir / 'fstab.swap.bak'

    def active_swaps(self) -> list[str]:
        """Devices listed in /proc/swaps (header line skipped)."""
        if not self.proc_swaps.exists():
            return []
        lines = self.proc_swaps.read_text().splitlines()[1:]
        return [ln.split()[0] for ln in lines if ln.strip()]

    def is_off(self) -> bool:
        return not self.active_swaps()

    def fstab_swap_lines(self) -> list[str]:
        if not self.fstab.exists():
            return []
        result = []
        for line in self.fstab.read_text().splitlines():
            entry = FstabEntry.parse(line)
            if entry and entry.fstype == 'swap':
                result.append(line)
        return result

    def is_fstab_disabled(self) -> bool:
        return not self.fstab_swap_lines()

    def swap_off(self, ctx: Optional[ExecutionContext] = None) -> None:
        logger.info("Disabling swap")
        check_command(['swapoff', '-a'], ctx=ctx, kind=ErrorKind.CONFIGURATION)

    def swap_on(self, ctx: Optional[ExecutionContext] = None) -> None:
        logger.info("Re-enabling swap")
        check_command(['swapon', '-a'], ctx=ctx, kind=ErrorKind.ROLLBACK)

    def comment_fstab_swap(self) -> None:
        """Back up fstab, then comment out every active swap line."""
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(self.fstab, self.backup_path)
        out = []
        for line in self.fstab.read_text().splitlines():
            entry = FstabEntry.parse(line)
            out.append(DISABLED_MARKER + line if entry and entry.fstype == 'swap' else line)
        self.fstab.write_text('\n'.join(out) + '\n')

    def restore_fstab(self) -> None:
        """Uncomment the lines this class commented out, then drop the backup."""
        lines = []
        for line in self.fstab.read_text().splitlines():
            if line.startswith(DISABLED_MARKER):
                line = line[len(DISABLED_MARKER):]
            lines.append(line)
        self.fstab.write_text('\n'.join(lines) + '\n')
        if self.backup_path.exists():
            self.backup_path.unlink()
