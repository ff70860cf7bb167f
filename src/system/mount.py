"""Bind mounts and /etc/fstab bookkeeping."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from common import ExecutionContext, check_command
from errors import ErrorKind

logger = logging.getLogger(__name__)

BIND_FSTYPE = 'none'
BIND_OPTIONS = 'bind,nofail'


@dataclass(frozen=True)
class FstabEntry:
    source: str
    target: str
    fstype: str = BIND_FSTYPE
    options: str = BIND_OPTIONS
    dump: str = '0'
    passno: str = '0'

    @classmethod
    def parse(cls, line: str) -> Optional['FstabEntry']:
        """Parse a line; comments, blanks and short lines yield None."""
        stripped = line.strip()
        if not stripped or stripped.startswith('#'):
            return None
        fields = stripped.split()
        if len(fields) < 4:
            return None
        fields += ['0'] * (6 - len(fields))
        return cls(*fields[:6])

    def render(self) -> str:
        return f"{self.source} {self.target} {self.fstype} {self.options} {self.dump} {self.passno}"


class BindMounts:
    """Bind mount a sandbox directory over a system path."""

    def __init__(self, fstab: Path = Path('/etc/fstab')):
        self.fstab = Path(fstab)

    def entries(self) -> list[FstabEntry]:
        if not self.fstab.exists():
            return []
        return [e for e in (FstabEntry.parse(ln) for ln in self.fstab.read_text().splitlines()) if e]

    def in_fstab(self, source: Path, target: Path) -> bool:
        src, tgt = str(source), str(target)
        return any(e.source == src and e.target == tgt and 'bind' in e.options.split(',')
                   for e in self.entries())

    def add_fstab_entry(self, source: Path, target: Path) -> None:
        if self.in_fstab(source, target):
            return
        text = self.fstab.read_text() if self.fstab.exists() else ''
        if text and not text.endswith('\n'):
            text += '\n'
        text += FstabEntry(str(source), str(target)).render() + '\n'
        self.fstab.write_text(text)
        logger.debug(f"Added fstab entry {source} -> {target}")

    def remove_fstab_entry(self, source: Path, target: Path) -> None:
        if not self.fstab.exists():
            return
        src, tgt = str(source), str(target)
        kept = []
        for line in self.fstab.read_text().splitlines():
            entry = FstabEntry.parse(line)
            if entry and entry.source == src and entry.target == tgt:
                continue
            kept.append(line)
        self.fstab.write_text('\n'.join(kept) + ('\n' if kept else ''))
        logger.debug(f"Removed fstab entry {source} -> {target}")

    def is_mounted(self, source: Path, target: Path) -> bool:
        """A bind mount is in place when both paths resolve to the same inode."""
        try:
            s = os.stat(source)
            t = os.stat(target)
        except FileNotFoundError:
            return False
        return s.st_dev == t.st_dev and s.st_ino == t.st_ino

    def mount(self, source: Path, target: Path, ctx: Optional[ExecutionContext] = None) -> None:
        Path(source).mkdir(parents=True, exist_ok=True)
        Path(target).mkdir(parents=True, exist_ok=True)
        logger.info(f"Bind mounting {source} -> {target}")
        check_command(['mount', '--bind', str(source), str(target)], ctx=ctx, kind=ErrorKind.CONFIGURATION)

    def unmount(self, target: Path, ctx: Optional[ExecutionContext] = None) -> None:
        logger.info(f"Unmounting {target}")
        check_command(['umount', str(target)], ctx=ctx, kind=ErrorKind.ROLLBACK)
