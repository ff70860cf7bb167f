"""Host profile: privileges, OS release, CPU, memory and disk capacity."""

import os
import shutil
from pathlib import Path

GIB = 1024 ** 3


class HostProfile:
    """Read-only view of the host used by preflight checks."""

    def __init__(
        self,
        os_release: Path = Path('/etc/os-release'),
        meminfo: Path = Path('/proc/meminfo')
    ):
        self.os_release = Path(os_release)
        self.meminfo = Path(meminfo)

    def is_root(self) -> bool:
        return os.geteuid() == 0

    def _os_fields(self) -> dict[str, str]:
        if not self.os_release.exists():
            return {}
        fields = {}
        for line in self.os_release.read_text().splitlines():
            key, sep, value = line.partition('=')
            if sep:
                fields[key.strip()] = value.strip().strip('"')
        return fields

    def os_id(self) -> str:
        return self._os_fields().get('ID', '').lower()

    def os_version(self) -> str:
        return self._os_fields().get('VERSION_ID', '')

    def cpu_cores(self) -> int:
        return os.cpu_count() or 0

    def memory_gb(self) -> float:
        """MemTotal from /proc/meminfo (reported in kB)."""
        if not self.meminfo.exists():
            return 0.0
        for line in self.meminfo.read_text().splitlines():
            if line.startswith('MemTotal:'):
                return int(line.split()[1]) * 1024 / GIB
        return 0.0

    def storage_gb(self, path: Path) -> float:
        """Free space on the filesystem holding path (or its nearest existing parent)."""
        path = Path(path)
        while not path.exists() and path != path.parent:
            path = path.parent
        return shutil.disk_usage(path).free / GIB
