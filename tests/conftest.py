"""Shared pytest fixtures for provisioner tests."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from common import ExecutionContext  # noqa: E402
from config import Paths, ProvisionConfig, Timeouts  # noqa: E402
from errors import CommandError, ErrorKind  # noqa: E402
from runtime import Runtime  # noqa: E402
from system.helm import ReleaseInfo  # noqa: E402
from workflow import Notifier  # noqa: E402


class FakeKernel:
    """In-memory KernelModules."""

    def __init__(self, loaded=(), persisted=()):
        self.loaded = set(loaded)
        self.persisted = set(persisted)
        self.calls = []
        self.fail = set()

    def _maybe_fail(self, op, name):
        self.calls.append((op, name))
        if (op, name) in self.fail:
            raise CommandError(['modprobe', name], 1, f'{op} {name} failed', kind=ErrorKind.INSTALLATION)

    def is_loaded(self, name):
        return name in self.loaded

    def is_persisted(self, name):
        return name in self.persisted

    def load(self, name, ctx=None):
        self._maybe_fail('load', name)
        self.loaded.add(name)

    def unload(self, name, ctx=None):
        self._maybe_fail('unload', name)
        self.loaded.discard(name)

    def persist(self, name):
        self._maybe_fail('persist', name)
        self.persisted.add(name)

    def unpersist(self, name):
        self._maybe_fail('unpersist', name)
        self.persisted.discard(name)


class FakeMounts:
    """In-memory BindMounts keyed by (source, target) strings."""

    def __init__(self):
        self.fstab = set()
        self.mounted = set()
        self.calls = []
        self.fail = set()

    def _maybe_fail(self, op, target):
        self.calls.append((op, str(target)))
        if (op, str(target)) in self.fail:
            raise CommandError([op, str(target)], 32, f'{op} failed', kind=ErrorKind.CONFIGURATION)

    def in_fstab(self, source, target):
        return (str(source), str(target)) in self.fstab

    def is_mounted(self, source, target):
        return (str(source), str(target)) in self.mounted

    def add_fstab_entry(self, source, target):
        self._maybe_fail('add_fstab_entry', target)
        self.fstab.add((str(source), str(target)))

    def remove_fstab_entry(self, source, target):
        self._maybe_fail('remove_fstab_entry', target)
        self.fstab.discard((str(source), str(target)))

    def mount(self, source, target, ctx=None):
        self._maybe_fail('mount', target)
        self.mounted.add((str(source), str(target)))

    def unmount(self, target, ctx=None):
        self._maybe_fail('unmount', target)
        self.mounted = {m for m in self.mounted if m[1] != str(target)}


class FakeSystemd:
    def __init__(self, enabled=(), running=()):
        self.enabled = set(enabled)
        self.running = set(running)
        self.calls = []
        self.start_works = True

    def daemon_reload(self, ctx=None):
        self.calls.append(('daemon-reload', ''))

    def is_enabled(self, unit, ctx=None):
        return unit in self.enabled

    def is_running(self, unit, ctx=None):
        return unit in self.running

    def enable(self, unit, ctx=None):
        self.calls.append(('enable', unit))
        self.enabled.add(unit)

    def disable(self, unit, ctx=None):
        self.calls.append(('disable', unit))
        self.enabled.discard(unit)

    def restart(self, unit, ctx=None):
        self.calls.append(('restart', unit))
        if self.start_works:
            self.running.add(unit)

    def start(self, unit, ctx=None):
        self.restart(unit, ctx)

    def stop(self, unit, ctx=None):
        self.calls.append(('stop', unit))
        self.running.discard(unit)


def _chart(rel):
    return f"{rel.chart.rsplit('/', 1)[-1]}-{rel.version}"


class FakeHelm:
    def __init__(self):
        self.releases = {}
        self.calls = []
        self.fail_install = False

    def release_info(self, release, namespace, ctx=None):
        return self.releases.get(release)

    def is_installed(self, release, namespace, ctx=None):
        return release in self.releases

    def add_repo(self, name, url, ctx=None):
        self.calls.append(('add_repo', name))

    def install_chart(self, rel, ctx=None):
        self.calls.append(('install', rel.release))
        status = 'failed' if self.fail_install else 'deployed'
        self.releases[rel.release] = ReleaseInfo(rel.release, rel.namespace, 1, _chart(rel), status)
        if self.fail_install:
            raise CommandError(['helm', 'install'], 1, 'timed out waiting for the condition',
                               kind=ErrorKind.INSTALLATION)

    def upgrade_chart(self, rel, ctx=None):
        self.calls.append(('upgrade', rel.release))
        prev = self.releases[rel.release]
        self.releases[rel.release] = ReleaseInfo(rel.release, rel.namespace, prev.revision + 1, _chart(rel), 'deployed')

    def rollback_release(self, release, namespace, revision, ctx=None):
        self.calls.append(('rollback', release, revision))

    def uninstall_chart(self, release, namespace, ctx=None):
        self.calls.append(('uninstall', release))
        self.releases.pop(release, None)


@pytest.fixture
def ctx():
    return ExecutionContext()


@pytest.fixture
def config(tmp_path):
    sandbox = tmp_path / 'sandbox'
    return ProvisionConfig(
        paths=Paths(
            sandbox_dir=sandbox,
            backup_dir=tmp_path / 'backup',
            temp_dir=tmp_path / 'tmp',
            system_bin_dir=tmp_path / 'usr' / 'local' / 'bin',
            systemd_unit_dir=tmp_path / 'usr' / 'lib' / 'systemd' / 'system',
            modules_load_dir=tmp_path / 'etc' / 'modules-load.d',
            sysctl_dir=tmp_path / 'etc' / 'sysctl.d',
            fstab=tmp_path / 'etc' / 'fstab',
            proc_modules=tmp_path / 'proc' / 'modules',
            sys_module_dir=tmp_path / 'sys' / 'module',
            proc_swaps=tmp_path / 'proc' / 'swaps',
        ),
        timeouts=Timeouts(service=1, pods=1, crd=1, endpoint=1, poll_interval=0.01),
    )


@pytest.fixture
def runtime(config):
    """Runtime with in-memory host collaborators."""
    return Runtime(
        config=config,
        kernel=FakeKernel(),
        mounts=FakeMounts(),
        swap=MagicMock(),
        sysctl=MagicMock(),
        systemd=FakeSystemd(),
        kube=MagicMock(),
        helm=FakeHelm(),
        notifier=Notifier(),
    )
