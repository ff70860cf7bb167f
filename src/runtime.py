"""Runtime: configuration plus the collaborators workflow builders use."""

from dataclasses import dataclass, field
from typing import Callable, Optional

from config import ProvisionConfig
from system import (
    BinaryInstaller,
    BindMounts,
    HelmClient,
    HostProfile,
    KernelModules,
    KubeClient,
    Swap,
    Sysctl,
    Systemd,
)
from workflow import Notifier

InstallerFactory = Callable[[str], BinaryInstaller]


@dataclass
class Runtime:
    """Explicit dependency bundle passed into every action and scenario.

    Tests build one with fakes in place of the host collaborators.
    """
    config: ProvisionConfig
    kernel: KernelModules
    mounts: BindMounts
    swap: Swap
    sysctl: Sysctl
    systemd: Systemd
    kube: KubeClient
    helm: HelmClient
    notifier: Notifier = field(default_factory=Notifier)
    installer_factory: Optional[InstallerFactory] = None
    host: HostProfile = field(default_factory=HostProfile)

    def installer(self, name: str) -> BinaryInstaller:
        if self.installer_factory is not None:
            return self.installer_factory(name)
        return BinaryInstaller(self.config.software_spec(name), self.config.paths)

    @classmethod
    def from_config(cls, config: ProvisionConfig) -> 'Runtime':
        paths = config.paths
        return cls(
            config=config,
            kernel=KernelModules(paths.modules_load_dir, paths.proc_modules, paths.sys_module_dir),
            mounts=BindMounts(paths.fstab),
            swap=Swap(paths.fstab, paths.proc_swaps, paths.backup_dir),
            sysctl=Sysctl(paths.sysctl_dir),
            systemd=Systemd(),
            kube=KubeClient(),
            helm=HelmClient(),
        )
