"""Host, Kubernetes and Helm collaborators used by actions.

Each collaborator wraps one external surface (a CLI, a set of files) and is
constructed from config paths, so tests can point it at tmp_path.
"""

from system.helm import HelmClient, ReleaseInfo
from system.kernel import KernelModules
from system.host import HostProfile
from system.kube import KubeClient, is_node_ready, is_pod_ready
from system.mount import BindMounts, FstabEntry
from system.software import BinaryInstaller, Configurable, Installer
from system.swap import Swap
from system.sysctl import Sysctl
from system.systemd import Systemd

__all__ = [
    'HelmClient',
    'ReleaseInfo',
    'KernelModules',
    'HostProfile',
    'KubeClient',
    'is_node_ready',
    'is_pod_ready',
    'BindMounts',
    'FstabEntry',
    'BinaryInstaller',
    'Configurable',
    'Installer',
    'Swap',
    'Sysctl',
    'Systemd',
]
