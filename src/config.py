"""Provisioner configuration.

Configuration is loaded from a single YAML file:
- --config PATH on the command line
- $PROVISIONER_CONFIG
- /etc/provisioner/config.yaml

A missing file yields the built-in defaults. Every section is optional:

    paths:
      sandbox_dir: /opt/provisioner/sandbox
    kernel_modules: [overlay, br_netfilter]
    software:
      kubeadm:
        version: 1.31.1
        url: https://dl.k8s.io/release/v{version}/bin/linux/{arch}/kubeadm
        checksum: {algorithm: sha256, value: ...}
    alloy:
      cluster_name: lab
      prometheus_remotes:
        - {name: primary, url: https://prom.example.com/api/v1/write}
    addons:
      metallb_addresses: [192.168.1.240-192.168.1.250]
    requirements:
      min_cpu_cores: 4
"""

import logging
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path('/etc/provisioner/config.yaml')
CONFIG_ENV_VAR = 'PROVISIONER_CONFIG'


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class Paths:
    """Filesystem locations touched by the provisioner."""
    sandbox_dir: Path = Path('/opt/provisioner/sandbox')
    backup_dir: Path = Path('/opt/provisioner/backup')
    temp_dir: Path = Path('/opt/provisioner/tmp')
    system_bin_dir: Path = Path('/usr/local/bin')
    systemd_unit_dir: Path = Path('/usr/lib/systemd/system')
    modules_load_dir: Path = Path('/etc/modules-load.d')
    sysctl_dir: Path = Path('/etc/sysctl.d')
    fstab: Path = Path('/etc/fstab')
    proc_modules: Path = Path('/proc/modules')
    sys_module_dir: Path = Path('/sys/module')
    proc_swaps: Path = Path('/proc/swaps')

    @property
    def sandbox_bin_dir(self) -> Path:
        return self.sandbox_dir / 'usr' / 'local' / 'bin'

    @property
    def sandbox_unit_dir(self) -> Path:
        return self.sandbox_dir / 'usr' / 'lib' / 'systemd' / 'system'

    @property
    def sandbox_etc_dir(self) -> Path:
        return self.sandbox_dir / 'etc' / 'provisioner'

    @property
    def state_dir(self) -> Path:
        """Saved step state of setup runs, read by rollback."""
        return self.backup_dir / 'state'

    def sandbox_path(self, target: str) -> Path:
        """Sandbox location backing a system path (bind mount source)."""
        return self.sandbox_dir / target.lstrip('/')

    @property
    def sandbox_directories(self) -> list[Path]:
        return [
            self.sandbox_bin_dir,
            self.sandbox_unit_dir,
            self.sandbox_etc_dir,
            self.sandbox_dir / 'var' / 'lib',
            self.sandbox_dir / 'var' / 'run',
            self.backup_dir,
            self.temp_dir,
        ]


@dataclass
class Checksum:
    algorithm: str = 'sha256'
    value: str = ''


@dataclass
class ConfigFile:
    """Auxiliary file shipped with a software package (e.g. a systemd unit)."""
    name: str
    url: str
    checksum: Checksum = field(default_factory=Checksum)


@dataclass
class SoftwareSpec:
    """Catalog entry for a downloadable binary."""
    name: str
    version: str
    url: str
    checksum: Checksum = field(default_factory=Checksum)
    archive_member: str = ''   # file to extract when url is a .tar.gz
    binaries: list[str] = field(default_factory=list)
    configs: list[ConfigFile] = field(default_factory=list)
    systemd_unit: str = ''     # config file installed as <unit> via a .latest copy

    def resolved_url(self, arch: Optional[str] = None) -> str:
        return self.url.format(version=self.version, arch=arch or _machine_arch())

    @property
    def binary_names(self) -> list[str]:
        return self.binaries or [self.name]


@dataclass
class HelmRelease:
    """Chart release installed by a helm step."""
    release: str
    chart: str
    version: str
    namespace: str
    repo_name: str = ''
    repo_url: str = ''
    values: list[str] = field(default_factory=list)
    timeout: int = 300


@dataclass
class Remote:
    name: str
    url: str
    username: str = ''


@dataclass
class AlloyConfig:
    cluster_name: str = 'provisioned-cluster'
    namespace: str = 'grafana-alloy'
    cluster_secret_store: str = 'vault-secret-store'
    prometheus_remotes: list[Remote] = field(default_factory=list)
    loki_remotes: list[Remote] = field(default_factory=list)

    @property
    def has_remotes(self) -> bool:
        return bool(self.prometheus_remotes or self.loki_remotes)


@dataclass
class KubeadmConfig:
    pod_subnet: str = '10.244.0.0/16'
    service_subnet: str = '10.96.0.0/12'
    advertise_address: str = ''
    cri_socket: str = 'unix:///opt/provisioner/sandbox/var/run/crio/crio.sock'
    kubernetes_version: str = '1.31.1'


@dataclass
class ClusterAddons:
    """CNI and load balancer charts installed on top of kubeadm init."""
    cilium_version: str = '1.18.1'
    metallb_version: str = '0.15.2'
    # CIDRs or ranges handed to MetalLB; empty means the advertise address as a /32
    metallb_addresses: list[str] = field(default_factory=list)


@dataclass
class Requirements:
    """Minimum host profile checked by the preflight scenario."""
    min_cpu_cores: int = 3
    min_memory_gb: float = 1
    min_storage_gb: float = 1
    supported_os: list[str] = field(default_factory=lambda: ['ubuntu', 'debian'])


@dataclass
class Timeouts:
    """Readiness budgets in seconds."""
    service: int = 60
    pods: int = 300
    crd: int = 60
    endpoint: int = 10
    poll_interval: float = 3.0


DEFAULT_SYSCTL = {
    'net.bridge.bridge-nf-call-iptables': '1',
    'net.bridge.bridge-nf-call-ip6tables': '1',
    'net.ipv4.ip_forward': '1',
}

DEFAULT_SOFTWARE = {
    'kubeadm': {
        'version': '1.31.1',
        'url': 'https://dl.k8s.io/release/v{version}/bin/linux/{arch}/kubeadm',
    },
    'kubelet': {
        'version': '1.31.1',
        'url': 'https://dl.k8s.io/release/v{version}/bin/linux/{arch}/kubelet',
        'systemd_unit': 'kubelet.service',
        'configs': [{
            'name': 'kubelet.service',
            'url': 'https://raw.githubusercontent.com/kubernetes/release/v0.16.2/cmd/krel/templates/latest/kubelet/kubelet.service',
        }],
    },
    'kubectl': {
        'version': '1.31.1',
        'url': 'https://dl.k8s.io/release/v{version}/bin/linux/{arch}/kubectl',
    },
    'helm': {
        'version': '3.18.6',
        'url': 'https://get.helm.sh/helm-v{version}-linux-{arch}.tar.gz',
    },
    'crio': {
        'version': '1.31.1',
        'url': 'https://storage.googleapis.com/cri-o/artifacts/cri-o.{arch}.v{version}.tar.gz',
        'archive_member': 'cri-o/bin/crio',
        'systemd_unit': 'crio.service',
        'configs': [{
            'name': 'crio.service',
            'url': 'https://raw.githubusercontent.com/cri-o/cri-o/v{version}/contrib/crio.service',
        }],
    },
}


@dataclass
class ProvisionConfig:
    """Top-level configuration passed (via Runtime) into every workflow builder."""
    source: Optional[Path] = None
    paths: Paths = field(default_factory=Paths)
    kernel_modules: list[str] = field(default_factory=lambda: ['overlay', 'br_netfilter'])
    bind_mounts: dict[str, str] = field(default_factory=lambda: {
        'kubernetes': '/etc/kubernetes',
        'kubelet': '/var/lib/kubelet',
        'cilium': '/var/run/cilium',
    })
    sysctl: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SYSCTL))
    software: dict[str, SoftwareSpec] = field(default_factory=dict)
    kubeadm: KubeadmConfig = field(default_factory=KubeadmConfig)
    addons: ClusterAddons = field(default_factory=ClusterAddons)
    requirements: Requirements = field(default_factory=Requirements)
    alloy: AlloyConfig = field(default_factory=AlloyConfig)
    timeouts: Timeouts = field(default_factory=Timeouts)

    def __post_init__(self):
        if not self.software:
            self.software = _parse_software(DEFAULT_SOFTWARE)

    def software_spec(self, name: str) -> SoftwareSpec:
        if name not in self.software:
            raise ConfigError(f"Unknown software: {name}. Available: {sorted(self.software)}")
        return self.software[name]


def discover_config_path(explicit: Optional[Path] = None) -> Path:
    """Resolve the config file location (flag > env > default)."""
    if explicit:
        return explicit
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        return Path(env)
    return DEFAULT_CONFIG_PATH


def load_config(path: Optional[Path] = None) -> ProvisionConfig:
    """Load configuration; a missing default file yields defaults."""
    config_path = discover_config_path(path)
    if not config_path.exists():
        if path is not None:
            raise ConfigError(f"Config file not found: {config_path}")
        logger.debug(f"No config at {config_path}, using defaults")
        return ProvisionConfig()

    data = _parse_yaml(config_path)
    try:
        return _from_dict(data, config_path)
    except (TypeError, ValueError, KeyError) as e:
        raise ConfigError(f"Invalid config {config_path}: {e}") from e


def _from_dict(data: dict, source: Path) -> ProvisionConfig:
    config = ProvisionConfig(source=source)

    if paths := data.get('paths'):
        config.paths = Paths(**{k: Path(v) for k, v in paths.items()})
    if 'kernel_modules' in data:
        config.kernel_modules = [str(m) for m in data['kernel_modules'] or []]
    if 'bind_mounts' in data:
        config.bind_mounts = {str(k): str(v) for k, v in (data['bind_mounts'] or {}).items()}
    if 'sysctl' in data:
        config.sysctl = {str(k): str(v) for k, v in (data['sysctl'] or {}).items()}
    if software := data.get('software'):
        merged = dict(DEFAULT_SOFTWARE)
        merged.update(software)
        config.software = _parse_software(merged)
    if kubeadm := data.get('kubeadm'):
        config.kubeadm = KubeadmConfig(**kubeadm)
    if alloy := data.get('alloy'):
        alloy = dict(alloy)
        alloy['prometheus_remotes'] = [Remote(**r) for r in alloy.get('prometheus_remotes') or []]
        alloy['loki_remotes'] = [Remote(**r) for r in alloy.get('loki_remotes') or []]
        config.alloy = AlloyConfig(**alloy)
    if addons := data.get('addons'):
        config.addons = ClusterAddons(**addons)
    if requirements := data.get('requirements'):
        config.requirements = Requirements(**requirements)
    if timeouts := data.get('timeouts'):
        config.timeouts = Timeouts(**timeouts)

    return config


def _parse_software(entries: dict[str, Any]) -> dict[str, SoftwareSpec]:
    result = {}
    for name, entry in entries.items():
        entry = dict(entry)
        if 'version' not in entry or 'url' not in entry:
            raise ConfigError(f"software.{name} requires 'version' and 'url'")
        checksum = Checksum(**entry.pop('checksum', {}) or {})
        configs = [
            ConfigFile(name=c['name'], url=c['url'], checksum=Checksum(**c.get('checksum', {}) or {}))
            for c in entry.pop('configs', []) or []
        ]
        result[name] = SoftwareSpec(name=name, checksum=checksum, configs=configs, **entry)
    return result


def _parse_yaml(path: Path) -> dict:
    """Parse YAML file and return dict."""
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


def _machine_arch() -> str:
    machine = platform.machine().lower()
    return {'x86_64': 'amd64', 'aarch64': 'arm64'}.get(machine, machine)
