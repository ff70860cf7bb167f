"""kubeadm control plane steps."""

import hashlib
import logging
import secrets
import shutil
import string
from pathlib import Path

import yaml

from common import check_command, run_command
from config import KubeadmConfig, Paths
from errors import ErrorKind
from runtime import Runtime
from workflow import StepBuilder

logger = logging.getLogger(__name__)

KEY_WRITTEN = 'writtenByThisStep'
KEY_INITIALIZED = 'initializedByThisStep'
TOKEN_ALPHABET = string.ascii_lowercase + string.digits


def kubeadm_config_path(paths: Paths) -> Path:
    return paths.sandbox_etc_dir / 'kubeadm-init.yaml'


def bootstrap_token() -> str:
    """kubeadm token in the [a-z0-9]{6}.[a-z0-9]{16} format."""
    def pick(n):
        return ''.join(secrets.choice(TOKEN_ALPHABET) for _ in range(n))

    return f'{pick(6)}.{pick(16)}'


def render_kubeadm_config(cfg: KubeadmConfig, paths: Paths, token: str) -> str:
    init = {
        'apiVersion': 'kubeadm.k8s.io/v1beta4',
        'kind': 'InitConfiguration',
        'bootstrapTokens': [{
            'groups': ['system:bootstrappers:kubeadm:default-node-token'],
            'token': token,
            'ttl': '720h0m0s',
            'usages': ['signing', 'authentication'],
        }],
        'localAPIEndpoint': {'advertiseAddress': cfg.advertise_address or '0.0.0.0', 'bindPort': 6443},
        'nodeRegistration': {'criSocket': cfg.cri_socket, 'imagePullPolicy': 'IfNotPresent'},
    }
    cluster = {
        'apiVersion': 'kubeadm.k8s.io/v1beta4',
        'kind': 'ClusterConfiguration',
        'kubernetesVersion': f'v{cfg.kubernetes_version.lstrip("v")}',
        'certificatesDir': str(paths.sandbox_dir / 'etc' / 'kubernetes' / 'pki'),
        'networking': {'podSubnet': cfg.pod_subnet, 'serviceSubnet': cfg.service_subnet},
        'etcd': {'local': {'dataDir': str(paths.sandbox_dir / 'var' / 'lib' / 'etcd')}},
    }
    return yaml.safe_dump_all([init, cluster], sort_keys=False)


def _settings_digest(text: str) -> str:
    """Digest of a rendered config, ignoring the random bootstrap token."""
    docs = list(yaml.safe_load_all(text))
    for doc in docs:
        if isinstance(doc, dict):
            doc.pop('bootstrapTokens', None)
    return hashlib.sha256(yaml.safe_dump_all(docs, sort_keys=True).encode()).hexdigest()


def write_kubeadm_config(runtime: Runtime) -> StepBuilder:
    """Render kubeadm-init.yaml; rollback removes it only if this step wrote it."""
    paths = runtime.config.paths
    path = kubeadm_config_path(paths)

    def execute(ctx, stp):
        rendered = render_kubeadm_config(runtime.config.kubeadm, paths, bootstrap_token())
        if path.exists() and _settings_digest(path.read_text()) == _settings_digest(rendered):
            return stp.skipped(f"{path} is up to date", metadata={'path': str(path)})
        backup = paths.backup_dir / 'kubeadm-init.yaml.bak'
        if path.exists():
            backup.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, backup)
            stp.state.set('backup', str(backup))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(rendered)
        stp.state.set(KEY_WRITTEN, True)
        return stp.success(metadata={'path': str(path), KEY_WRITTEN: True})

    def rollback(ctx, stp):
        if not stp.state.bool(KEY_WRITTEN):
            return stp.skipped(f"{path.name} was not written by this step")
        backup = stp.state.string('backup')
        if backup and Path(backup).exists():
            shutil.move(backup, path)
        else:
            path.unlink(missing_ok=True)
        stp.state.delete(KEY_WRITTEN)
        return stp.success(f"restored {path}")

    return (
        StepBuilder('download-kubeadm-config')
        .with_execute(execute)
        .with_rollback(rollback)
        .with_notifications(runtime.notifier, "Writing kubeadm configuration",
                            "Failed to write kubeadm configuration", "kubeadm configuration written")
    )


def reset_kubeadm(runtime: Runtime, step_id: str = 'torch-prior-kubeadm-config') -> StepBuilder:
    """Wipe any earlier kubeadm state. Not idempotent; always runs, no rollback."""
    paths = runtime.config.paths

    def execute(ctx, stp):
        kubeadm = str(paths.sandbox_bin_dir / 'kubeadm')
        rc, _, err = run_command([kubeadm, 'reset', '--force', '--cri-socket', runtime.config.kubeadm.cri_socket],
                                 ctx=ctx, timeout=300)
        if rc != 0:
            logger.warning(f"kubeadm reset exited {rc}: {err.strip()}")
        cleared = []
        for sub in ('etc/kubernetes', 'etc/cni/net.d', 'var/lib/etcd'):
            d = paths.sandbox_dir / sub
            if not d.is_dir():
                continue
            for child in d.iterdir():
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child, ignore_errors=True)
                else:
                    child.unlink(missing_ok=True)
            cleared.append(str(d))
        return stp.success(metadata={'resetExitCode': rc, 'cleared': ','.join(cleared)})

    return (
        StepBuilder(step_id)
        .with_execute(execute)
        .with_notifications(runtime.notifier, "Removing prior kubeadm configuration",
                            "Failed to remove prior kubeadm configuration", "Prior kubeadm configuration removed")
    )


def init_cluster(runtime: Runtime) -> StepBuilder:
    paths = runtime.config.paths
    kubeadm = str(paths.sandbox_bin_dir / 'kubeadm')
    config_path = str(kubeadm_config_path(paths))

    def execute(ctx, stp):
        if runtime.kube.is_reachable(ctx):
            return stp.skipped("cluster is already initialized")
        logger.info("Pulling kubeadm images, this may take a while...")
        check_command([kubeadm, 'config', 'images', 'pull', '--config', config_path], ctx=ctx,
                      kind=ErrorKind.INSTALLATION, timeout=1800)
        # set before init so a partially initialised control plane is reset on rollback
        stp.state.set(KEY_INITIALIZED, True)
        check_command([kubeadm, 'init', '--upload-certs', '--config', config_path], ctx=ctx,
                      kind=ErrorKind.CONFIGURATION, timeout=1800)
        return stp.success(metadata={'config': config_path})

    def rollback(ctx, stp):
        if not stp.state.bool(KEY_INITIALIZED):
            return stp.skipped("cluster was not initialized by this step")
        check_command([kubeadm, 'reset', '--force', '--cri-socket', runtime.config.kubeadm.cri_socket],
                      ctx=ctx, kind=ErrorKind.ROLLBACK, timeout=300)
        stp.state.delete(KEY_INITIALIZED)
        return stp.success("kubeadm reset")

    return (
        StepBuilder('init-cluster')
        .with_execute(execute)
        .with_rollback(rollback)
        .with_notifications(runtime.notifier, "Initializing Kubernetes cluster",
                            "Failed to initialize Kubernetes cluster", "Kubernetes cluster initialized")
    )
