"""Provisioning steps, each built on the workflow engine."""

from actions.directories import setup_directories
from actions.helm import install_helm_release, uninstall_helm_release
from actions.kernel import KernelModuleResource, install_kernel_module
from actions.kube import apply_manifest_step, check_cluster_health, check_endpoints, wait_for_crd, wait_for_pods_ready
from actions.kubeadm import init_cluster, render_kubeadm_config, reset_kubeadm, write_kubeadm_config
from actions.mount import BindMountResource, remove_bind_mount, setup_bind_mount, setup_bind_mounts, teardown_bind_mounts
from actions.preflight import validate_cpu, validate_memory, validate_os, validate_privileges, validate_storage
from actions.software import configure_software, install_software, setup_software
from actions.swap import SwapResource, disable_swap
from actions.sysctl import SysctlResource, configure_sysctl
from actions.systemd import ServiceResource, setup_systemd_service

__all__ = [
    'setup_directories',
    'install_helm_release',
    'uninstall_helm_release',
    'KernelModuleResource',
    'install_kernel_module',
    'apply_manifest_step',
    'check_cluster_health',
    'check_endpoints',
    'wait_for_crd',
    'wait_for_pods_ready',
    'init_cluster',
    'render_kubeadm_config',
    'reset_kubeadm',
    'write_kubeadm_config',
    'validate_cpu',
    'validate_memory',
    'validate_os',
    'validate_privileges',
    'validate_storage',
    'BindMountResource',
    'remove_bind_mount',
    'setup_bind_mount',
    'setup_bind_mounts',
    'teardown_bind_mounts',
    'configure_software',
    'install_software',
    'setup_software',
    'SwapResource',
    'disable_swap',
    'SysctlResource',
    'configure_sysctl',
    'ServiceResource',
    'setup_systemd_service',
]
