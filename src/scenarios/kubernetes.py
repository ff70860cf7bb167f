"""Kubernetes node software, control plane and cluster add-ons."""

import yaml

from actions import (
    apply_manifest_step,
    check_cluster_health,
    configure_software,
    init_cluster,
    install_helm_release,
    install_software,
    reset_kubeadm,
    setup_software,
    setup_systemd_service,
    wait_for_pods_ready,
    write_kubeadm_config,
)
from config import ClusterAddons, HelmRelease, ProvisionConfig
from errors import IllegalStateError
from runtime import Runtime
from workflow import WorkflowBuilder

METALLB_NAMESPACE = 'metallb-system'
METALLB_POOL_NAME = 'default-pool'
METALLB_ADVERTISEMENT_NAME = 'default-l2'


def cilium_release(addons: ClusterAddons) -> HelmRelease:
    return HelmRelease(
        release='cilium',
        chart='cilium/cilium',
        version=addons.cilium_version,
        namespace='kube-system',
        repo_name='cilium',
        repo_url='https://helm.cilium.io/',
        values=['operator.replicas=1', 'ipam.mode=kubernetes'],
    )


def metallb_release(addons: ClusterAddons) -> HelmRelease:
    return HelmRelease(
        release='metallb',
        chart='metallb/metallb',
        version=addons.metallb_version,
        namespace=METALLB_NAMESPACE,
        repo_name='metallb',
        repo_url='https://metallb.github.io/metallb',
        values=['speaker.frr.enabled=false'],
    )


def metallb_addresses(config: ProvisionConfig) -> list[str]:
    """Configured pool, or the advertise address as a single /32."""
    if config.addons.metallb_addresses:
        return list(config.addons.metallb_addresses)
    if config.kubeadm.advertise_address:
        return [f'{config.kubeadm.advertise_address}/32']
    raise IllegalStateError("no MetalLB addresses: set addons.metallb_addresses or kubeadm.advertise_address")


def metallb_config_manifest(config: ProvisionConfig) -> str:
    """IPAddressPool plus the L2Advertisement announcing it."""
    return yaml.safe_dump_all([
        {
            'apiVersion': 'metallb.io/v1beta1',
            'kind': 'IPAddressPool',
            'metadata': {'name': METALLB_POOL_NAME, 'namespace': METALLB_NAMESPACE},
            'spec': {'addresses': metallb_addresses(config)},
        },
        {
            'apiVersion': 'metallb.io/v1beta1',
            'kind': 'L2Advertisement',
            'metadata': {'name': METALLB_ADVERTISEMENT_NAME, 'namespace': METALLB_NAMESPACE},
            'spec': {'ipAddressPools': [METALLB_POOL_NAME]},
        },
    ], sort_keys=False)


def _service_software(runtime: Runtime, name: str) -> WorkflowBuilder:
    """Binary, unit file and running service."""
    return (
        WorkflowBuilder(f'setup-{name}')
        .steps(install_software(runtime, name), configure_software(runtime, name),
               setup_systemd_service(runtime, name))
        .with_notifications(runtime.notifier, f"Setting up {name}",
                            f"Failed to set up {name}", f"{name} set up")
    )


def setup_kubelet(runtime: Runtime) -> WorkflowBuilder:
    return _service_software(runtime, 'kubelet')


def setup_crio(runtime: Runtime) -> WorkflowBuilder:
    return _service_software(runtime, 'crio')


def setup_kubectl(runtime: Runtime) -> WorkflowBuilder:
    return setup_software(runtime, 'kubectl')


def setup_kubeadm(runtime: Runtime) -> WorkflowBuilder:
    return (
        WorkflowBuilder('setup-kubeadm')
        .steps(install_software(runtime, 'kubeadm'), reset_kubeadm(runtime),
               write_kubeadm_config(runtime), configure_software(runtime, 'kubeadm'))
        .with_notifications(runtime.notifier, "Setting up kubeadm",
                            "Failed to set up kubeadm", "kubeadm set up")
    )


def setup_helm(runtime: Runtime) -> WorkflowBuilder:
    return setup_software(runtime, 'helm')


def setup_cilium(runtime: Runtime) -> WorkflowBuilder:
    release = cilium_release(runtime.config.addons)
    return (
        WorkflowBuilder('setup-cilium')
        .steps(install_helm_release(runtime, release),
               wait_for_pods_ready(runtime, 'is-cilium-ready', release.namespace, 'cilium'))
        .with_notifications(runtime.notifier, "Setting up Cilium",
                            "Failed to set up Cilium", "Cilium set up")
    )


def setup_metallb(runtime: Runtime) -> WorkflowBuilder:
    release = metallb_release(runtime.config.addons)
    return (
        WorkflowBuilder('setup-metallb')
        .steps(install_helm_release(runtime, release),
               wait_for_pods_ready(runtime, 'is-metallb-ready', METALLB_NAMESPACE, 'metallb'),
               apply_manifest_step(runtime, 'deploy-metallb-config',
                                   lambda: metallb_config_manifest(runtime.config),
                                   'ipaddresspool', METALLB_POOL_NAME, METALLB_NAMESPACE))
        .with_notifications(runtime.notifier, "Setting up MetalLB",
                            "Failed to set up MetalLB", "MetalLB set up")
    )


def setup_cluster(runtime: Runtime) -> WorkflowBuilder:
    """kubeadm init, then helm, the Cilium CNI and MetalLB, then a health check."""
    return (
        WorkflowBuilder('setup-cluster')
        .steps(init_cluster(runtime),
               wait_for_pods_ready(runtime, 'is-control-plane-ready', 'kube-system', 'kube-apiserver'),
               setup_helm(runtime),
               setup_cilium(runtime),
               setup_metallb(runtime),
               check_cluster_health(runtime))
        .with_notifications(runtime.notifier, "Setting up Kubernetes cluster",
                            "Failed to set up Kubernetes cluster", "Kubernetes cluster is ready")
    )
