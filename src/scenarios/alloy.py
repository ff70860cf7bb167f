"""Grafana Alloy observability stack.

setup:    precheck, external-secrets, prometheus-operator CRDs, alloy
teardown: alloy, node-exporter, prometheus-operator CRDs
"""

import logging
import re

import yaml

from actions import (
    apply_manifest_step,
    install_helm_release,
    uninstall_helm_release,
    wait_for_crd,
    wait_for_pods_ready,
)
from config import AlloyConfig, HelmRelease, Remote
from errors import IllegalStateError
from readiness import wait_for_endpoint
from runtime import Runtime
from workflow import ExecutionMode, StepBuilder, WorkflowBuilder

logger = logging.getLogger(__name__)

CONFIG_MAP_NAME = 'grafana-alloy-cm'
SECRETS_NAME = 'grafana-alloy-secrets'
EXTERNAL_SECRET_NAME = 'grafana-alloy-external-secret'
VAULT_PATH_PREFIX = 'grafana/alloy/'
SERVICE_MONITOR_CRD = 'servicemonitors.monitoring.coreos.com'

EXTERNAL_SECRETS = HelmRelease(
    release='external-secrets',
    chart='external-secrets/external-secrets',
    version='0.20.2',
    namespace='external-secrets',
    repo_name='external-secrets',
    repo_url='https://charts.external-secrets.io',
    values=['installCRDs=true', 'webhook.port=9443'],
)

PROMETHEUS_CRDS = HelmRelease(
    release='prometheus-operator-crds',
    chart='oci://ghcr.io/prometheus-community/charts/prometheus-operator-crds',
    version='24.0.1',
    namespace='grafana-alloy',
)

NODE_EXPORTER = HelmRelease(
    release='node-exporter',
    chart='oci://registry-1.docker.io/bitnamicharts/node-exporter',
    version='4.5.19',
    namespace='node-exporter',
    values=['image.repository=bitnamilegacy/node-exporter'],
)


def alloy_release(cfg: AlloyConfig) -> HelmRelease:
    return HelmRelease(
        release='grafana-alloy',
        chart='grafana/alloy',
        version='1.4.0',
        namespace=cfg.namespace,
        repo_name='grafana',
        repo_url='https://grafana.github.io/helm-charts',
        values=[
            'crds.create=true',
            'alloy.configMap.create=false',
            f'alloy.configMap.name={CONFIG_MAP_NAME}',
            'alloy.configMap.key=config.alloy',
            'alloy.clustering.enabled=false',
            'alloy.enableReporting=false',
            f'alloy.envFrom[0].secretRef.name={SECRETS_NAME}',
            'controller.type=daemonset',
            'controller.hostNetwork=true',
            'controller.dnsPolicy=ClusterFirstWithHostNet',
        ],
    )


def _env_name(kind: str, remote: Remote) -> str:
    return f"{kind}_PASSWORD_{re.sub(r'[^A-Za-z0-9]', '_', remote.name).upper()}"


def render_alloy_config(cfg: AlloyConfig) -> str:
    """Alloy pipeline: node-exporter scrape forwarded to every configured remote."""
    prom_receivers = ', '.join(f'prometheus.remote_write.{r.name}.receiver' for r in cfg.prometheus_remotes)
    blocks = [
        'prometheus.scrape "node_exporter" {\n'
        '  targets = discovery.kubernetes.node_exporter.targets\n'
        f'  forward_to = [{prom_receivers}]\n'
        '}\n',
        'discovery.kubernetes "node_exporter" {\n'
        '  role = "pod"\n'
        f'  namespaces {{ names = ["{NODE_EXPORTER.namespace}"] }}\n'
        '}\n',
    ]
    for r in cfg.prometheus_remotes:
        blocks.append(
            f'prometheus.remote_write "{r.name}" {{\n'
            '  endpoint {\n'
            f'    url = "{r.url}"\n'
            f'    basic_auth {{\n      username = "{r.username}"\n'
            f'      password = sys.env("{_env_name("PROMETHEUS", r)}")\n    }}\n'
            '  }\n'
            f'  external_labels = {{ cluster = "{cfg.cluster_name}" }}\n'
            '}\n')
    for r in cfg.loki_remotes:
        blocks.append(
            f'loki.write "{r.name}" {{\n'
            '  endpoint {\n'
            f'    url = "{r.url}"\n'
            f'    basic_auth {{\n      username = "{r.username}"\n'
            f'      password = sys.env("{_env_name("LOKI", r)}")\n    }}\n'
            '  }\n'
            f'  external_labels = {{ cluster = "{cfg.cluster_name}" }}\n'
            '}\n')
    return '\n'.join(blocks)


def namespace_manifest(cfg: AlloyConfig) -> str:
    return yaml.safe_dump({'apiVersion': 'v1', 'kind': 'Namespace', 'metadata': {'name': cfg.namespace}})


def config_map_manifest(cfg: AlloyConfig) -> str:
    return yaml.safe_dump({
        'apiVersion': 'v1',
        'kind': 'ConfigMap',
        'metadata': {'name': CONFIG_MAP_NAME, 'namespace': cfg.namespace},
        'data': {'config.alloy': render_alloy_config(cfg)},
    }, sort_keys=False)


def secrets_manifest(cfg: AlloyConfig) -> str:
    """ExternalSecret pulling remote passwords from the secret store, or an empty Secret."""
    if not cfg.has_remotes:
        return yaml.safe_dump({
            'apiVersion': 'v1',
            'kind': 'Secret',
            'metadata': {'name': SECRETS_NAME, 'namespace': cfg.namespace},
            'type': 'Opaque',
        }, sort_keys=False)

    data = []
    for kind, remotes in (('PROMETHEUS', cfg.prometheus_remotes), ('LOKI', cfg.loki_remotes)):
        for r in remotes:
            data.append({
                'secretKey': _env_name(kind, r),
                'remoteRef': {'key': f'{VAULT_PATH_PREFIX}{cfg.cluster_name}/{kind.lower()}/{r.name}',
                              'property': 'password'},
            })
    return yaml.safe_dump({
        'apiVersion': 'external-secrets.io/v1',
        'kind': 'ExternalSecret',
        'metadata': {'name': EXTERNAL_SECRET_NAME, 'namespace': cfg.namespace},
        'spec': {
            'refreshInterval': '1h',
            'secretStoreRef': {'name': cfg.cluster_secret_store, 'kind': 'ClusterSecretStore'},
            'target': {'name': SECRETS_NAME, 'creationPolicy': 'Owner'},
            'data': data,
        },
    }, sort_keys=False)


def precheck_alloy(runtime: Runtime) -> StepBuilder:
    cfg = runtime.config.alloy
    timeouts = runtime.config.timeouts

    def execute(ctx, stp):
        if not cfg.has_remotes:
            return stp.skipped("no remotes configured")
        if not runtime.kube.resource_exists('clustersecretstore', cfg.cluster_secret_store, ctx=ctx):
            raise IllegalStateError(f"ClusterSecretStore {cfg.cluster_secret_store} not found")
        urls = [r.url for r in cfg.prometheus_remotes + cfg.loki_remotes]
        for url in urls:
            wait_for_endpoint(ctx, url, timeout=timeouts.endpoint, interval=timeouts.poll_interval)
        return stp.success(metadata={'secretStore': cfg.cluster_secret_store, 'endpoints': ','.join(urls)})

    return (
        StepBuilder('precheck-alloy')
        .with_execute(execute)
        .with_notifications(runtime.notifier, "Checking Alloy prerequisites",
                            "Alloy prerequisites not met", "Alloy prerequisites met")
    )


def setup_external_secrets(runtime: Runtime) -> WorkflowBuilder:
    return (
        WorkflowBuilder('setup-external-secrets')
        .steps(install_helm_release(runtime, EXTERNAL_SECRETS),
               wait_for_pods_ready(runtime, 'is-external-secrets-ready', EXTERNAL_SECRETS.namespace,
                                   'external-secrets', timeout=300))
        .with_notifications(runtime.notifier, "Setting up external-secrets",
                            "Failed to set up external-secrets", "external-secrets set up")
    )


def setup_prometheus_crds(runtime: Runtime) -> WorkflowBuilder:
    return (
        WorkflowBuilder('setup-prometheus-crds')
        .steps(install_helm_release(runtime, PROMETHEUS_CRDS, 'install-prometheus-crds'),
               wait_for_crd(runtime, 'is-prometheus-crds-ready', SERVICE_MONITOR_CRD))
        .with_notifications(runtime.notifier, "Setting up Prometheus Operator CRDs",
                            "Failed to set up Prometheus Operator CRDs", "Prometheus Operator CRDs set up")
    )


def setup_alloy_release(runtime: Runtime) -> WorkflowBuilder:
    cfg = runtime.config.alloy
    release = alloy_release(cfg)
    secret_kind, secret_name = (('ExternalSecret', EXTERNAL_SECRET_NAME) if cfg.has_remotes
                                else ('Secret', SECRETS_NAME))
    return (
        WorkflowBuilder('setup-alloy')
        .steps(
            apply_manifest_step(runtime, 'create-alloy-namespace', lambda: namespace_manifest(cfg),
                                'namespace', cfg.namespace),
            install_helm_release(runtime, NODE_EXPORTER, 'install-node-exporter'),
            wait_for_pods_ready(runtime, 'is-node-exporter-ready', NODE_EXPORTER.namespace, 'node-exporter',
                                timeout=300),
            apply_manifest_step(runtime, 'create-alloy-secrets', lambda: secrets_manifest(cfg),
                                secret_kind, secret_name, cfg.namespace),
            apply_manifest_step(runtime, 'deploy-alloy-config', lambda: config_map_manifest(cfg),
                                'configmap', CONFIG_MAP_NAME, cfg.namespace),
            install_helm_release(runtime, release, 'install-alloy'),
            wait_for_pods_ready(runtime, 'is-alloy-ready', cfg.namespace, release.release, timeout=300),
        )
        .with_notifications(runtime.notifier, "Setting up Grafana Alloy",
                            "Failed to set up Grafana Alloy", "Grafana Alloy set up")
    )


def setup_alloy_stack(runtime: Runtime) -> WorkflowBuilder:
    return (
        WorkflowBuilder('setup-alloy-stack')
        .steps(precheck_alloy(runtime), setup_external_secrets(runtime),
               setup_prometheus_crds(runtime), setup_alloy_release(runtime))
        .with_notifications(runtime.notifier, "Setting up observability stack",
                            "Failed to set up observability stack", "Observability stack set up")
    )


def teardown_alloy_stack(runtime: Runtime) -> WorkflowBuilder:
    cfg = runtime.config.alloy
    return (
        WorkflowBuilder('teardown-alloy-stack')
        .with_mode(ExecutionMode.CONTINUE_ON_ERROR)
        .steps(uninstall_helm_release(runtime, 'grafana-alloy', cfg.namespace, 'uninstall-alloy'),
               uninstall_helm_release(runtime, NODE_EXPORTER.release, NODE_EXPORTER.namespace),
               uninstall_helm_release(runtime, PROMETHEUS_CRDS.release, PROMETHEUS_CRDS.namespace,
                                      'uninstall-prometheus-crds'))
        .with_notifications(runtime.notifier, "Tearing down observability stack",
                            "Failed to tear down observability stack", "Observability stack torn down")
    )
