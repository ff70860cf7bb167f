"""Kubernetes resource and readiness steps."""

import logging
from typing import Callable, Optional, Union

from readiness import wait_for, wait_for_endpoint
from runtime import Runtime
from system import is_node_ready, is_pod_ready
from workflow import StepBuilder

logger = logging.getLogger(__name__)

KEY_ALREADY_EXISTS = 'alreadyExists'
KEY_CREATED = 'createdByThisStep'

Manifest = Union[str, Callable[[], str]]


def apply_manifest_step(
    runtime: Runtime,
    step_id: str,
    manifest: Manifest,
    kind: str,
    name: str,
    namespace: str = ''
) -> StepBuilder:
    """kubectl apply unless the named resource exists; rollback deletes what was created."""
    kube = runtime.kube

    def render() -> str:
        return manifest() if callable(manifest) else manifest

    def execute(ctx, stp):
        meta = {'kind': kind, 'name': name, 'namespace': namespace}
        if kube.resource_exists(kind, name, namespace, ctx=ctx):
            stp.state.set(KEY_ALREADY_EXISTS, True)
            return stp.skipped(f"{kind}/{name} already exists", metadata={**meta, KEY_ALREADY_EXISTS: True})
        stp.state.set(KEY_ALREADY_EXISTS, False)
        kube.apply_manifest(render(), ctx=ctx)
        stp.state.set(KEY_CREATED, True)
        return stp.success(metadata={**meta, KEY_CREATED: True})

    def rollback(ctx, stp):
        if not stp.state.bool(KEY_CREATED):
            return stp.skipped(f"{kind}/{name} was not created by this step")
        kube.delete_manifest(render(), ctx=ctx)
        stp.state.delete(KEY_CREATED)
        return stp.success(f"deleted {kind}/{name}")

    return (
        StepBuilder(step_id)
        .with_execute(execute)
        .with_rollback(rollback)
        .with_notifications(runtime.notifier, f"Applying {kind}/{name}",
                            f"Failed to apply {kind}/{name}", f"{kind}/{name} applied")
    )


def wait_for_pods_ready(runtime: Runtime, step_id: str, namespace: str, name_prefix: str,
                        timeout: Optional[float] = None) -> StepBuilder:
    timeouts = runtime.config.timeouts

    def execute(ctx, stp):
        runtime.kube.wait_for_resources(ctx, 'pods', namespace, is_pod_ready, timeout or timeouts.pods,
                                        name_prefix=name_prefix, interval=timeouts.poll_interval)
        return stp.success(metadata={'namespace': namespace, 'prefix': name_prefix})

    return (
        StepBuilder(step_id)
        .with_execute(execute)
        .with_notifications(runtime.notifier, f"Waiting for {name_prefix} pods in {namespace}",
                            f"{name_prefix} pods did not become ready", f"{name_prefix} pods are ready")
    )


def wait_for_crd(runtime: Runtime, step_id: str, crd: str, timeout: Optional[float] = None) -> StepBuilder:
    timeouts = runtime.config.timeouts

    def execute(ctx, stp):
        wait_for(ctx, lambda: runtime.kube.crd_exists(crd, ctx=ctx), timeout or timeouts.crd,
                 timeouts.poll_interval, description=f"CRD {crd}")
        return stp.success(metadata={'crd': crd})

    return (
        StepBuilder(step_id)
        .with_execute(execute)
        .with_notifications(runtime.notifier, f"Waiting for CRD {crd}",
                            f"CRD {crd} not available", f"CRD {crd} is available")
    )


def check_endpoints(runtime: Runtime, step_id: str, urls: Callable[[], list[str]]) -> StepBuilder:
    """Fail unless every URL answers within the endpoint budget; no URLs means skipped."""
    timeouts = runtime.config.timeouts

    def execute(ctx, stp):
        targets = urls()
        if not targets:
            return stp.skipped("no endpoints configured")
        for url in targets:
            wait_for_endpoint(ctx, url, timeout=timeouts.endpoint, interval=timeouts.poll_interval)
        return stp.success(metadata={'endpoints': ','.join(targets)})

    return (
        StepBuilder(step_id)
        .with_execute(execute)
        .with_notifications(runtime.notifier, "Checking endpoint reachability",
                            "Endpoint check failed", "All endpoints reachable")
    )


def check_cluster_health(runtime: Runtime, step_id: str = 'check-cluster-health') -> StepBuilder:
    """Every node Ready and every kube-system pod ready."""
    kube = runtime.kube
    timeouts = runtime.config.timeouts

    def execute(ctx, stp):
        kube.wait_for_resources(ctx, 'nodes', '', is_node_ready, timeouts.pods, interval=timeouts.poll_interval)
        kube.wait_for_resources(ctx, 'pods', 'kube-system', is_pod_ready, timeouts.pods,
                                interval=timeouts.poll_interval)
        nodes = kube.list('nodes', ctx=ctx)
        return stp.success(metadata={'nodes': str(len(nodes))})

    return (
        StepBuilder(step_id)
        .with_execute(execute)
        .with_notifications(runtime.notifier, "Checking cluster health",
                            "Cluster is not healthy", "Cluster is healthy")
    )
