"""Scenario table: the workflows the CLI can set up and tear down."""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Optional

from actions import setup_bind_mounts, teardown_bind_mounts
from runtime import Runtime
from scenarios.alloy import setup_alloy_stack, teardown_alloy_stack
from scenarios.kubernetes import setup_cluster, setup_crio, setup_helm, setup_kubeadm, setup_kubectl, setup_kubelet
from scenarios.node import setup_node
from scenarios.preflight import node_preflight
from workflow import Builder, Workflow

logger = logging.getLogger(__name__)

BuilderFn = Callable[[Runtime], Builder]


@dataclass(frozen=True)
class Scenario:
    """A named target with its setup and, optionally, teardown workflow."""
    name: str
    description: str
    setup: BuilderFn
    teardown: Optional[BuilderFn] = None


SCENARIOS = MappingProxyType({s.name: s for s in (
    Scenario('preflight', 'Check privileges, OS, CPU, memory and storage', node_preflight),
    Scenario('node', 'Sandbox dirs, swap off, kernel modules, sysctl, bind mounts', setup_node),
    Scenario('bind-mounts', 'Bind mount sandbox dirs over kubernetes paths', setup_bind_mounts,
             teardown_bind_mounts),
    Scenario('crio', 'Install and start the CRI-O runtime', setup_crio),
    Scenario('kubelet', 'Install and start the kubelet', setup_kubelet),
    Scenario('kubectl', 'Install kubectl', setup_kubectl),
    Scenario('helm', 'Install helm', setup_helm),
    Scenario('kubeadm', 'Install kubeadm and write its init configuration', setup_kubeadm),
    Scenario('cluster', 'kubeadm init, Cilium, MetalLB and a health check', setup_cluster),
    Scenario('alloy', 'External secrets, Prometheus CRDs, node-exporter and Grafana Alloy',
             setup_alloy_stack, teardown_alloy_stack),
)})


def get_scenario(name: str) -> Scenario:
    """Get scenario by name."""
    if name not in SCENARIOS:
        available = ', '.join(sorted(SCENARIOS))
        raise ValueError(f"Unknown scenario: {name}. Available: {available}")
    return SCENARIOS[name]


def list_scenarios() -> list[str]:
    """List available scenario names."""
    return sorted(SCENARIOS)


def preview(workflow: Workflow) -> None:
    """Print the step tree without running anything."""
    steps = list(workflow.walk())
    print("")
    print("═══════════════════════════════════════════════════════════════")
    print(f"  DRY-RUN: {workflow.id}")
    print(f"  Mode: {workflow.mode.value}")
    print("═══════════════════════════════════════════════════════════════")
    print("")
    for depth, step in steps:
        marker = '+' if isinstance(step, Workflow) else '-'
        print(f"  {'  ' * depth}{marker} {step.id}")
    print("")
    leaves = sum(1 for _, s in steps if not isinstance(s, Workflow))
    print(f"  Summary: {leaves} steps (no changes made)")
    print("")
