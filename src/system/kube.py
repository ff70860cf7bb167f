"""kubectl wrapper."""

import json
import logging
from pathlib import Path
from typing import Callable, Optional

from common import ExecutionContext, check_command, run_command
from errors import ErrorKind, StepError
from readiness import DEFAULT_POLL_INTERVAL, wait_for

logger = logging.getLogger(__name__)


def is_pod_ready(pod: dict) -> bool:
    """Pod phase Running with condition Ready=True."""
    status = pod.get('status', {})
    if status.get('phase') != 'Running':
        return False
    for cond in status.get('conditions') or []:
        if cond.get('type') == 'Ready':
            return cond.get('status') == 'True'
    return False


def is_node_ready(node: dict) -> bool:
    """Node condition Ready=True."""
    for cond in node.get('status', {}).get('conditions') or []:
        if cond.get('type') == 'Ready':
            return cond.get('status') == 'True'
    return False


class KubeClient:
    """Thin kubectl client; every call goes through run_command."""

    def __init__(self, kubeconfig: Optional[Path] = None, kubectl: str = 'kubectl'):
        self.kubeconfig = kubeconfig
        self.kubectl = kubectl

    def _cmd(self, *args: str) -> list[str]:
        cmd = [self.kubectl]
        if self.kubeconfig:
            cmd += ['--kubeconfig', str(self.kubeconfig)]
        return cmd + list(args)

    def is_reachable(self, ctx: Optional[ExecutionContext] = None) -> bool:
        rc, _, _ = run_command(self._cmd('get', 'nodes'), ctx=ctx, timeout=30)
        return rc == 0

    def apply_manifest(self, manifest: str, ctx: Optional[ExecutionContext] = None) -> None:
        check_command(self._cmd('apply', '-f', '-'), ctx=ctx, kind=ErrorKind.CONFIGURATION, input_text=manifest)

    def delete_manifest(self, manifest: str, ctx: Optional[ExecutionContext] = None) -> None:
        check_command(self._cmd('delete', '--ignore-not-found', '-f', '-'), ctx=ctx,
                      kind=ErrorKind.ROLLBACK, input_text=manifest)

    def resource_exists(self, kind: str, name: str, namespace: str = '',
                        ctx: Optional[ExecutionContext] = None) -> bool:
        args = ['get', kind, name]
        if namespace:
            args += ['-n', namespace]
        rc, _, err = run_command(self._cmd(*args), ctx=ctx, timeout=30)
        if rc == 0:
            return True
        if 'NotFound' in err or 'not found' in err:
            return False
        raise StepError(f"kubectl get {kind}/{name} failed: {err.strip()}", kind=ErrorKind.EXECUTION)

    def crd_exists(self, name: str, ctx: Optional[ExecutionContext] = None) -> bool:
        return self.resource_exists('crd', name, ctx=ctx)

    def list(self, kind: str, namespace: str = '', ctx: Optional[ExecutionContext] = None) -> list[dict]:
        args = ['get', kind, '-o', 'json']
        args += ['-n', namespace] if namespace else ['--all-namespaces']
        out = check_command(self._cmd(*args), ctx=ctx, timeout=60)
        try:
            return json.loads(out).get('items', [])
        except json.JSONDecodeError as e:
            raise StepError(f"invalid kubectl output for {kind}: {e}") from e

    def wait_for_resources(
        self,
        ctx: ExecutionContext,
        kind: str,
        namespace: str,
        predicate: Callable[[dict], bool],
        timeout: float,
        name_prefix: str = '',
        interval: float = DEFAULT_POLL_INTERVAL
    ) -> None:
        """Wait until at least one matching resource exists and all satisfy predicate."""
        def ready() -> bool:
            items = [i for i in self.list(kind, namespace, ctx=ctx)
                     if i.get('metadata', {}).get('name', '').startswith(name_prefix)]
            return bool(items) and all(predicate(i) for i in items)

        target = f"{kind} {name_prefix or '*'} in {namespace or 'all namespaces'}"
        wait_for(ctx, ready, timeout, interval, description=target)
