"""Helm release step: (installed, upgraded)."""

import logging
from typing import Optional

from config import HelmRelease
from runtime import Runtime
from workflow import StepBuilder

logger = logging.getLogger(__name__)

KEY_ALREADY_INSTALLED = 'alreadyInstalled'
KEY_INSTALL_ATTEMPTED = 'installAttempted'
KEY_INSTALLED = 'installedByThisStep'
KEY_UPGRADED = 'upgradedByThisStep'
KEY_PREVIOUS_REVISION = 'previousRevision'


def _same_version(a: str, b: str) -> bool:
    return a.lstrip('v') == b.lstrip('v')


def install_helm_release(runtime: Runtime, rel: HelmRelease, step_id: Optional[str] = None) -> StepBuilder:
    """Install rel, or upgrade it when another chart version is deployed.

    A fresh install is rolled back by uninstalling, including a release left
    behind by an install that failed part way. An upgrade of a release that
    existed before is rolled back to the recorded revision and never
    uninstalled.
    """
    helm = runtime.helm
    step_id = step_id or f'install-{rel.release}'

    def execute(ctx, stp):
        info = helm.release_info(rel.release, rel.namespace, ctx=ctx)
        meta = {'release': rel.release, 'namespace': rel.namespace, 'chart': rel.chart, 'version': rel.version}
        if (info is not None and info.status == 'deployed'
                and _same_version(info.chart_version(rel.chart), rel.version)):
            stp.state.set(KEY_ALREADY_INSTALLED, True)
            return stp.skipped(f"{rel.release} {rel.version} is already installed",
                               metadata={**meta, KEY_ALREADY_INSTALLED: True})
        stp.state.set(KEY_ALREADY_INSTALLED, False)

        if rel.repo_name and rel.repo_url:
            helm.add_repo(rel.repo_name, rel.repo_url, ctx=ctx)

        if info is None:
            stp.state.set(KEY_INSTALL_ATTEMPTED, True)
            helm.install_chart(rel, ctx=ctx)
            stp.state.set(KEY_INSTALLED, True)
            meta[KEY_INSTALLED] = True
        else:
            stp.state.set(KEY_PREVIOUS_REVISION, info.revision)
            helm.upgrade_chart(rel, ctx=ctx)
            stp.state.set(KEY_UPGRADED, True)
            meta[KEY_UPGRADED] = True
            meta[KEY_PREVIOUS_REVISION] = info.revision
        return stp.success(metadata=meta)

    def rollback(ctx, stp):
        if stp.state.bool(KEY_INSTALLED) or stp.state.bool(KEY_INSTALL_ATTEMPTED):
            present = helm.is_installed(rel.release, rel.namespace, ctx=ctx)
            if present:
                helm.uninstall_chart(rel.release, rel.namespace, ctx=ctx)
            stp.state.delete(KEY_INSTALLED)
            stp.state.delete(KEY_INSTALL_ATTEMPTED)
            if not present:
                return stp.skipped(f"{rel.release} is already uninstalled")
            return stp.success(f"uninstalled {rel.release}")

        if stp.state.has(KEY_PREVIOUS_REVISION):
            revision = int(stp.state.get(KEY_PREVIOUS_REVISION))
            info = helm.release_info(rel.release, rel.namespace, ctx=ctx)
            if info is None or info.revision <= revision:
                stp.state.delete(KEY_UPGRADED)
                stp.state.delete(KEY_PREVIOUS_REVISION)
                return stp.skipped(f"{rel.release} is no longer ahead of revision {revision}")
            helm.rollback_release(rel.release, rel.namespace, revision, ctx=ctx)
            stp.state.delete(KEY_UPGRADED)
            stp.state.delete(KEY_PREVIOUS_REVISION)
            return stp.success(f"rolled {rel.release} back to revision {revision}")
        return stp.skipped(f"{rel.release} was not installed by this step, skipping rollback")

    return (
        StepBuilder(step_id)
        .with_execute(execute)
        .with_rollback(rollback)
        .with_notifications(runtime.notifier, f"Installing {rel.release}",
                            f"Failed to install {rel.release}", f"{rel.release} installed")
    )


def uninstall_helm_release(runtime: Runtime, release: str, namespace: str,
                           step_id: Optional[str] = None) -> StepBuilder:
    def execute(ctx, stp):
        if not runtime.helm.is_installed(release, namespace, ctx=ctx):
            return stp.skipped(f"{release} is not installed")
        runtime.helm.uninstall_chart(release, namespace, ctx=ctx)
        return stp.success(metadata={'release': release, 'namespace': namespace})

    return (
        StepBuilder(step_id or f'uninstall-{release}')
        .with_execute(execute)
        .with_notifications(runtime.notifier, f"Uninstalling {release}",
                            f"Failed to uninstall {release}", f"{release} uninstalled")
    )
