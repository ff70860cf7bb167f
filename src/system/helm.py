"""helm CLI wrapper."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

from common import ExecutionContext, check_command, run_command
from config import HelmRelease
from errors import ErrorKind, StepError

logger = logging.getLogger(__name__)

CHART_VERSION_RE = re.compile(r'^.+?-(v?\d.*)$')


@dataclass
class ReleaseInfo:
    name: str
    namespace: str
    revision: int
    chart: str
    status: str

    def chart_version(self, chart_name: str = '') -> str:
        """Version part of helm's "<name>-<version>" chart column.

        With the chart name known its prefix is stripped, so pre-release
        versions such as 1.2.0-rc.1 survive intact. Otherwise the version
        starts at the first dash followed by a digit.
        """
        name = chart_name.rsplit('/', 1)[-1]
        if name and self.chart.startswith(f'{name}-'):
            return self.chart[len(name) + 1:]
        match = CHART_VERSION_RE.match(self.chart)
        return match.group(1) if match else ''


class HelmClient:
    def __init__(self, helm: str = 'helm'):
        self.helm = helm

    def release_info(self, release: str, namespace: str,
                     ctx: Optional[ExecutionContext] = None) -> Optional[ReleaseInfo]:
        rc, out, err = run_command(
            [self.helm, 'list', '-n', namespace, '--filter', f'^{release}$', '-o', 'json'], ctx=ctx, timeout=60)
        if rc != 0:
            raise StepError(f"helm list failed: {err.strip()}", kind=ErrorKind.EXECUTION)
        try:
            items = json.loads(out or '[]')
        except json.JSONDecodeError as e:
            raise StepError(f"invalid helm output: {e}") from e
        for item in items:
            if item.get('name') == release:
                return ReleaseInfo(
                    name=release,
                    namespace=item.get('namespace', namespace),
                    revision=int(item.get('revision', 0)),
                    chart=item.get('chart', ''),
                    status=item.get('status', ''),
                )
        return None

    def is_installed(self, release: str, namespace: str, ctx: Optional[ExecutionContext] = None) -> bool:
        return self.release_info(release, namespace, ctx=ctx) is not None

    def add_repo(self, name: str, url: str, ctx: Optional[ExecutionContext] = None) -> None:
        check_command([self.helm, 'repo', 'add', '--force-update', name, url], ctx=ctx, kind=ErrorKind.DOWNLOAD)
        check_command([self.helm, 'repo', 'update', name], ctx=ctx, kind=ErrorKind.DOWNLOAD)

    def _chart_args(self, rel: HelmRelease) -> list[str]:
        args = [rel.release, rel.chart, '--namespace', rel.namespace, '--version', rel.version,
                '--wait', '--atomic', '--timeout', f'{rel.timeout}s']
        for value in rel.values:
            args += ['--set', value]
        return args

    def install_chart(self, rel: HelmRelease, ctx: Optional[ExecutionContext] = None) -> None:
        logger.info(f"Installing chart {rel.chart} {rel.version} as {rel.release}")
        check_command([self.helm, 'install', '--create-namespace'] + self._chart_args(rel), ctx=ctx,
                      kind=ErrorKind.INSTALLATION, timeout=rel.timeout + 60)

    def upgrade_chart(self, rel: HelmRelease, ctx: Optional[ExecutionContext] = None) -> None:
        logger.info(f"Upgrading {rel.release} to {rel.chart} {rel.version}")
        check_command([self.helm, 'upgrade'] + self._chart_args(rel), ctx=ctx,
                      kind=ErrorKind.INSTALLATION, timeout=rel.timeout + 60)

    def rollback_release(self, release: str, namespace: str, revision: int,
                         ctx: Optional[ExecutionContext] = None) -> None:
        logger.info(f"Rolling back {release} to revision {revision}")
        check_command([self.helm, 'rollback', release, str(revision), '-n', namespace, '--wait'],
                      ctx=ctx, kind=ErrorKind.ROLLBACK)

    def uninstall_chart(self, release: str, namespace: str, ctx: Optional[ExecutionContext] = None) -> None:
        logger.info(f"Uninstalling {release} from {namespace}")
        check_command([self.helm, 'uninstall', release, '-n', namespace, '--wait'], ctx=ctx, kind=ErrorKind.ROLLBACK)
