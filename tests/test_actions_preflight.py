"""Tests for the read-only preflight checks."""

from unittest.mock import MagicMock

import pytest

from actions import validate_cpu, validate_memory, validate_os, validate_privileges, validate_storage
from errors import ErrorKind
from reporting import Status
from scenarios.preflight import node_preflight
from workflow import ExecutionMode


@pytest.fixture
def host(runtime):
    """A host that meets the default requirements."""
    runtime.host = MagicMock()
    runtime.host.is_root.return_value = True
    runtime.host.os_id.return_value = 'ubuntu'
    runtime.host.os_version.return_value = '24.04'
    runtime.host.cpu_cores.return_value = 4
    runtime.host.memory_gb.return_value = 8.0
    runtime.host.storage_gb.return_value = 50.0
    return runtime.host


class TestPreflightChecks:
    def test_healthy_host_passes(self, runtime, host, ctx):
        for build in (validate_privileges, validate_os, validate_cpu, validate_memory, validate_storage):
            assert build(runtime).build().execute(ctx).status is Status.SUCCESS

    def test_not_root(self, runtime, host, ctx):
        host.is_root.return_value = False
        report = validate_privileges(runtime).build().execute(ctx)
        assert report.failed
        assert report.error.kind is ErrorKind.ILLEGAL_STATE

    def test_unsupported_os(self, runtime, host, ctx):
        host.os_id.return_value = 'fedora'
        report = validate_os(runtime).build().execute(ctx)
        assert report.error.kind is ErrorKind.ILLEGAL_STATE
        assert 'fedora' in report.error.message

    def test_os_metadata(self, runtime, host, ctx):
        report = validate_os(runtime).build().execute(ctx)
        assert report.metadata == {'os': 'ubuntu', 'version': '24.04'}

    def test_too_few_cores(self, runtime, host, ctx):
        host.cpu_cores.return_value = 2
        report = validate_cpu(runtime).build().execute(ctx)
        assert report.error.kind is ErrorKind.ILLEGAL_STATE

    def test_requirements_come_from_config(self, runtime, host, ctx):
        runtime.config.requirements.min_memory_gb = 16
        assert validate_memory(runtime).build().execute(ctx).failed

    def test_storage_checked_under_sandbox(self, runtime, host, ctx):
        host.storage_gb.return_value = 0.5
        report = validate_storage(runtime).build().execute(ctx)
        assert report.failed
        host.storage_gb.assert_called_once_with(runtime.config.paths.sandbox_dir)

    def test_checks_have_nothing_to_roll_back(self, runtime, host, ctx):
        step = validate_cpu(runtime).build()
        step.execute(ctx)
        assert step.rollback(ctx).status is Status.SKIPPED


class TestNodePreflight:
    def test_structure(self, runtime):
        wf = node_preflight(runtime).build()
        assert wf.id == 'node-preflight'
        assert wf.mode is ExecutionMode.STOP_ON_ERROR
        assert [s.id for s in wf.steps] == [
            'validate-privileges', 'validate-os', 'validate-cpu', 'validate-memory', 'validate-storage']

    def test_stops_at_first_failure(self, runtime, host, ctx):
        host.os_id.return_value = 'arch'
        report = node_preflight(runtime).build().execute(ctx)
        assert report.failed
        host.cpu_cores.assert_not_called()
