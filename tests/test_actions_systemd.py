"""Tests for the systemd service action."""

from actions import setup_systemd_service
from errors import ErrorKind
from reporting import Status


class TestSetupSystemdService:
    """(enabled, running) axes."""

    def test_fresh_service_enabled_and_started(self, runtime, ctx):
        step = setup_systemd_service(runtime, 'kubelet').build()
        report = step.execute(ctx)
        assert report.status is Status.SUCCESS
        assert report.metadata['enabledByThisStep'] == 'true'
        assert report.metadata['startedByThisStep'] == 'true'
        assert runtime.systemd.is_running('kubelet.service')

    def test_running_service_skipped(self, runtime, ctx):
        runtime.systemd.enabled.add('crio.service')
        runtime.systemd.running.add('crio.service')
        report = setup_systemd_service(runtime, 'crio').build().execute(ctx)
        assert report.status is Status.SKIPPED
        assert runtime.systemd.calls == []

    def test_rollback_stops_then_disables(self, runtime, ctx):
        step = setup_systemd_service(runtime, 'kubelet').build()
        step.execute(ctx)
        runtime.systemd.calls.clear()
        step.rollback(ctx)
        assert runtime.systemd.calls == [('stop', 'kubelet.service'), ('disable', 'kubelet.service')]

    def test_enabled_but_stopped_only_started(self, runtime, ctx):
        runtime.systemd.enabled.add('kubelet.service')
        step = setup_systemd_service(runtime, 'kubelet').build()
        step.execute(ctx)
        step.rollback(ctx)
        assert runtime.systemd.is_enabled('kubelet.service')
        assert not runtime.systemd.is_running('kubelet.service')

    def test_service_never_active_times_out(self, runtime, ctx):
        runtime.systemd.start_works = False
        report = setup_systemd_service(runtime, 'kubelet').build().execute(ctx)
        assert report.failed
        assert report.error.kind is ErrorKind.TIMEOUT
