"""Tests for bind mount actions."""

from actions import setup_bind_mounts, teardown_bind_mounts
from reporting import Status
from workflow import StepBuilder, WorkflowBuilder
from errors import StepError


TARGETS = ['/etc/kubernetes', '/var/lib/kubelet', '/var/run/cilium']


def source_for(runtime, target):
    return str(runtime.config.paths.sandbox_path(target))


class TestSetupBindMounts:
    """Three targets under the sandbox."""

    def test_step_ids(self, runtime):
        wf = setup_bind_mounts(runtime).build()
        assert wf.id == 'setup-bind-mounts'
        assert [s.id for s in wf.steps] == [
            'setup-bind-mount-for-kubernetes',
            'setup-bind-mount-for-kubelet',
            'setup-bind-mount-for-cilium',
        ]

    def test_fresh_host_mounts_everything(self, runtime, ctx):
        report = setup_bind_mounts(runtime).build().execute(ctx)
        assert report.status is Status.SUCCESS
        for target in TARGETS:
            assert runtime.mounts.is_mounted(source_for(runtime, target), target)
            assert runtime.mounts.in_fstab(source_for(runtime, target), target)

        step = report.find('setup-bind-mount-for-kubelet')
        assert step.metadata['source'] == source_for(runtime, '/var/lib/kubelet')
        assert step.metadata['target'] == '/var/lib/kubelet'
        assert step.metadata['alreadyMounted'] == 'false'
        assert step.metadata['modifiedByThisStep'] == 'true'

    def test_fstab_written_before_mount(self, runtime, ctx):
        setup_bind_mounts(runtime).build().execute(ctx)
        ops = [op for op, target in runtime.mounts.calls if target == '/etc/kubernetes']
        assert ops == ['add_fstab_entry', 'mount']

    def test_existing_mount_left_alone(self, runtime, ctx):
        src = source_for(runtime, '/etc/kubernetes')
        runtime.mounts.fstab.add((src, '/etc/kubernetes'))
        runtime.mounts.mounted.add((src, '/etc/kubernetes'))

        wf = setup_bind_mounts(runtime).build()
        report = wf.execute(ctx)
        assert report.find('setup-bind-mount-for-kubernetes').status is Status.SKIPPED

        wf.rollback(ctx)
        assert runtime.mounts.is_mounted(src, '/etc/kubernetes')
        assert runtime.mounts.in_fstab(src, '/etc/kubernetes')
        assert not runtime.mounts.is_mounted(source_for(runtime, '/var/lib/kubelet'), '/var/lib/kubelet')

    def test_mount_failure_compensates(self, runtime, ctx):
        runtime.mounts.fail.add(('mount', '/var/run/cilium'))
        report = setup_bind_mounts(runtime).build().execute(ctx)

        assert report.failed
        assert runtime.mounts.mounted == set()
        assert runtime.mounts.fstab == set()
        assert report.find('setup-bind-mount-for-cilium').rollback.status is Status.SUCCESS

    def test_rollback_unmounts_before_fstab_removal(self, runtime, ctx):
        wf = setup_bind_mounts(runtime).build()
        wf.execute(ctx)
        runtime.mounts.calls.clear()
        wf.rollback(ctx)
        ops = [op for op, target in runtime.mounts.calls if target == '/etc/kubernetes']
        assert ops == ['unmount', 'remove_fstab_entry']

    def test_later_failure_undoes_all_three(self, runtime, ctx):
        def fail(c, s):
            raise StepError("downstream failure")

        wf = WorkflowBuilder('outer').steps(setup_bind_mounts(runtime), StepBuilder('boom').with_execute(fail))
        report = wf.build().execute(ctx)
        assert report.failed
        assert runtime.mounts.mounted == set()
        assert runtime.mounts.fstab == set()


class TestTeardownBindMounts:
    """Teardown removes mounts regardless of who created them."""

    def test_teardown_removes_existing(self, runtime, ctx):
        setup_bind_mounts(runtime).build().execute(ctx)
        wf = teardown_bind_mounts(runtime).build()
        assert wf.id == 'teardown-bind-mounts'
        report = wf.execute(ctx)
        assert report.status is Status.SUCCESS
        assert runtime.mounts.mounted == set()
        assert runtime.mounts.fstab == set()

    def test_teardown_on_clean_host_is_skipped_per_step(self, runtime, ctx):
        report = teardown_bind_mounts(runtime).build().execute(ctx)
        assert all(r.status is Status.SKIPPED for r in report.step_reports)

    def test_teardown_continues_past_failure(self, runtime, ctx):
        setup_bind_mounts(runtime).build().execute(ctx)
        runtime.mounts.fail.add(('unmount', '/var/run/cilium'))
        report = teardown_bind_mounts(runtime).build().execute(ctx)
        assert report.failed
        assert not runtime.mounts.is_mounted(source_for(runtime, '/etc/kubernetes'), '/etc/kubernetes')
