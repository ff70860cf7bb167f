"""Tests for the idempotent mutation protocol, driven through kernel modules."""

import pytest

from actions import install_kernel_module
from errors import ErrorKind
from reporting import Status
from workflow import WorkflowBuilder


def kernel_step(runtime, name='br_netfilter'):
    return install_kernel_module(runtime, name).build()


class TestTruthTable:
    """(loaded, persisted) pre-state decides what execute and rollback do."""

    @pytest.mark.parametrize('loaded,persisted,applied,reverted', [
        (True, True, [], []),
        (True, False, ['persist'], ['unpersist']),
        (False, True, ['load'], ['unload']),
        (False, False, ['load', 'persist'], ['unpersist', 'unload']),
    ])
    def test_execute_and_rollback(self, runtime, ctx, loaded, persisted, applied, reverted):
        kernel = runtime.kernel
        if loaded:
            kernel.loaded.add('br_netfilter')
        if persisted:
            kernel.persisted.add('br_netfilter')

        step = kernel_step(runtime)
        report = step.execute(ctx)
        assert [op for op, _ in kernel.calls] == applied
        assert report.status is (Status.SKIPPED if not applied else Status.SUCCESS)
        assert kernel.is_loaded('br_netfilter') and kernel.is_persisted('br_netfilter')

        kernel.calls.clear()
        rb = step.rollback(ctx)
        assert [op for op, _ in kernel.calls] == reverted
        assert rb.status is (Status.SKIPPED if not reverted else Status.SUCCESS)
        assert kernel.is_loaded('br_netfilter') is loaded
        assert kernel.is_persisted('br_netfilter') is persisted


class TestProtocolProperties:
    """Idempotence and soundness."""

    def test_second_execute_is_skipped(self, runtime, ctx):
        assert kernel_step(runtime).execute(ctx).status is Status.SUCCESS
        runtime.kernel.calls.clear()
        assert kernel_step(runtime).execute(ctx).status is Status.SKIPPED
        assert runtime.kernel.calls == []

    def test_rollback_twice_is_noop(self, runtime, ctx):
        step = kernel_step(runtime)
        step.execute(ctx)
        assert step.rollback(ctx).status is Status.SUCCESS
        runtime.kernel.calls.clear()
        assert step.rollback(ctx).status is Status.SKIPPED
        assert runtime.kernel.calls == []

    def test_rollback_without_execute_is_skipped(self, runtime, ctx):
        assert kernel_step(runtime).rollback(ctx).status is Status.SKIPPED
        assert runtime.kernel.calls == []

    def test_metadata_records_pre_state(self, runtime, ctx):
        runtime.kernel.loaded.add('br_netfilter')
        report = kernel_step(runtime).execute(ctx)
        assert report.metadata['alreadyLoaded'] == 'true'
        assert report.metadata['alreadyPersisted'] == 'false'
        assert report.metadata['persistedByThisStep'] == 'true'
        assert report.metadata['loadedByThisStep'] == 'false'
        assert report.metadata['modifiedByThisStep'] == 'true'

    def test_partial_failure_rolls_back_completed_part(self, runtime, ctx):
        runtime.kernel.fail.add(('persist', 'br_netfilter'))
        step = kernel_step(runtime)
        report = step.execute(ctx)
        assert report.failed
        assert report.error.kind is ErrorKind.INSTALLATION
        assert step.state.bool('loadedByThisStep')
        assert not step.state.bool('persistedByThisStep')

        rb = step.rollback(ctx)
        assert rb.status is Status.SUCCESS
        assert not runtime.kernel.is_loaded('br_netfilter')

    def test_change_reverted_externally_is_not_reverted_again(self, runtime, ctx):
        step = kernel_step(runtime)
        step.execute(ctx)
        runtime.kernel.loaded.discard('br_netfilter')
        runtime.kernel.calls.clear()
        step.rollback(ctx)
        assert runtime.kernel.calls == [('unpersist', 'br_netfilter')]

    def test_rollback_failure_keeps_flag(self, runtime, ctx):
        step = kernel_step(runtime)
        step.execute(ctx)
        runtime.kernel.fail.add(('unload', 'br_netfilter'))
        rb = step.rollback(ctx)
        assert rb.failed
        assert step.state.bool('loadedByThisStep')


class TestMixedPreExistingState:
    """Workflow failure only undoes what this run created."""

    def test_preexisting_module_survives_compensation(self, runtime, ctx):
        from workflow import StepBuilder
        from errors import StepError

        runtime.kernel.loaded.add('overlay')
        runtime.kernel.persisted.add('overlay')

        def fail(c, s):
            raise StepError("later step failed")

        wf = WorkflowBuilder('modules').steps(
            install_kernel_module(runtime, 'overlay'),
            install_kernel_module(runtime, 'br_netfilter'),
            StepBuilder('explode').with_execute(fail),
        ).build()
        report = wf.execute(ctx)

        assert report.failed
        assert runtime.kernel.is_loaded('overlay') and runtime.kernel.is_persisted('overlay')
        assert not runtime.kernel.is_loaded('br_netfilter')
        assert not runtime.kernel.is_persisted('br_netfilter')
        assert report.find('install-kernel-module-overlay').rollback.status is Status.SKIPPED
        assert report.find('install-kernel-module-br_netfilter').rollback.status is Status.SUCCESS
