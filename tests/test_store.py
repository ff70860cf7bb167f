"""Tests for persisted step state."""

import json

import pytest

from workflow import StateStore, StepBuilder, WorkflowBuilder, iter_steps


def build(changed=True):
    def execute(ctx, stp):
        stp.state.set('alreadyLoaded', not changed)
        if not changed:
            return stp.skipped('in place')
        stp.state.set('loadedByThisStep', True)
        return stp.success()

    return (
        WorkflowBuilder('setup-node')
        .steps(WorkflowBuilder('install-kernel-modules').steps(StepBuilder('install-overlay').with_execute(execute)),
               StepBuilder('check-ready').with_execute(lambda ctx, stp: stp.success()))
        .build()
    )


class TestStateStore:
    def test_path_keys(self):
        keys = [key for key, _ in iter_steps(build())]
        assert keys == ['setup-node/install-kernel-modules/install-overlay', 'setup-node/check-ready']

    def test_save_and_restore(self, tmp_path, ctx):
        store = StateStore(tmp_path / 'state')
        wf = build()
        wf.execute(ctx)
        path = store.save(wf)
        data = json.loads(path.read_text())
        assert data['steps'] == {
            'setup-node/install-kernel-modules/install-overlay': {'alreadyLoaded': False, 'loadedByThisStep': True},
        }

        fresh = build()
        assert store.restore(fresh) == 1
        step = fresh.steps[0].steps[0]
        assert step.state.bool('loadedByThisStep')

    def test_skipped_run_keeps_previous_state(self, tmp_path, ctx):
        store = StateStore(tmp_path / 'state')
        first = build()
        first.execute(ctx)
        store.save(first)

        second = build(changed=False)
        second.execute(ctx)
        store.save(second)

        fresh = build()
        store.restore(fresh)
        assert fresh.steps[0].steps[0].state.bool('loadedByThisStep')

    def test_missing_state(self, tmp_path):
        store = StateStore(tmp_path / 'state')
        assert not store.exists('setup-node')
        with pytest.raises(FileNotFoundError):
            store.load('setup-node')
