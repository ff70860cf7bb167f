"""Tests for CLI module."""

from unittest.mock import MagicMock, patch

import pytest
import yaml

import cli
from actions import install_kernel_module
from errors import StepError
from reporting import Report
from scenarios import Scenario
from workflow import ExecutionMode, StepBuilder, WorkflowBuilder


def fake_scenario(report_fail=False):
    def build(runtime):
        def execute(ctx, stp):
            if report_fail:
                raise StepError("broken")
            return stp.success()
        return WorkflowBuilder('setup-fake').steps(StepBuilder('only-step').with_execute(execute))
    scenario = MagicMock()
    scenario.setup = build
    scenario.teardown = None
    return scenario


class TestParser:
    def test_setup_options(self):
        args = cli.build_parser().parse_args(['setup', 'node', '--mode', 'stop', '--format', 'json', '--dry-run'])
        assert args.command == 'setup'
        assert args.target == 'node'
        assert args.mode == 'stop'
        assert args.format == 'json'
        assert args.dry_run

    def test_bad_format_rejected(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(['setup', 'node', '--format', 'xml'])


class TestMain:
    def test_list(self, capsys):
        assert cli.main(['list']) == 0
        out = capsys.readouterr().out
        assert 'bind-mounts' in out
        assert 'alloy' in out

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 0
        assert 'usage' in capsys.readouterr().out.lower()

    def test_unknown_target(self, tmp_path):
        assert cli.main(['setup', 'nope', '--config', str(self._config(tmp_path))]) == 1

    def test_teardown_without_teardown(self, tmp_path):
        assert cli.main(['teardown', 'node', '--config', str(self._config(tmp_path))]) == 1

    def test_bad_config_exits_1(self, tmp_path):
        path = tmp_path / 'bad.yaml'
        path.write_text('[')
        assert cli.main(['setup', 'node', '--config', str(path)]) == 1

    def test_dry_run_prints_tree(self, tmp_path, capsys):
        assert cli.main(['setup', 'bind-mounts', '--dry-run', '--config', str(self._config(tmp_path))]) == 0
        out = capsys.readouterr().out
        assert 'DRY-RUN: setup-bind-mounts' in out
        assert 'setup-bind-mount-for-kubelet' in out

    def test_success_writes_report(self, tmp_path):
        output = tmp_path / 'report.yaml'
        with patch('cli.get_scenario', return_value=fake_scenario()), \
                patch('cli.install_signal_handlers'):
            code = cli.main(['setup', 'fake', '--config', str(self._config(tmp_path)), '--output', str(output)])
        assert code == 0
        data = yaml.safe_load(output.read_text())
        assert data['id'] == 'setup-fake'
        assert data['status'] == 'success'

    def test_failure_exit_code(self, tmp_path, capsys):
        with patch('cli.get_scenario', return_value=fake_scenario(report_fail=True)), \
                patch('cli.install_signal_handlers'):
            code = cli.main(['setup', 'fake', '--config', str(self._config(tmp_path))])
        assert code == 1
        assert 'status: failed' in capsys.readouterr().out

    def _config(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text(f"paths:\n  sandbox_dir: {tmp_path / 'sandbox'}\n  backup_dir: {tmp_path / 'backup'}\n")
        return path


class TestBuildWorkflow:
    def test_mode_applied(self, runtime):
        with patch('cli.get_scenario', return_value=fake_scenario()):
            wf = cli.build_workflow('setup', 'fake', runtime, 'continue')
        assert wf.mode is ExecutionMode.CONTINUE_ON_ERROR

    def test_emit_report_to_stdout(self, capsys):
        cli.emit_report(Report.success('x'), 'json', None)
        assert '"status": "success"' in capsys.readouterr().out


class TestRollbackCommand:
    """Rollback in a later process undoes what setup recorded."""

    def _scenario(self):
        def build(runtime):
            return WorkflowBuilder('setup-kmods').steps(install_kernel_module(runtime, 'overlay'))
        return Scenario('kmods', 'test modules', build)

    def _main(self, runtime, *argv):
        with patch('cli.get_scenario', return_value=self._scenario()), \
                patch('cli.Runtime.from_config', return_value=runtime), \
                patch('cli.install_signal_handlers'):
            return cli.main(list(argv))

    def test_missing_config_fails(self, runtime, tmp_path):
        assert self._main(runtime, 'setup', 'kmods', '--config', str(tmp_path / 'none.yaml')) == 1

    def test_rollback_restores_recorded_state(self, runtime, tmp_path, capsys):
        config = tmp_path / 'config.yaml'
        config.write_text('kernel_modules: [overlay]\n')
        assert self._main(runtime, 'setup', 'kmods', '--config', str(config)) == 0
        assert runtime.kernel.loaded == {'overlay'}
        assert (runtime.config.paths.state_dir / 'setup-kmods.json').exists()

        assert self._main(runtime, 'rollback', 'kmods', '--config', str(config)) == 0
        assert runtime.kernel.loaded == set()
        assert runtime.kernel.persisted == set()
        assert ('unload', 'overlay') in runtime.kernel.calls

        calls = len(runtime.kernel.calls)
        assert self._main(runtime, 'rollback', 'kmods', '--config', str(config)) == 0
        assert len(runtime.kernel.calls) == calls

    def test_rollback_without_setup(self, runtime, tmp_path):
        config = tmp_path / 'config.yaml'
        config.write_text('{}\n')
        assert self._main(runtime, 'rollback', 'kmods', '--config', str(config)) == 1

    def test_skipped_rerun_keeps_recorded_changes(self, runtime, tmp_path):
        config = tmp_path / 'config.yaml'
        config.write_text('{}\n')
        assert self._main(runtime, 'setup', 'kmods', '--config', str(config)) == 0
        assert self._main(runtime, 'setup', 'kmods', '--config', str(config)) == 0
        assert self._main(runtime, 'rollback', 'kmods', '--config', str(config)) == 0
        assert 'overlay' not in runtime.kernel.loaded
