"""Tests for swap, sysctl and sandbox directory actions."""

from unittest.mock import patch

import yaml

from actions import configure_sysctl, disable_swap, setup_directories
from reporting import Status
from system import Swap, Sysctl


class TestDisableSwap:
    """(swapOff, fstabSwapDisabled)."""

    def test_swap_already_off_is_skipped(self, runtime, ctx):
        runtime.swap.is_off.return_value = True
        runtime.swap.is_fstab_disabled.return_value = True
        runtime.swap.active_swaps.return_value = []
        report = disable_swap(runtime).build().execute(ctx)
        assert report.status is Status.SKIPPED
        runtime.swap.swap_off.assert_not_called()

    def test_disables_and_restores(self, runtime, ctx):
        swap = runtime.swap
        swap.is_off.return_value = False
        swap.is_fstab_disabled.return_value = False
        swap.active_swaps.return_value = ['/swap.img']

        step = disable_swap(runtime).build()
        report = step.execute(ctx)
        assert report.status is Status.SUCCESS
        assert report.metadata['activeSwaps'] == '/swap.img'
        swap.swap_off.assert_called_once()
        swap.comment_fstab_swap.assert_called_once()

        swap.is_off.return_value = True
        swap.is_fstab_disabled.return_value = True
        step.rollback(ctx)
        swap.restore_fstab.assert_called_once()
        swap.swap_on.assert_called_once()

    def test_real_swap_fstab_handling(self, config, ctx):
        paths = config.paths
        paths.fstab.parent.mkdir(parents=True)
        paths.fstab.write_text("UUID=abc / ext4 defaults 0 1\n/swap.img none swap sw 0 0\n")
        paths.proc_swaps.parent.mkdir(parents=True)
        paths.proc_swaps.write_text("Filename Type Size Used Priority\n/swap.img file 100 0 -2\n")
        swap = Swap(paths.fstab, paths.proc_swaps, paths.backup_dir)

        assert not swap.is_off()
        assert swap.fstab_swap_lines() == ['/swap.img none swap sw 0 0']

        swap.comment_fstab_swap()
        assert swap.is_fstab_disabled()
        assert swap.backup_path.exists()
        assert 'UUID=abc / ext4 defaults 0 1' in paths.fstab.read_text()

        swap.restore_fstab()
        assert swap.fstab_swap_lines() == ['/swap.img none swap sw 0 0']
        assert not swap.backup_path.exists()

        with patch('system.swap.check_command') as mock_cmd:
            swap.swap_off(ctx)
            mock_cmd.assert_called_once()
            assert mock_cmd.call_args[0][0] == ['swapoff', '-a']


class TestConfigureSysctl:
    """(configPresent, settingsApplied) with previous values restored."""

    def _sysctl(self, config, values):
        proc_sys = config.paths.sandbox_dir.parent / 'proc' / 'sys'
        for key, value in values.items():
            path = proc_sys / key.replace('.', '/')
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(f'{value}\n')
        return Sysctl(config.paths.sysctl_dir, proc_sys)

    def test_writes_file_applies_and_restores(self, runtime, ctx):
        runtime.config.sysctl = {'net.ipv4.ip_forward': '1'}
        runtime.sysctl = self._sysctl(runtime.config, {'net.ipv4.ip_forward': '0'})

        with patch('system.sysctl.check_command') as mock_cmd:
            step = configure_sysctl(runtime).build()
            report = step.execute(ctx)
            assert report.status is Status.SUCCESS
            assert runtime.sysctl.drop_in.read_text() == 'net.ipv4.ip_forward = 1\n'
            assert mock_cmd.call_args[0][0] == ['sysctl', '-p', str(runtime.sysctl.drop_in)]

            backup = runtime.config.paths.backup_dir / 'sysctl.previous.yaml'
            assert yaml.safe_load(backup.read_text()) == {'net.ipv4.ip_forward': '0'}

            # simulate the kernel taking the new value
            (runtime.sysctl.proc_sys / 'net/ipv4/ip_forward').write_text('1\n')
            rb = step.rollback(ctx)
            assert rb.status is Status.SUCCESS
            assert mock_cmd.call_args[0][0] == ['sysctl', '-w', 'net.ipv4.ip_forward=0']
            assert not runtime.sysctl.drop_in.exists()
            assert not backup.exists()

    def test_already_applied_is_skipped(self, runtime, ctx):
        runtime.config.sysctl = {'net.ipv4.ip_forward': '1'}
        runtime.sysctl = self._sysctl(runtime.config, {'net.ipv4.ip_forward': '1'})
        runtime.sysctl.write_file(runtime.config.sysctl)
        with patch('system.sysctl.check_command') as mock_cmd:
            report = configure_sysctl(runtime).build().execute(ctx)
        assert report.status is Status.SKIPPED
        mock_cmd.assert_not_called()


class TestSetupDirectories:
    """Sandbox tree creation."""

    def test_creates_and_removes_only_created(self, runtime, ctx):
        paths = runtime.config.paths
        paths.backup_dir.mkdir(parents=True)
        (paths.backup_dir / 'keep.txt').write_text('x')

        step = setup_directories(runtime).build()
        report = step.execute(ctx)
        assert report.status is Status.SUCCESS
        assert all(d.is_dir() for d in paths.sandbox_directories)

        step.rollback(ctx)
        assert not paths.sandbox_dir.exists()
        assert not paths.temp_dir.exists()
        assert (paths.backup_dir / 'keep.txt').exists()

    def test_existing_tree_skipped(self, runtime, ctx):
        for d in runtime.config.paths.sandbox_directories:
            d.mkdir(parents=True, exist_ok=True)
        step = setup_directories(runtime).build()
        assert step.execute(ctx).status is Status.SKIPPED
        assert step.rollback(ctx).status is Status.SKIPPED
