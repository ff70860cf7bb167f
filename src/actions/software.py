"""Software steps: install (download, install, cleanup) and configure."""

import logging
from typing import Callable, Optional

from errors import StepError
from runtime import Runtime
from system.software import Configurable, Installer
from workflow import StepBuilder, WorkflowBuilder

logger = logging.getLogger(__name__)

KEY_ALREADY_INSTALLED = 'alreadyInstalled'
KEY_DOWNLOADED = 'downloadedByThisStep'
KEY_INSTALLED = 'installedByThisStep'
KEY_CLEANED_UP = 'cleanedUpByThisStep'
KEY_ALREADY_CONFIGURED = 'alreadyConfigured'
KEY_CONFIGURE_ATTEMPTED = 'configureAttempted'
KEY_CONFIGURED = 'configuredByThisStep'

InstallerFactory = Callable[[str], Installer]


def install_software(runtime: Runtime, name: str, factory: Optional[InstallerFactory] = None) -> StepBuilder:
    """Download, install into the sandbox and remove the download.

    Rollback uninstalls only what this step installed; if the step failed
    after downloading, only the download is removed.
    """
    factory = factory or runtime.installer

    def execute(ctx, stp):
        installer = factory(name)
        installed = installer.is_installed()
        stp.state.set(KEY_ALREADY_INSTALLED, installed)
        if installed:
            return stp.skipped(f"{name} is already installed", metadata={KEY_ALREADY_INSTALLED: True})

        meta = {KEY_ALREADY_INSTALLED: False}
        for key, action in ((KEY_DOWNLOADED, installer.download),
                            (KEY_INSTALLED, installer.install),
                            (KEY_CLEANED_UP, installer.cleanup)):
            try:
                action(ctx)
            except StepError as e:
                return stp.failure(e, metadata=meta)
            stp.state.set(key, True)
            meta[key] = True
        return stp.success(metadata=meta)

    def rollback(ctx, stp):
        if stp.state.bool(KEY_ALREADY_INSTALLED):
            return stp.skipped(f"{name} was installed before this step, skipping rollback")
        installer = factory(name)
        if stp.state.bool(KEY_INSTALLED):
            installer.uninstall(ctx)
            stp.state.delete(KEY_INSTALLED)
            if not stp.state.bool(KEY_CLEANED_UP):
                installer.cleanup(ctx)
            stp.state.delete(KEY_DOWNLOADED)
            return stp.success(f"uninstalled {name}")
        if stp.state.bool(KEY_DOWNLOADED) and not stp.state.bool(KEY_CLEANED_UP):
            installer.cleanup(ctx)
            stp.state.delete(KEY_DOWNLOADED)
            return stp.success(f"removed downloaded files of {name}")
        return stp.skipped(f"nothing of {name} left to roll back")

    return (
        StepBuilder(f'install-{name}')
        .with_execute(execute)
        .with_rollback(rollback)
        .with_notifications(runtime.notifier, f"Installing {name}",
                            f"Failed to install {name}", f"{name} installed")
    )


def configure_software(runtime: Runtime, name: str, factory: Optional[Callable[[str], Configurable]] = None
                       ) -> StepBuilder:
    factory = factory or runtime.installer

    def execute(ctx, stp):
        configurable = factory(name)
        configured = configurable.is_configured()
        stp.state.set(KEY_ALREADY_CONFIGURED, configured)
        if configured:
            return stp.skipped(f"{name} is already configured", metadata={KEY_ALREADY_CONFIGURED: True})
        # configure links binaries before copying units; a failure in between is undone by rollback
        stp.state.set(KEY_CONFIGURE_ATTEMPTED, True)
        configurable.configure(ctx)
        stp.state.set(KEY_CONFIGURED, True)
        return stp.success(metadata={KEY_ALREADY_CONFIGURED: False, KEY_CONFIGURED: True})

    def rollback(ctx, stp):
        if not (stp.state.bool(KEY_CONFIGURED) or stp.state.bool(KEY_CONFIGURE_ATTEMPTED)):
            return stp.skipped(f"{name} was not configured by this step")
        factory(name).remove_configuration(ctx)
        stp.state.delete(KEY_CONFIGURED)
        stp.state.delete(KEY_CONFIGURE_ATTEMPTED)
        return stp.success(f"removed configuration of {name}")

    return (
        StepBuilder(f'configure-{name}')
        .with_execute(execute)
        .with_rollback(rollback)
        .with_notifications(runtime.notifier, f"Configuring {name}",
                            f"Failed to configure {name}", f"{name} configured")
    )


def setup_software(runtime: Runtime, name: str, factory: Optional[InstallerFactory] = None) -> WorkflowBuilder:
    return (
        WorkflowBuilder(f'setup-{name}')
        .steps(install_software(runtime, name, factory), configure_software(runtime, name, factory))
        .with_notifications(runtime.notifier, f"Setting up {name}",
                            f"Failed to set up {name}", f"{name} set up")
    )
