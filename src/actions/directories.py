"""Sandbox directory setup."""

import logging
import shutil

from runtime import Runtime
from workflow import StepBuilder

logger = logging.getLogger(__name__)

KEY_CREATED = 'createdDirectories'


def setup_directories(runtime: Runtime) -> StepBuilder:
    """Create the sandbox tree; rollback removes only what this step created."""
    def execute(ctx, stp):
        missing = [d for d in runtime.config.paths.sandbox_directories if not d.exists()]
        if not missing:
            return stp.skipped("sandbox directories already exist")
        created = []
        for d in missing:
            ctx.check()
            # record the topmost directory that did not exist so rollback removes it whole
            top = d
            while not top.parent.exists():
                top = top.parent
            d.mkdir(parents=True, exist_ok=True)
            if str(top) not in created:
                created.append(str(top))
            stp.state.set(KEY_CREATED, list(created))
        return stp.success(metadata={'created': ','.join(created)})

    def rollback(ctx, stp):
        created = stp.state.get(KEY_CREATED) or []
        if not created:
            return stp.skipped("no directories created by this step")
        for d in reversed(created):
            logger.info(f"Removing {d}")
            shutil.rmtree(d, ignore_errors=True)
        stp.state.delete(KEY_CREATED)
        return stp.success(metadata={'removed': ','.join(created)})

    return (
        StepBuilder('setup-directories')
        .with_execute(execute)
        .with_rollback(rollback)
        .with_notifications(runtime.notifier, "Creating sandbox directories",
                            "Failed to create sandbox directories", "Sandbox directories created")
    )
