"""Persisted step state, so a later process can roll a workflow back.

Each leaf step's StateBag is saved under a path key built from the ids of
its enclosing workflows (``setup-node/disable-swap``). State is persisted
to <backup_dir>/state/<workflow>.json.
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Iterator, Optional

from reporting import Status
from workflow.step import Step
from workflow.workflow import Workflow

logger = logging.getLogger(__name__)


def iter_steps(workflow: Workflow, prefix: str = '') -> Iterator[tuple[str, Step]]:
    """Yield (path key, step) for every leaf step."""
    base = f'{prefix}{workflow.id}/'
    for step in workflow.steps:
        if isinstance(step, Workflow):
            yield from iter_steps(step, base)
        else:
            yield f'{base}{step.id}', step


class StateStore:
    """JSON file holding the StateBag of every step of one workflow."""

    def __init__(self, state_dir: Path):
        self.state_dir = state_dir

    def path_for(self, workflow_id: str) -> Path:
        return self.state_dir / f'{workflow_id}.json'

    def exists(self, workflow_id: str) -> bool:
        return self.path_for(workflow_id).exists()

    def load(self, workflow_id: str) -> dict[str, dict[str, Any]]:
        """Load saved step states.

        Raises:
            FileNotFoundError: If nothing was saved for workflow_id
        """
        path = self.path_for(workflow_id)
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
        logger.debug(f"Loaded step state from {path}")
        return data.get('steps', {})

    def save(self, workflow: Workflow, merge: bool = True) -> Path:
        """Save every step's state.

        With merge, a step that changed nothing this run (skipped or never
        reached) keeps the state saved by the run that did change it.

        Returns:
            Path where state was saved
        """
        previous = self.load(workflow.id) if merge and self.exists(workflow.id) else {}
        steps: dict[str, dict[str, Any]] = {}
        for key, step in iter_steps(workflow):
            state = step.state.to_dict()
            unchanged = step.report is None or step.report.status is Status.SKIPPED
            if key in previous and (unchanged or not state):
                steps[key] = previous[key]
            elif state:
                steps[key] = state

        path = self.path_for(workflow.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {'workflow': workflow.id, 'saved_at': time.time(), 'steps': steps}
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, default=str)
        logger.debug(f"Saved step state to {path}")
        return path

    def restore(self, workflow: Workflow) -> int:
        """Load saved state into the steps of a freshly built workflow.

        Returns:
            Number of steps that received saved state
        """
        saved = self.load(workflow.id)
        restored = 0
        for key, step in iter_steps(workflow):
            values: Optional[dict[str, Any]] = saved.get(key)
            if values:
                step.state.update(values)
                restored += 1
        logger.info(f"Restored state of {restored} steps of {workflow.id}")
        return restored
