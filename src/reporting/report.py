"""Step and workflow reports."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml

from errors import StepError


class Status(str, Enum):
    SUCCESS = 'success'
    SKIPPED = 'skipped'
    FAILED = 'failed'


@dataclass
class Report:
    """Result of a step or workflow run.

    Invariants: status is FAILED iff error is set; SKIPPED never carries an
    error. Use the success()/skipped()/failure() constructors.
    """
    id: str
    status: Status
    error: Optional[StepError] = None
    detail: str = ''
    metadata: dict[str, str] = field(default_factory=dict)
    step_reports: list['Report'] = field(default_factory=list)
    rollback: Optional['Report'] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def __post_init__(self):
        if (self.status is Status.FAILED) != (self.error is not None):
            raise ValueError(f"report {self.id}: status {self.status.value} inconsistent with error {self.error!r}")
        self.metadata = {k: _as_str(v) for k, v in self.metadata.items()}

    @classmethod
    def success(cls, step_id: str, detail: str = '', metadata: Optional[dict] = None,
                step_reports: Optional[list['Report']] = None) -> 'Report':
        return cls(id=step_id, status=Status.SUCCESS, detail=detail,
                   metadata=dict(metadata or {}), step_reports=list(step_reports or []))

    @classmethod
    def skipped(cls, step_id: str, detail: str = '', metadata: Optional[dict] = None,
                step_reports: Optional[list['Report']] = None) -> 'Report':
        return cls(id=step_id, status=Status.SKIPPED, detail=detail,
                   metadata=dict(metadata or {}), step_reports=list(step_reports or []))

    @classmethod
    def failure(cls, step_id: str, error: StepError, detail: str = '', metadata: Optional[dict] = None,
                step_reports: Optional[list['Report']] = None) -> 'Report':
        return cls(id=step_id, status=Status.FAILED, error=error, detail=detail,
                   metadata=dict(metadata or {}), step_reports=list(step_reports or []))

    @property
    def failed(self) -> bool:
        return self.status is Status.FAILED

    @property
    def was_skipped(self) -> bool:
        return self.status is Status.SKIPPED

    @property
    def duration(self) -> float:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    def find(self, step_id: str) -> Optional['Report']:
        """Depth-first search for a report by id."""
        if self.id == step_id:
            return self
        for child in self.step_reports:
            found = child.find(step_id)
            if found:
                return found
        return None

    def failed_steps(self) -> list['Report']:
        """Leaf reports that failed, in execution order."""
        if not self.failed:
            return []
        leaves = [r for child in self.step_reports for r in child.failed_steps()]
        return leaves or [self]

    def to_dict(self) -> dict:
        data: dict = {
            'id': self.id,
            'status': self.status.value,
        }
        if self.error is not None:
            data['error'] = self.error.to_dict()
        if self.detail:
            data['detail'] = self.detail
        if self.metadata:
            data['metadata'] = dict(self.metadata)
        if self.started_at:
            data['started_at'] = self.started_at.isoformat()
            data['duration'] = round(self.duration, 1)
        if self.step_reports:
            data['steps'] = [r.to_dict() for r in self.step_reports]
        if self.rollback is not None:
            data['rollback'] = self.rollback.to_dict()
        return data

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def to_markdown(self) -> str:
        """Render a flattened step table."""
        lines = [
            f"# {self.id}",
            "",
            f"**Status**: {self.status.value.upper()}",
            f"**Duration**: {self.duration:.1f}s",
        ]
        if self.error is not None:
            lines.append(f"**Error**: {self.error.message}")
        lines.extend([
            "",
            "## Steps",
            "",
            "| Step | Status | Rollback | Duration | Detail |",
            "|------|--------|----------|----------|--------|",
        ])
        for depth, r in self._walk():
            emoji = {'success': '✅', 'failed': '❌', 'skipped': '⏭️'}[r.status.value]
            rollback = r.rollback.status.value if r.rollback else ''
            message = r.error.message if r.error else r.detail
            name = ('  ' * depth) + r.id
            lines.append(f"| {name} | {emoji} {r.status.value} | {rollback} | {r.duration:.1f}s | {message} |")
        lines.extend(["", "---", f"Generated: {datetime.now().isoformat()}"])
        return '\n'.join(lines)

    def _walk(self, depth: int = 0):
        for child in self.step_reports:
            yield depth, child
            yield from child._walk(depth + 1)

    def render(self, fmt: str = 'yaml') -> str:
        if fmt == 'json':
            return self.to_json()
        if fmt == 'markdown':
            return self.to_markdown()
        return self.to_yaml()

    def write(self, path: Path, fmt: str = 'yaml') -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(self.render(fmt))
        return path


def _as_str(value) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)
