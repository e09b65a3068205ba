"""In-memory ledger of agent tasks.

Each generation request gets its own ``TaskTracker`` that is dropped once the
result is built. The orchestrator keeps finished tasks in a bounded history
tracker for status queries.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..shared.models import AgentTask, TaskStatus

logger = logging.getLogger(__name__)


class TaskTracker:
    """Tracks every dispatched AgentTask.

    Each attempt moves a task pending -> running -> completed | failed. A retry
    ends the running attempt as failed, puts the same task back to pending and
    bumps ``attempts`` on the next start. With ``max_tasks`` set, the oldest
    tasks are evicted first.
    """

    def __init__(self, max_tasks: Optional[int] = None) -> None:
        self.max_tasks = max_tasks
        self._tasks: Dict[str, AgentTask] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def _transition(self, task: AgentTask, status: TaskStatus) -> None:
        task.status = status

    def _add(self, task: AgentTask) -> None:
        self._tasks[task.id] = task
        if self.max_tasks is not None:
            while len(self._tasks) > self.max_tasks:
                self._tasks.pop(next(iter(self._tasks)))

    def create(self, role: str, payload: Dict[str, Any], max_attempts: int = 3) -> AgentTask:
        task = AgentTask(role=role, input_payload=payload, max_attempts=max_attempts)
        self._transition(task, TaskStatus.PENDING)
        self._add(task)
        return task

    def start_attempt(self, task_id: str, model_name: Optional[str] = None) -> None:
        task = self._tasks[task_id]
        self._transition(task, TaskStatus.RUNNING)
        task.attempts += 1
        if model_name:
            task.model_name = model_name

    def requeue(self, task_id: str, error: Optional[str] = None) -> None:
        task = self._tasks[task_id]
        task.last_error = error
        self._transition(task, TaskStatus.FAILED)
        self._transition(task, TaskStatus.PENDING)
        logger.debug("🔁 Task %s requeued after attempt %d", task_id, task.attempts)

    def complete(self, task_id: str) -> None:
        task = self._tasks[task_id]
        self._transition(task, TaskStatus.COMPLETED)
        task.completed_at = datetime.utcnow()

    def fail(self, task_id: str, error: str) -> None:
        task = self._tasks[task_id]
        task.last_error = error
        self._transition(task, TaskStatus.FAILED)
        task.completed_at = datetime.utcnow()

    def absorb(self, other: "TaskTracker") -> None:
        """Copy a finished request's tasks into this ledger."""
        for task in other.all():
            self._tasks.pop(task.id, None)
            self._add(task)

    def get(self, task_id: str) -> Optional[AgentTask]:
        return self._tasks.get(task_id)

    def all(self) -> List[AgentTask]:
        return list(self._tasks.values())

    def queue_status(self) -> Dict[str, int]:
        counts = Counter(task.status for task in self._tasks.values())
        return {status.value: counts.get(status, 0) for status in TaskStatus}

    def model_usage(self) -> Dict[str, int]:
        """Number of tasks each model handled."""
        return dict(Counter(task.model_name for task in self._tasks.values() if task.model_name))
