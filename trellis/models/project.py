"""
Project models for Trellis.

A project document embeds its ordered task list; tasks are not a
separate collection. The optional lock field carries the transient
edit lock maintained by the LockCoordinator.
"""

from datetime import date, datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from trellis.constants import (
    TASK_STATUS_NOT_STARTED,
    VALID_PROJECT_TYPES,
    VALID_TASK_STATUSES,
    VALIDATION_INVALID_STATUS,
    VALIDATION_TASK_SOURCE,
)
from trellis.models.base import AuditedRecord


class EditLock(BaseModel):
    """Edit lock held on a project by one editor."""

    holder_id: str
    acquired_at: datetime

    def age(self, now: datetime) -> timedelta:
        """Time elapsed since the lock was taken."""
        return now - self.acquired_at

    def is_stale(self, now: datetime, stale_after: timedelta) -> bool:
        """A lock at or beyond the threshold is treated as abandoned."""
        return self.age(now) >= stale_after


class Task(AuditedRecord):
    """Task embedded in a project.

    Either references a catalog task master (task_master_id) or is an
    ad-hoc task carrying its own task_name.
    """

    project_id: str
    task_master_id: str = ""
    task_name: str = ""
    status: str = TASK_STATUS_NOT_STARTED
    assignee_id: str = ""
    due_date: Optional[date] = None
    memo: str = ""

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_TASK_STATUSES:
            raise ValueError(VALIDATION_INVALID_STATUS)
        return v

    @model_validator(mode="after")
    def validate_source(self) -> "Task":
        if not self.task_master_id and not self.task_name:
            raise ValueError(VALIDATION_TASK_SOURCE)
        return self

    @property
    def is_ad_hoc(self) -> bool:
        """True for tasks not derived from a catalog task master."""
        return not self.task_master_id


class Project(AuditedRecord):
    """Project document with embedded tasks and optional edit lock."""

    external_ref_id: Optional[str] = None
    name: str
    project_type: str = "general"
    memo: str = ""
    is_completed: bool = False
    lock: Optional[EditLock] = None
    tasks: List[Task] = Field(default_factory=list)

    @field_validator("project_type")
    @classmethod
    def validate_project_type(cls, v: str) -> str:
        if v not in VALID_PROJECT_TYPES:
            raise ValueError(f"Project type must be one of: {', '.join(VALID_PROJECT_TYPES)}")
        return v

    @property
    def live_tasks(self) -> List[Task]:
        """Tasks that have not been soft-deleted, in project order."""
        return [task for task in self.tasks if not task.is_deleted]

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def replace_task(self, task: Task) -> None:
        """Replace an embedded task by id.

        Raises:
            KeyError: If the project has no task with that id.
        """
        for index, existing in enumerate(self.tasks):
            if existing.id == task.id:
                self.tasks[index] = task
                return
        raise KeyError(task.id)
