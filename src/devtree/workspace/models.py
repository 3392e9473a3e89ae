"""Worktree state models."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class WorktreeStatus(str, Enum):
    """Lifecycle status of a worktree."""
    CREATING = "creating"
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    DELETING = "deleting"


# Statuses that hold an offset, ports and a pid
ACTIVE_STATUSES = (WorktreeStatus.STARTING, WorktreeStatus.RUNNING)


class Worktree(BaseModel):
    """A worktree as seen by clients: filesystem facts plus runtime overlay."""
    id: str
    path: str
    branch: str
    status: WorktreeStatus = WorktreeStatus.STOPPED
    status_message: Optional[str] = None
    ports: List[int] = Field(default_factory=list)
    offset: Optional[int] = None
    pid: Optional[int] = None
    logs: List[str] = Field(default_factory=list)
    last_activity: Optional[datetime] = None


class ScannedWorktree(BaseModel):
    """Filesystem-only view produced by the inspector."""
    id: str
    path: str
    branch: str


class OperationResult(BaseModel):
    """Structured result of a manager operation.

    Expected failures never raise out of the manager; they come back here
    with success=False and a stable error code.
    """
    success: bool
    error: Optional[str] = None
    code: Optional[str] = None
    worktree: Optional[Worktree] = None
    ports: Optional[List[int]] = None
    pid: Optional[int] = None

    @classmethod
    def ok(cls, **payload: Any) -> "OperationResult":
        return cls(success=True, **payload)

    @classmethod
    def fail(cls, error: Exception) -> "OperationResult":
        return cls(
            success=False,
            error=getattr(error, "message", None) or str(error),
            code=getattr(error, "code", "ERROR"),
        )

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
