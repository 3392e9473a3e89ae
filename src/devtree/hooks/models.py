"""Verification pipeline models."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HookTrigger(str, Enum):
    """Pipeline phase at which a step or skill is eligible."""
    PRE_IMPLEMENTATION = "pre-implementation"
    POST_IMPLEMENTATION = "post-implementation"
    ON_DEMAND = "on-demand"
    CUSTOM = "custom"


DEFAULT_TRIGGER = HookTrigger.POST_IMPLEMENTATION


class HookStep(BaseModel):
    """A shell command run against a worktree."""
    id: str
    name: str
    command: str
    enabled: bool = True
    # None means post-implementation
    trigger: Optional[HookTrigger] = None
    condition: Optional[str] = None
    condition_title: Optional[str] = None

    @property
    def effective_trigger(self) -> HookTrigger:
        return self.trigger or DEFAULT_TRIGGER


class HookSkillRef(BaseModel):
    """An agent-performed check. Unique per (skill_name, trigger)."""
    skill_name: str
    enabled: bool = True
    trigger: Optional[HookTrigger] = None
    condition: Optional[str] = None
    condition_title: Optional[str] = None

    @property
    def effective_trigger(self) -> HookTrigger:
        return self.trigger or DEFAULT_TRIGGER


class HooksConfig(BaseModel):
    """The persisted pipeline configuration document."""
    steps: List[HookStep] = Field(default_factory=list)
    skills: List[HookSkillRef] = Field(default_factory=list)


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"


class StepResult(BaseModel):
    step_id: str
    step_name: str
    command: str
    status: StepStatus
    output: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineRun(BaseModel):
    """Latest pipeline run for a worktree. A new run overwrites the previous one."""
    id: str
    worktree_id: str
    status: RunStatus
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    steps: List[StepResult] = Field(default_factory=list)


class SkillHookResult(BaseModel):
    """Result of a skill check, reported by the agent that performed it."""
    skill_name: str
    success: bool
    summary: str = ""
    content: Optional[str] = None
    reported_at: datetime = Field(default_factory=utcnow)
