"""Verification/hooks pipeline."""

from .manager import HooksManager, apply_override
from .models import (
    HookSkillRef,
    HookStep,
    HooksConfig,
    HookTrigger,
    PipelineRun,
    RunStatus,
    SkillHookResult,
    StepResult,
    StepStatus,
)

__all__ = [
    "HooksManager",
    "apply_override",
    "HookSkillRef",
    "HookStep",
    "HooksConfig",
    "HookTrigger",
    "PipelineRun",
    "RunStatus",
    "SkillHookResult",
    "StepResult",
    "StepStatus",
]
