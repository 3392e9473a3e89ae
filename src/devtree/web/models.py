"""Pydantic models for HTTP request and response bodies."""

from typing import List, Optional

from pydantic import BaseModel, Field

from ..hooks.models import HookTrigger


class SuccessResponse(BaseModel):
    """Generic success response."""
    success: bool = True
    message: Optional[str] = None


class CreateWorktreeRequest(BaseModel):
    branch: str = Field(..., min_length=1)
    name: Optional[str] = None


class RenameWorktreeRequest(BaseModel):
    name: Optional[str] = None
    branch: Optional[str] = None


class LogsResponse(BaseModel):
    worktree_id: str
    lines: List[str]


class PortsResponse(BaseModel):
    discovered: List[int]
    offset_step: int
    allocated_offsets: List[int]
    max_instances: int
    env_mapping: dict


class DetectEnvRequest(BaseModel):
    save: bool = True


class DetectEnvResponse(BaseModel):
    env_mapping: dict
    saved: bool


class AddStepRequest(BaseModel):
    name: str = Field(..., min_length=1)
    command: str = Field(..., min_length=1)


class UpdateStepRequest(BaseModel):
    name: Optional[str] = None
    command: Optional[str] = None
    enabled: Optional[bool] = None
    trigger: Optional[HookTrigger] = None


class ImportSkillRequest(BaseModel):
    skill_name: str = Field(..., min_length=1)
    trigger: Optional[HookTrigger] = None
    condition: Optional[str] = None
    condition_title: Optional[str] = None


class UpdateSkillRequest(BaseModel):
    enabled: bool
    trigger: Optional[HookTrigger] = None


class TranslateErrorRequest(BaseModel):
    error_message: str = ""


class ErrorTranslationResponse(BaseModel):
    title: str
    explanation: str
    actions: List[str]
