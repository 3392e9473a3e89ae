"""Verification pipeline: configured shell steps plus agent-reported skill checks.

Steps run concurrently against a worktree's checkout and every result is
recorded, pass or fail. Skills are never executed here; the pipeline only
tracks which are enabled for a worktree and what the agent reported.
"""

import asyncio
import itertools
import logging
import time
from pathlib import Path
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from ..errors import CommandFailedError, InvalidInputError, NotFoundError
from ..notes.link_index import NotesLinkIndex, SkillOverride, override_key
from ..utils.atomic_io import atomic_write_json, atomic_write_model, read_model
from ..utils.subprocess_utils import run_shell_command
from ..utils.validators import validate_worktree_id
from ..workspace.manager import WorktreeManager
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
    utcnow,
)

logger = logging.getLogger(__name__)

HOOKS_FILE_NAME = "hooks.json"
RUNS_DIR_NAME = "runs"
LATEST_RUN_FILE = "latest-run.json"
SKILL_RESULTS_FILE = "skill-results.json"

DEFAULT_STEP_TIMEOUT = 120
NO_OUTPUT = "(no output)"

_step_counter = itertools.count(1)
_skill_results_adapter = TypeAdapter(List[SkillHookResult])


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_step_id() -> str:
    return f"step-{_now_ms()}-{next(_step_counter)}"


def new_run_id() -> str:
    return f"run-{_now_ms()}"


def apply_override(skill: HookSkillRef, override: Optional[SkillOverride]) -> HookSkillRef:
    """Global enablement unless the issue explicitly enables or disables the skill."""
    if override == SkillOverride.ENABLE:
        return skill.model_copy(update={"enabled": True})
    if override == SkillOverride.DISABLE:
        return skill.model_copy(update={"enabled": False})
    return skill.model_copy()


class HooksManager:
    """Pipeline configuration, execution and result storage for one project."""

    def __init__(
        self,
        worktree_manager: WorktreeManager,
        link_index: Optional[NotesLinkIndex] = None,
        step_timeout: Optional[float] = None,
    ):
        self.worktree_manager = worktree_manager
        self.config_dir = worktree_manager.config_dir
        self.link_index = link_index or NotesLinkIndex(self.config_dir)
        self.step_timeout = step_timeout or worktree_manager.config.step_timeout or DEFAULT_STEP_TIMEOUT

    # -- Configuration -------------------------------------------------------

    @property
    def config_path(self) -> Path:
        return self.config_dir / HOOKS_FILE_NAME

    def get_config(self) -> HooksConfig:
        return read_model(self.config_path, HooksConfig) or HooksConfig()

    def save_config(self, config: HooksConfig) -> HooksConfig:
        atomic_write_model(self.config_path, config)
        return config

    def add_step(self, name: str, command: str) -> HooksConfig:
        if not name.strip() or not command.strip():
            raise InvalidInputError("Step name and command are required")
        config = self.get_config()
        config.steps.append(HookStep(id=new_step_id(), name=name, command=command, enabled=True))
        return self.save_config(config)

    def update_step(
        self,
        step_id: str,
        name: Optional[str] = None,
        command: Optional[str] = None,
        enabled: Optional[bool] = None,
        trigger: Optional[HookTrigger] = None,
    ) -> HooksConfig:
        config = self.get_config()
        step = self._find_step(config, step_id)
        if name is not None:
            step.name = name
        if command is not None:
            step.command = command
        if enabled is not None:
            step.enabled = enabled
        if trigger is not None:
            step.trigger = trigger
        return self.save_config(config)

    def remove_step(self, step_id: str) -> HooksConfig:
        config = self.get_config()
        self._find_step(config, step_id)
        config.steps = [s for s in config.steps if s.id != step_id]
        return self.save_config(config)

    def _find_step(self, config: HooksConfig, step_id: str) -> HookStep:
        for step in config.steps:
            if step.id == step_id:
                return step
        raise NotFoundError(f"Step '{step_id}' not found")

    # -- Skills --------------------------------------------------------------

    def import_skill(
        self,
        skill_name: str,
        trigger: Optional[HookTrigger] = None,
        condition: Optional[str] = None,
        condition_title: Optional[str] = None,
    ) -> HooksConfig:
        """Add a skill under a trigger. Importing the same (skill, trigger) twice is a no-op."""
        if not skill_name.strip():
            raise InvalidInputError("Skill name is required")
        config = self.get_config()
        effective = trigger or HookTrigger.POST_IMPLEMENTATION
        if any(s.skill_name == skill_name and s.effective_trigger == effective for s in config.skills):
            return config
        config.skills.append(
            HookSkillRef(
                skill_name=skill_name,
                enabled=True,
                trigger=trigger,
                condition=condition or None,
                condition_title=condition_title or None,
            )
        )
        return self.save_config(config)

    def remove_skill(self, skill_name: str, trigger: Optional[HookTrigger] = None) -> HooksConfig:
        config = self.get_config()
        effective = trigger or HookTrigger.POST_IMPLEMENTATION
        config.skills = [
            s for s in config.skills
            if not (s.skill_name == skill_name and s.effective_trigger == effective)
        ]
        return self.save_config(config)

    def toggle_skill(
        self,
        skill_name: str,
        enabled: bool,
        trigger: Optional[HookTrigger] = None,
    ) -> HooksConfig:
        config = self.get_config()
        effective = trigger or HookTrigger.POST_IMPLEMENTATION
        for skill in config.skills:
            if skill.skill_name == skill_name and skill.effective_trigger == effective:
                skill.enabled = enabled
                return self.save_config(config)
        raise NotFoundError(f"Skill '{skill_name}' ({effective.value}) not found")

    def get_effective_skills(self, worktree_id: str) -> List[HookSkillRef]:
        """Skill refs with the linked issue's overrides applied.

        A worktree with no linked issue gets the global configuration unchanged.
        """
        config = self.get_config()
        overrides = {}
        linked = self.link_index.resolve_linked_issue(worktree_id)
        if linked is not None:
            overrides = self.link_index.get_hook_skill_overrides(linked.source, linked.issue_id)

        return [
            apply_override(skill, overrides.get(override_key(skill.effective_trigger.value, skill.skill_name)))
            for skill in config.skills
        ]

    def get_effective_config(self, worktree_id: str) -> HooksConfig:
        config = self.get_config()
        config.skills = self.get_effective_skills(worktree_id)
        return config

    # -- Skill results -------------------------------------------------------

    def _runs_dir(self, worktree_id: str) -> Path:
        return self.config_dir / RUNS_DIR_NAME / validate_worktree_id(worktree_id)

    def report_skill_result(self, worktree_id: str, result: SkillHookResult) -> None:
        """Store a skill result, replacing any earlier one for the same skill."""
        results = [r for r in self.get_skill_results(worktree_id) if r.skill_name != result.skill_name]
        results.append(result)
        atomic_write_json(
            self._runs_dir(worktree_id) / SKILL_RESULTS_FILE,
            _skill_results_adapter.dump_json(results, indent=2).decode(),
        )
        logger.info(
            f"Skill '{result.skill_name}' reported {'success' if result.success else 'failure'}",
            extra={"worktree_id": worktree_id},
        )
        self.worktree_manager.emit_hook_update(worktree_id)

    def get_skill_results(self, worktree_id: str) -> List[SkillHookResult]:
        path = self._runs_dir(worktree_id) / SKILL_RESULTS_FILE
        if not path.exists():
            return []
        try:
            return _skill_results_adapter.validate_json(path.read_text())
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable {path}: {e}")
            return []

    # -- Runs ----------------------------------------------------------------

    def get_status(self, worktree_id: str) -> Optional[PipelineRun]:
        try:
            return read_model(self._runs_dir(worktree_id) / LATEST_RUN_FILE, PipelineRun)
        except InvalidInputError:
            return None

    def _persist_run(self, run: PipelineRun) -> None:
        atomic_write_model(self._runs_dir(run.worktree_id) / LATEST_RUN_FILE, run)
        self.worktree_manager.emit_hook_update(run.worktree_id)

    async def run_all(self, worktree_id: str) -> PipelineRun:
        """Run every enabled post-implementation step concurrently.

        The run is failed if any step failed. With no enabled steps, or an
        unknown worktree, a synthetic failed run explains why.
        """
        config = self.get_config()
        steps = [
            s for s in config.steps
            if s.enabled and s.effective_trigger == HookTrigger.POST_IMPLEMENTATION
        ]
        if not steps:
            return self._synthetic_run(
                worktree_id,
                "_none",
                "No steps",
                "No enabled hook steps configured. Add or enable steps first.",
            )

        path = self.worktree_manager.get_worktree_path(worktree_id)
        if path is None:
            return self._synthetic_run(
                worktree_id, "_error", "Error", f"Worktree '{worktree_id}' not found",
            )

        run = PipelineRun(
            id=new_run_id(),
            worktree_id=worktree_id,
            status=RunStatus.RUNNING,
            steps=[
                StepResult(
                    step_id=s.id,
                    step_name=s.name,
                    command=s.command,
                    status=StepStatus.RUNNING,
                    started_at=utcnow(),
                )
                for s in steps
            ],
        )
        self._persist_run(run)
        logger.info(f"Running {len(steps)} hook step(s)", extra={"worktree_id": worktree_id})

        results = await asyncio.gather(*(self.execute_step(s, path) for s in steps))

        failed = [r for r in results if r.status == StepStatus.FAILED]
        run.steps = list(results)
        run.status = RunStatus.FAILED if failed else RunStatus.COMPLETED
        run.completed_at = utcnow()
        self._persist_run(run)
        logger.info(
            f"Hook run {run.id} {run.status.value} ({len(results) - len(failed)}/{len(results)} passed)",
            extra={"worktree_id": worktree_id},
        )
        return run

    async def run_single(self, worktree_id: str, step_id: str) -> StepResult:
        """Run one step out of band. The latest-run document is not touched."""
        config = self.get_config()
        step = next((s for s in config.steps if s.id == step_id), None)
        if step is None:
            return StepResult(
                step_id=step_id,
                step_name="Unknown",
                command="",
                status=StepStatus.FAILED,
                output=f"Step '{step_id}' not found",
            )

        path = self.worktree_manager.get_worktree_path(worktree_id)
        if path is None:
            return StepResult(
                step_id=step.id,
                step_name=step.name,
                command=step.command,
                status=StepStatus.FAILED,
                output=f"Worktree '{worktree_id}' not found",
            )
        return await self.execute_step(step, path)

    async def execute_step(self, step: HookStep, cwd: Path) -> StepResult:
        """Run a step's command; every outcome becomes a StepResult."""
        started_at = utcnow()
        start = time.monotonic()

        try:
            result = await run_shell_command(
                step.command,
                cwd=cwd,
                timeout=self.step_timeout,
                extra_env={"FORCE_COLOR": "0"},
                check=False,
            )
        except CommandFailedError as e:
            # The shell itself could not be started
            status, output = StepStatus.FAILED, e.output or e.message
        else:
            if result.timed_out:
                status = StepStatus.FAILED
                output = f"Timed out after {self.step_timeout:g}s"
                if result.output:
                    output = f"{result.output}\n{output}"
            elif result.returncode == 0:
                status, output = StepStatus.PASSED, result.output or NO_OUTPUT
            else:
                status = StepStatus.FAILED
                output = result.output or f"Exited with code {result.returncode}"

        return StepResult(
            step_id=step.id,
            step_name=step.name,
            command=step.command,
            status=status,
            output=output,
            started_at=started_at,
            completed_at=utcnow(),
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    def _synthetic_run(self, worktree_id: str, step_id: str, step_name: str, message: str) -> PipelineRun:
        now = utcnow()
        return PipelineRun(
            id=new_run_id(),
            worktree_id=worktree_id,
            status=RunStatus.FAILED,
            started_at=now,
            completed_at=now,
            steps=[
                StepResult(
                    step_id=step_id,
                    step_name=step_name,
                    command="",
                    status=StepStatus.FAILED,
                    output=message,
                )
            ],
        )
