"""FastAPI server exposing worktree, pipeline and event endpoints."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from ..errors import DevtreeError
from ..errors.translator import ErrorTranslator
from ..hooks.manager import HooksManager
from ..hooks.models import HooksConfig, HookTrigger, PipelineRun, SkillHookResult, StepResult
from ..notes.link_index import NotesLinkIndex
from ..workspace.manager import WorktreeManager
from ..workspace.models import OperationResult, Worktree
from .events import event_stream
from .models import (
    AddStepRequest,
    CreateWorktreeRequest,
    DetectEnvRequest,
    DetectEnvResponse,
    ErrorTranslationResponse,
    ImportSkillRequest,
    LogsResponse,
    PortsResponse,
    RenameWorktreeRequest,
    SuccessResponse,
    TranslateErrorRequest,
    UpdateSkillRequest,
    UpdateStepRequest,
)

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "INVALID_INPUT": 400,
    "NOT_FOUND": 404,
    "WORKTREE_EXISTS": 409,
    "CONFLICT": 409,
    "CAPACITY_EXCEEDED": 429,
}


def status_for(code: Optional[str], default: int = 500) -> int:
    return STATUS_BY_CODE.get(code or "", default)


def result_response(result: OperationResult, success_status: int = 200, failure_status: int = 500) -> JSONResponse:
    """Render an OperationResult, mapping failure codes to HTTP statuses."""
    if result.success:
        return JSONResponse(status_code=success_status, content=result.to_response())
    return JSONResponse(
        status_code=status_for(result.code, failure_status),
        content=result.to_response(),
    )


def http_error(error: DevtreeError) -> HTTPException:
    return HTTPException(status_code=status_for(error.code, 400), detail=error.message)


def create_app(
    config_dir: Path,
    manager: Optional[WorktreeManager] = None,
    hooks: Optional[HooksManager] = None,
) -> FastAPI:
    """Create FastAPI application with all routes.

    The WorktreeManager is the single owner of process and port state; it is
    created here once and shared by every request through app.state.
    """
    manager = manager or WorktreeManager(config_dir)
    hooks = hooks or HooksManager(manager, NotesLinkIndex(manager.config_dir))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down, stopping running worktrees")
        await app.state.manager.close()

    app = FastAPI(
        title="devtree",
        description="Worktree and dev-server orchestration",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS for the UI dev server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.manager = manager
    app.state.hooks = hooks
    app.state.translator = ErrorTranslator()

    register_routes(app)
    return app


def register_routes(app: FastAPI):
    """Register all API routes."""

    # ============== Worktrees ==============

    @app.get("/api/worktrees", response_model=List[Worktree])
    async def list_worktrees():
        return app.state.manager.list_worktrees()

    @app.post("/api/worktrees")
    async def create_worktree(request: CreateWorktreeRequest):
        result = await app.state.manager.create_worktree(request.branch, request.name)
        return result_response(result, success_status=201, failure_status=400)

    @app.patch("/api/worktrees/{worktree_id}")
    async def rename_worktree(worktree_id: str, request: RenameWorktreeRequest):
        result = await app.state.manager.rename_worktree(worktree_id, request.name, request.branch)
        return result_response(result, failure_status=400)

    @app.delete("/api/worktrees/{worktree_id}")
    async def remove_worktree(worktree_id: str):
        return result_response(await app.state.manager.remove_worktree(worktree_id))

    @app.post("/api/worktrees/{worktree_id}/start")
    async def start_worktree(worktree_id: str):
        return result_response(await app.state.manager.start_worktree(worktree_id))

    @app.post("/api/worktrees/{worktree_id}/stop")
    async def stop_worktree(worktree_id: str):
        return result_response(await app.state.manager.stop_worktree(worktree_id))

    @app.get("/api/worktrees/{worktree_id}/logs", response_model=LogsResponse)
    async def get_logs(worktree_id: str):
        return LogsResponse(worktree_id=worktree_id, lines=app.state.manager.get_logs(worktree_id))

    # ============== Configuration ==============

    @app.get("/api/config")
    async def get_config():
        return app.state.manager.config.model_dump(mode="json")

    @app.get("/api/ports", response_model=PortsResponse)
    async def get_ports():
        return app.state.manager.ports_info()

    @app.post("/api/detect-env", response_model=DetectEnvResponse)
    async def detect_env(request: Optional[DetectEnvRequest] = None):
        save = request.save if request else True
        try:
            mapping = app.state.manager.detect_env_mapping(save=save)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return DetectEnvResponse(env_mapping=mapping, saved=save and bool(mapping))

    # ============== Hooks configuration ==============

    @app.get("/api/hooks/config", response_model=HooksConfig)
    async def get_hooks_config():
        return app.state.hooks.get_config()

    @app.put("/api/hooks/config", response_model=HooksConfig)
    async def save_hooks_config(config: HooksConfig):
        return app.state.hooks.save_config(config)

    @app.post("/api/hooks/steps", response_model=HooksConfig)
    async def add_step(request: AddStepRequest):
        try:
            return app.state.hooks.add_step(request.name, request.command)
        except DevtreeError as e:
            raise http_error(e)

    @app.patch("/api/hooks/steps/{step_id}", response_model=HooksConfig)
    async def update_step(step_id: str, request: UpdateStepRequest):
        try:
            return app.state.hooks.update_step(
                step_id,
                name=request.name,
                command=request.command,
                enabled=request.enabled,
                trigger=request.trigger,
            )
        except DevtreeError as e:
            raise http_error(e)

    @app.delete("/api/hooks/steps/{step_id}", response_model=HooksConfig)
    async def remove_step(step_id: str):
        try:
            return app.state.hooks.remove_step(step_id)
        except DevtreeError as e:
            raise http_error(e)

    @app.post("/api/hooks/skills/import", response_model=HooksConfig)
    async def import_skill(request: ImportSkillRequest):
        try:
            return app.state.hooks.import_skill(
                request.skill_name,
                trigger=request.trigger,
                condition=request.condition,
                condition_title=request.condition_title,
            )
        except DevtreeError as e:
            raise http_error(e)

    @app.patch("/api/hooks/skills/{skill_name}", response_model=HooksConfig)
    async def toggle_skill(skill_name: str, request: UpdateSkillRequest):
        try:
            return app.state.hooks.toggle_skill(skill_name, request.enabled, trigger=request.trigger)
        except DevtreeError as e:
            raise http_error(e)

    @app.delete("/api/hooks/skills/{skill_name}", response_model=HooksConfig)
    async def remove_skill(skill_name: str, trigger: Optional[HookTrigger] = Query(default=None)):
        return app.state.hooks.remove_skill(skill_name, trigger=trigger)

    # ============== Hooks per worktree ==============

    @app.get("/api/worktrees/{worktree_id}/hooks/effective-config", response_model=HooksConfig)
    async def get_effective_config(worktree_id: str):
        return app.state.hooks.get_effective_config(worktree_id)

    @app.post("/api/worktrees/{worktree_id}/hooks/run", response_model=PipelineRun)
    async def run_hooks(worktree_id: str):
        return await app.state.hooks.run_all(worktree_id)

    @app.post("/api/worktrees/{worktree_id}/hooks/run/{step_id}", response_model=StepResult)
    async def run_hook_step(worktree_id: str, step_id: str):
        return await app.state.hooks.run_single(worktree_id, step_id)

    @app.get("/api/worktrees/{worktree_id}/hooks/status", response_model=Optional[PipelineRun])
    async def get_hook_status(worktree_id: str):
        return app.state.hooks.get_status(worktree_id)

    @app.post("/api/worktrees/{worktree_id}/hooks/report", response_model=SuccessResponse)
    async def report_skill_result(worktree_id: str, result: SkillHookResult):
        try:
            app.state.hooks.report_skill_result(worktree_id, result)
        except DevtreeError as e:
            raise http_error(e)
        return SuccessResponse(message=f"Recorded result for {result.skill_name}")

    @app.get("/api/worktrees/{worktree_id}/hooks/skill-results", response_model=List[SkillHookResult])
    async def get_skill_results(worktree_id: str):
        try:
            return app.state.hooks.get_skill_results(worktree_id)
        except DevtreeError as e:
            raise http_error(e)

    # ============== Events ==============

    @app.get("/api/events")
    async def events(request: Request):
        return StreamingResponse(
            event_stream(app.state.manager, request),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    # ============== Error Translation API ==============

    @app.post("/api/errors/translate", response_model=ErrorTranslationResponse)
    async def translate_error(request: TranslateErrorRequest):
        """Translate technical error to user-friendly format."""
        friendly = app.state.translator.translate(request.error_message)
        return ErrorTranslationResponse(
            title=friendly.title,
            explanation=friendly.explanation,
            actions=friendly.actions,
        )


def run_server(
    config_dir: Path,
    host: str = "127.0.0.1",
    port: Optional[int] = None,
):
    """Run the devtree server until interrupted.

    Args:
        config_dir: The project's .devtree directory
        host: Interface to bind
        port: Server port (defaults to server_port from config)
    """
    import uvicorn

    app = create_app(config_dir)
    port = port or app.state.manager.config.server_port

    logger.info(f"Starting devtree server at http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="info")
