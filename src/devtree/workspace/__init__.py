"""Worktree discovery, port allocation, process supervision and lifecycle management."""

from .inspector import get_worktree_branch, scan_worktrees
from .manager import WorktreeManager, overlay_runtime
from .models import OperationResult, ScannedWorktree, Worktree, WorktreeStatus
from .port_allocator import PortAllocator, detect_env_mapping
from .supervisor import LogBuffer, ProcessSupervisor, RunningProcess

__all__ = [
    "get_worktree_branch",
    "scan_worktrees",
    "WorktreeManager",
    "overlay_runtime",
    "OperationResult",
    "ScannedWorktree",
    "Worktree",
    "WorktreeStatus",
    "PortAllocator",
    "detect_env_mapping",
    "LogBuffer",
    "ProcessSupervisor",
    "RunningProcess",
]
