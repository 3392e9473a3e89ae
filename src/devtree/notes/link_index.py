"""Read-only view of the issue notes store.

The notes store (owned elsewhere) keeps one document per issue at
``<config_dir>/issues/<source>/<issue_id>/notes.json``. The hooks pipeline
only needs two things from it: which issue a worktree was created for, and
that issue's per-skill overrides.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

ISSUE_SOURCES = ("jira", "linear", "local")
NOTES_FILE_NAME = "notes.json"


class SkillOverride(str, Enum):
    INHERIT = "inherit"
    ENABLE = "enable"
    DISABLE = "disable"


class IssueRef(BaseModel):
    source: str
    issue_id: str


class IssueNotes(BaseModel):
    """The parts of a notes document this package reads."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    linked_worktree_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("linked_worktree_id", "linkedWorktreeId"),
    )
    # "<trigger>:<skillName>" -> override
    hook_skills: Dict[str, SkillOverride] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("hook_skills", "hookSkills"),
    )


def override_key(trigger: str, skill_name: str) -> str:
    return f"{trigger}:{skill_name}"


class NotesLinkIndex:
    """Resolves worktree -> issue links and per-issue skill overrides from disk."""

    def __init__(self, config_dir: Path):
        self.issues_dir = Path(config_dir) / "issues"

    def _notes_path(self, source: str, issue_id: str) -> Path:
        return self.issues_dir / source / issue_id / NOTES_FILE_NAME

    def load_notes(self, source: str, issue_id: str) -> Optional[IssueNotes]:
        path = self._notes_path(source, issue_id)
        if not path.is_file():
            return None
        try:
            return IssueNotes.model_validate(json.loads(path.read_text()))
        except (OSError, ValueError, ValidationError) as e:
            # Corrupt notes must not break the pipeline
            logger.warning(f"Ignoring unreadable notes file {path}: {e}")
            return None

    def build_link_map(self) -> Dict[str, IssueRef]:
        """worktree id -> issue, scanning every notes document."""
        links: Dict[str, IssueRef] = {}
        for source in ISSUE_SOURCES:
            source_dir = self.issues_dir / source
            if not source_dir.is_dir():
                continue
            for entry in sorted(source_dir.iterdir()):
                if not entry.is_dir():
                    continue
                notes = self.load_notes(source, entry.name)
                if notes and notes.linked_worktree_id:
                    links[notes.linked_worktree_id] = IssueRef(source=source, issue_id=entry.name)
        return links

    def resolve_linked_issue(self, worktree_id: str) -> Optional[IssueRef]:
        return self.build_link_map().get(worktree_id)

    def get_hook_skill_overrides(self, source: str, issue_id: str) -> Dict[str, SkillOverride]:
        notes = self.load_notes(source, issue_id)
        return dict(notes.hook_skills) if notes else {}
