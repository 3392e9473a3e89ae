"""Consumer side of the issue notes store."""

from .link_index import IssueNotes, IssueRef, NotesLinkIndex, SkillOverride, override_key

__all__ = ["IssueNotes", "IssueRef", "NotesLinkIndex", "SkillOverride", "override_key"]
