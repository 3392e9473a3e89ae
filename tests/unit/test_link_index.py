"""Tests for the issue notes link index."""

import json

from devtree.notes.link_index import IssueRef, NotesLinkIndex, SkillOverride


def _write(config_dir, source, issue_id, document):
    path = config_dir / "issues" / source / issue_id / "notes.json"
    path.parent.mkdir(parents=True)
    path.write_text(document if isinstance(document, str) else json.dumps(document))


class TestNotesLinkIndex:
    def test_resolves_linked_issue(self, config_dir):
        _write(config_dir, "jira", "PROJ-1", {"linkedWorktreeId": "login"})
        _write(config_dir, "local", "todo-2", {"linked_worktree_id": "signup"})
        _write(config_dir, "linear", "ENG-3", {"title": "unlinked"})

        index = NotesLinkIndex(config_dir)

        assert index.build_link_map() == {
            "login": IssueRef(source="jira", issue_id="PROJ-1"),
            "signup": IssueRef(source="local", issue_id="todo-2"),
        }
        assert index.resolve_linked_issue("login").issue_id == "PROJ-1"
        assert index.resolve_linked_issue("nope") is None

    def test_overrides(self, config_dir):
        _write(config_dir, "jira", "PROJ-1", {
            "hookSkills": {"post-implementation:review": "disable"},
        })

        overrides = NotesLinkIndex(config_dir).get_hook_skill_overrides("jira", "PROJ-1")

        assert overrides == {"post-implementation:review": SkillOverride.DISABLE}

    def test_corrupt_notes_are_ignored(self, config_dir):
        _write(config_dir, "jira", "BROKEN-1", "{not json")
        _write(config_dir, "jira", "PROJ-2", {"linkedWorktreeId": "login"})

        index = NotesLinkIndex(config_dir)

        assert index.load_notes("jira", "BROKEN-1") is None
        assert set(index.build_link_map()) == {"login"}
        assert index.get_hook_skill_overrides("jira", "BROKEN-1") == {}

    def test_no_issues_dir(self, config_dir):
        index = NotesLinkIndex(config_dir)
        assert index.build_link_map() == {}
        assert index.get_hook_skill_overrides("jira", "X") == {}
