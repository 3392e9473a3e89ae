"""Tests for atomic JSON persistence."""

from devtree.hooks.models import HookStep, HooksConfig
from devtree.utils.atomic_io import atomic_write_json, atomic_write_model, read_model


class TestAtomicIO:
    def test_write_creates_parents_and_leaves_no_temp_files(self, tmp_path):
        target = tmp_path / "runs" / "login" / "latest-run.json"

        atomic_write_json(target, '{"a": 1}')

        assert target.read_text() == '{"a": 1}'
        assert [p.name for p in target.parent.iterdir()] == ["latest-run.json"]

    def test_model_round_trip(self, tmp_path):
        config = HooksConfig(steps=[HookStep(id="s1", name="Lint", command="npm run lint")])
        atomic_write_model(tmp_path / "hooks.json", config)
        assert read_model(tmp_path / "hooks.json", HooksConfig) == config

    def test_missing_or_corrupt_reads_as_none(self, tmp_path):
        assert read_model(tmp_path / "missing.json", HooksConfig) is None
        (tmp_path / "bad.json").write_text("{oops")
        assert read_model(tmp_path / "bad.json", HooksConfig) is None
