"""Shared fixtures for unit tests."""

from pathlib import Path

import pytest

from devtree.core.config import DevtreeConfig, PortsConfig, clear_config_cache
from devtree.workspace.manager import WorktreeManager


@pytest.fixture(autouse=True)
def _clear_config_cache():
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def config_dir(tmp_path) -> Path:
    path = tmp_path / "repo" / ".devtree"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def test_config() -> DevtreeConfig:
    return DevtreeConfig(
        start_command="sleep 30",
        install_command="",
        auto_install=False,
        base_branch="main",
        ports=PortsConfig(discovered=[3000, 4000], offset_step=10),
        max_instances=2,
        ready_timeout=0.2,
        stop_timeout=2,
        step_timeout=5,
        echo_logs=False,
    )


@pytest.fixture
def manager(config_dir, test_config) -> WorktreeManager:
    return WorktreeManager(config_dir, config=test_config)
