import itertools
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from clibgit2_build.config import ConfigLoader
from clibgit2_build.graph import TaskGraph, TaskGraphBuilder
from clibgit2_build.models import Stage
from clibgit2_build.platform import PlatformRegistry
from clibgit2_build.store import ArtifactStore
from clibgit2_build.utils import Logger

_logger_ids = itertools.count()


def fake_sdk_path(sdk):
    return f"/Applications/Xcode.app/SDKs/{sdk}.sdk"


@pytest.fixture
def config():
    return ConfigLoader()


@pytest.fixture
def store(tmp_path, config):
    return ArtifactStore(tmp_path / "project", config)


@pytest.fixture
def registry(config):
    return PlatformRegistry(config, sdk_resolver=fake_sdk_path, host_arch="arm64")


@pytest.fixture
def log_file(tmp_path):
    return tmp_path / "logs" / "build.log"


@pytest.fixture
def logger(log_file):
    log = Logger(verbose=True, log_file=log_file, name=f"clibgit2_build.test{next(_logger_ids)}")
    yield log
    log.close()


@pytest.fixture
def graph_builder(config, store, registry, logger):
    return TaskGraphBuilder(config, store, registry, logger)


class FakeActions:
    """Replaces task actions with ones that only create the expected files."""

    def __init__(self, config, store):
        self.config = config
        self.store = store
        self.calls = []
        self.failing = set()

    def make(self, task):
        def action(output):
            self.calls.append(task.name)
            output.write(f"running {task.name}")
            if task.name in self.failing:
                output.write("simulated failure")
                return False
            targets = [task.output]
            if task.stage == Stage.INSTALL:
                dep = self.config.get_dependency_config(task.dependency)
                targets = self.store.installed_libraries(dep, task.platform)
            for path in targets:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.touch()
            return True
        return action

    def apply(self, graph):
        return TaskGraph(task.model_copy(update={"action": self.make(task)}) for task in graph)


@pytest.fixture
def fake_actions(config, store):
    return FakeActions(config, store)
