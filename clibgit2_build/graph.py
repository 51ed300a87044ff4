"""
Task graph construction
"""

from collections import OrderedDict
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .builders import BUILDER_MAP, BaseBuilder
from .config import ConfigLoader
from .exceptions import GraphError
from .fetch import SourceFetcher
from .linker import FatBinaryMerger, PlatformLinker
from .models import BuildTask, DependencyConfig, PlatformConfig, SliceConfig, Stage, TaskOutput
from .packager import Packager
from .platform import PlatformRegistry
from .store import ArtifactStore
from .utils import Logger


def _touch(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch()


class TaskGraph:
    """A set of tasks keyed by output path.

    An input of one task that is the output of another task is an edge:
    the first task requires the second.
    """

    def __init__(self, tasks: Iterable[BuildTask]):
        self.tasks: "OrderedDict[str, BuildTask]" = OrderedDict()
        for task in tasks:
            if task.key in self.tasks:
                raise GraphError(f"Two tasks produce {task.output}: "
                                 f"{self.tasks[task.key].name} and {task.name}")
            self.tasks[task.key] = task

        self._requires: Dict[str, List[str]] = {
            key: [str(p) for p in task.inputs if str(p) in self.tasks]
            for key, task in self.tasks.items()
        }
        self._dependents: Dict[str, List[str]] = {key: [] for key in self.tasks}
        for key, required in self._requires.items():
            for req in required:
                self._dependents[req].append(key)

        self._order = self._topological_order()

    def __len__(self) -> int:
        return len(self.tasks)

    def __iter__(self):
        return iter(self.tasks.values())

    def __contains__(self, key: str) -> bool:
        return key in self.tasks

    def get(self, key: str) -> BuildTask:
        return self.tasks[key]

    def find(self, name: str) -> BuildTask:
        """Look a task up by its display name, e.g. 'build:openssl:iphoneos'"""
        for task in self.tasks.values():
            if task.name == name:
                return task
        raise KeyError(name)

    def requires(self, key: str) -> List[str]:
        """Keys of the tasks whose outputs this task consumes"""
        return list(self._requires[key])

    def order(self) -> List[BuildTask]:
        """Tasks in a deterministic dependency order"""
        return [self.tasks[key] for key in self._order]

    def _topological_order(self) -> List[str]:
        remaining = {key: len(required) for key, required in self._requires.items()}
        ready = [key for key in self.tasks if remaining[key] == 0]
        order = []
        while ready:
            key = ready.pop(0)
            order.append(key)
            for dependent in self._dependents[key]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)

        if len(order) != len(self.tasks):
            cyclic = [self.tasks[k].name for k in self.tasks if k not in order]
            raise GraphError(f"Dependency cycle between: {', '.join(cyclic)}")
        return order


class TaskGraphBuilder:
    """Declares every task of a build for a set of platforms.

    For each platform and dependency: fetch -> build (configure and compile)
    -> install, where a library's build also requires the installs of the
    libraries it depends on. Then one link per platform, one merge per
    universal slice and one package task, as far as the selected platforms
    allow. Building the graph performs no I/O.
    """

    def __init__(self,
                 config: ConfigLoader,
                 store: ArtifactStore,
                 registry: PlatformRegistry,
                 logger: Logger,
                 fetcher: Optional[SourceFetcher] = None,
                 linker: Optional[PlatformLinker] = None,
                 merger: Optional[FatBinaryMerger] = None,
                 packager: Optional[Packager] = None):
        self.config = config
        self.store = store
        self.registry = registry
        self.logger = logger
        self.fetcher = fetcher or SourceFetcher(timeout=config.options.download_timeout)
        self.linker = linker or PlatformLinker(store, config, logger)
        self.merger = merger or FatBinaryMerger(store, logger)
        self.packager = packager or Packager(store, config, logger)

    def make_builder(self, dep: DependencyConfig, platform: PlatformConfig) -> BaseBuilder:
        builder_class = BUILDER_MAP.get(dep.build_system)
        if not builder_class:
            raise ValueError(f"Unknown build system: {dep.build_system}")
        return builder_class(dep, platform, self.store, self.registry, self.config, self.logger)

    def build(self, platform_names: Optional[List[str]] = None) -> TaskGraph:
        """
        Create the task graph

        Args:
            platform_names: Platforms to build, all configured ones when empty

        Returns:
            The validated task graph
        """
        platforms = self.registry.resolve(platform_names)
        deps = [self.config.get_dependency_config(name) for name in self.config.get_build_order()]

        tasks: List[BuildTask] = [self._download_task(dep) for dep in deps]
        for platform in platforms:
            for dep in deps:
                tasks.extend(self._dependency_chain(dep, platform))
            tasks.append(self._link_task(platform))

        selected = {p.name for p in platforms}
        slices = self.config.get_slices()
        for slice_config in slices:
            if slice_config.is_universal and selected.issuperset(slice_config.platforms):
                tasks.append(self._merge_task(slice_config))

        if all(selected.issuperset(s.platforms) for s in slices):
            tasks.append(self._package_task())
        else:
            self.logger.info("Not all platforms selected, skipping the framework")

        return TaskGraph(tasks)

    def _download_task(self, dep: DependencyConfig) -> BuildTask:
        archive = self.store.archive_path(dep)

        def action(output: TaskOutput):
            self.fetcher.download(dep, archive, output)

        return BuildTask(
            stage=Stage.DOWNLOAD,
            dependency=dep.name,
            output=archive,
            lock=f"download:{dep.name}",
            description=f"Download {dep.name} {dep.version}",
            action=action,
        )

    def _dependency_chain(self, dep: DependencyConfig, platform: PlatformConfig) -> List[BuildTask]:
        builder = self.make_builder(dep, platform)
        workdir = str(self.store.source_dir(dep, platform.name))
        archive = self.store.archive_path(dep)
        fetch_stamp = self.store.fetch_stamp(dep, platform.name)
        build_stamp = self.store.build_stamp(dep, platform.name)
        install_output = self.store.install_output(dep, platform.name)

        def fetch(output: TaskOutput):
            self.fetcher.extract(dep, archive, self.store.source_dir(dep, platform.name), output)
            _touch(fetch_stamp)

        def configure_and_compile(output: TaskOutput) -> bool:
            if not builder.compile(output):
                return False
            _touch(build_stamp)
            return True

        def install(output: TaskOutput) -> bool:
            installed = builder.install_and_verify(output)
            if not installed and dep.role == "source-control":
                self.linker.recover_install(platform.name, output)
                installed = builder.verify(output)
            return installed

        build_inputs = [fetch_stamp]
        for required in dep.dependencies:
            required_dep = self.config.get_dependency_config(required)
            build_inputs.append(self.store.install_output(required_dep, platform.name))

        return [
            BuildTask(
                stage=Stage.FETCH,
                dependency=dep.name,
                platform=platform.name,
                inputs=(archive,),
                output=fetch_stamp,
                lock=workdir,
                description=f"Extract {dep.archive} for {platform.name}",
                action=fetch,
            ),
            BuildTask(
                stage=Stage.BUILD,
                dependency=dep.name,
                platform=platform.name,
                inputs=tuple(build_inputs),
                output=build_stamp,
                lock=workdir,
                description=f"Configure and compile {dep.name} for {platform.name}",
                action=configure_and_compile,
            ),
            BuildTask(
                stage=Stage.INSTALL,
                dependency=dep.name,
                platform=platform.name,
                inputs=(build_stamp,),
                output=install_output,
                lock=workdir,
                description=f"Install {dep.name} for {platform.name}",
                action=install,
            ),
        ]

    def _link_task(self, platform: PlatformConfig) -> BuildTask:
        target = self.store.combined_library(platform.name)

        def action(output: TaskOutput):
            self.linker.link(platform.name, output)

        return BuildTask(
            stage=Stage.LINK,
            platform=platform.name,
            inputs=tuple(self.linker.input_libraries(platform.name)),
            output=target,
            lock=str(target.parent),
            description=f"Merge static libraries for {platform.name}",
            action=action,
        )

    def _merge_task(self, slice_config: SliceConfig) -> BuildTask:
        target = self.store.fat_library(slice_config)

        def action(output: TaskOutput):
            self.merger.merge(slice_config, output)

        return BuildTask(
            stage=Stage.MERGE,
            platform=slice_config.name,
            inputs=tuple(self.store.combined_library(p) for p in slice_config.platforms),
            output=target,
            lock=str(target.parent),
            description=f"Create fat binary for {slice_config.name}",
            action=action,
        )

    def _package_task(self) -> BuildTask:
        inputs = [library for library, _ in self.packager.slice_inputs()]
        inputs.append(self.packager.modulemap)

        def action(output: TaskOutput):
            self.packager.package(output)

        return BuildTask(
            stage=Stage.PACKAGE,
            inputs=tuple(inputs),
            output=self.store.framework_marker(),
            lock=str(self.store.framework_dir),
            description=f"Create {self.store.framework_dir.name}",
            action=action,
        )


__all__ = ["TaskGraph", "TaskGraphBuilder"]
