"""Merges per-dependency static archives into one library per platform,
and single-architecture libraries into universal ones."""

import os
from pathlib import Path
from typing import Callable, List

from .builders import install_from_build_tree
from .config import ConfigLoader
from .exceptions import MissingArtifactError
from .models import SliceConfig, TaskOutput
from .store import ArtifactStore
from .utils import Logger, run_command

Runner = Callable[..., object]


def _require(paths: List[Path], what: str) -> None:
    for path in paths:
        if not path.is_file():
            raise MissingArtifactError(path, what)


def _partial_path(target: Path) -> Path:
    return target.with_name(target.name + ".partial")


class PlatformLinker:
    """Archives the static libraries of all dependencies of one platform
    into a single static library.

    This is an archive merge, not a link: member objects are concatenated
    and symbol conflicts are left alone.
    """

    def __init__(self, store: ArtifactStore, config: ConfigLoader, logger: Logger,
                 runner: Runner = run_command):
        self.store = store
        self.config = config
        self.logger = logger
        self.runner = runner

    def input_libraries(self, platform: str) -> List[Path]:
        """Static archives merged for a platform, in build order"""
        libraries = []
        for name in self.config.get_build_order():
            dep = self.config.get_dependency_config(name)
            libraries.extend(self.store.installed_libraries(dep, platform))
        return libraries

    def recover_install(self, platform: str, output: TaskOutput) -> None:
        """Copy libgit2's raw archive and headers from its build tree when
        the install step left nothing behind."""
        dep = self.config.get_dependency_by_role("source-control")
        if all(path.is_file() for path in self.store.installed_libraries(dep, platform)):
            return

        source_dir = self.store.source_dir(dep, platform)
        output.write(f"Note: {dep.name} archive not in install directory, "
                     "copying from build directory...")
        self.logger.warning(f"{dep.name} ({platform}): install tree incomplete, "
                            f"recovering from {source_dir / 'build'}")
        install_from_build_tree(
            build_dir=source_dir / "build",
            include_dir=source_dir / "include",
            install_dir=self.store.install_dir(dep, platform),
            libraries=dep.outputs.libraries,
            output=output
        )

    def link(self, platform: str, output: TaskOutput) -> Path:
        """Produce the combined library for one platform"""
        self.recover_install(platform, output)

        libraries = self.input_libraries(platform)
        _require(libraries, f"static library for {platform}")

        target = self.store.combined_library(platform)
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = _partial_path(target)
        partial.unlink(missing_ok=True)

        cmd = ["libtool", "-static", "-o", str(partial)] + [str(lib) for lib in libraries]
        self.runner(cmd, output, cwd=self.store.root_dir, logger=self.logger)
        _require([partial], f"libtool output for {platform}")
        os.replace(partial, target)
        output.write(f"Created {target}")
        return target


class FatBinaryMerger:
    """Combines the single-architecture libraries of a slice into one
    universal library with lipo"""

    def __init__(self, store: ArtifactStore, logger: Logger, runner: Runner = run_command):
        self.store = store
        self.logger = logger
        self.runner = runner

    def merge(self, slice_config: SliceConfig, output: TaskOutput) -> Path:
        """Produce the universal library of a dual-architecture slice"""
        inputs = [self.store.combined_library(p) for p in slice_config.platforms]
        _require(inputs, f"single-architecture library for {slice_config.name}")

        target = self.store.fat_library(slice_config)
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = _partial_path(target)
        partial.unlink(missing_ok=True)

        cmd = ["lipo"] + [str(path) for path in inputs] + ["-create", "-output", str(partial)]
        self.runner(cmd, output, cwd=self.store.root_dir, logger=self.logger)
        _require([partial], f"lipo output for {slice_config.name}")
        os.replace(partial, target)
        output.write(f"Created fat binary {target}")
        return target


__all__ = ["PlatformLinker", "FatBinaryMerger"]
