"""
Directory layout of everything the build downloads and produces
"""

import shutil
from pathlib import Path
from typing import List

from .config import ConfigLoader
from .models import DependencyConfig, SliceConfig


class ArtifactStore:
    """Maps dependencies, platforms and slices to paths under the project root.

    Every per-platform path contains the platform name, so no two platforms
    ever write to the same place.
    """

    def __init__(self, root_dir: Path, config: ConfigLoader):
        self.root_dir = Path(root_dir).resolve()
        self.config = config
        self.options = config.options

    @property
    def dependencies_dir(self) -> Path:
        return self.root_dir / self.options.dependencies_dir

    @property
    def log_file(self) -> Path:
        return self.root_dir / self.options.log_file

    @property
    def cache_dir(self) -> Path:
        return self.root_dir / self.options.cache_dir

    @property
    def framework_dir(self) -> Path:
        return self.root_dir / f"{self.options.framework_name}.xcframework"

    def archive_path(self, dep: DependencyConfig) -> Path:
        """Downloaded archive, shared by all platforms"""
        return self.dependencies_dir / dep.archive

    def source_dir(self, dep: DependencyConfig, platform: str) -> Path:
        """Extracted source tree owned by one platform"""
        return self.dependencies_dir / f"{dep.source_dir}-{platform}"

    def fetch_stamp(self, dep: DependencyConfig, platform: str) -> Path:
        return self.source_dir(dep, platform) / ".fetched"

    def build_stamp(self, dep: DependencyConfig, platform: str) -> Path:
        return self.source_dir(dep, platform) / ".built"

    def install_dir(self, dep: DependencyConfig, platform: str) -> Path:
        return self.root_dir / dep.install_prefix / platform

    def installed_library(self, dep: DependencyConfig, platform: str, library: str) -> Path:
        return self.install_dir(dep, platform) / "lib" / library

    def install_output(self, dep: DependencyConfig, platform: str) -> Path:
        """The file whose presence marks a finished install"""
        return self.installed_library(dep, platform, dep.outputs.libraries[0])

    def installed_libraries(self, dep: DependencyConfig, platform: str) -> List[Path]:
        return [self.installed_library(dep, platform, lib) for lib in dep.outputs.libraries]

    def _top_dependency(self) -> DependencyConfig:
        """The dependency whose install tree also hosts the combined library"""
        return self.config.get_dependency_by_role("source-control")

    def headers_dir(self, platform: str) -> Path:
        return self.install_dir(self._top_dependency(), platform) / "include"

    def combined_library(self, platform: str) -> Path:
        return (self.install_dir(self._top_dependency(), platform) / "lib"
                / self.options.combined_library)

    def fat_library(self, slice_config: SliceConfig) -> Path:
        prefix = self._top_dependency().install_prefix
        return (self.root_dir / prefix / f"{slice_config.name}-fat" / "lib"
                / self.options.combined_library)

    def slice_library(self, slice_config: SliceConfig) -> Path:
        """Library packaged for a slice, fat or single architecture"""
        if slice_config.is_universal:
            return self.fat_library(slice_config)
        return self.combined_library(slice_config.platforms[0])

    def framework_marker(self) -> Path:
        return self.framework_dir / "Info.plist"

    def install_roots(self) -> List[Path]:
        prefixes = sorted({self.config.get_dependency_config(name).install_prefix
                           for name in self.config.get_dependencies()})
        return [self.root_dir / prefix for prefix in prefixes]

    def clean(self) -> List[Path]:
        """Remove downloads, install trees, the framework, the cache and the log"""
        removed = self.clean_deps()
        for path in self.install_roots() + [self.framework_dir, self.cache_dir, self.log_file]:
            if _remove(path):
                removed.append(path)
        return removed

    def clean_deps(self) -> List[Path]:
        """Remove only the downloaded archives and extracted sources"""
        return [self.dependencies_dir] if _remove(self.dependencies_dir) else []

    def clean_platform(self, platform: str) -> List[Path]:
        """Remove one platform's sources, install trees and combined library"""
        self.config.get_platform_config(platform)
        removed = []
        for name in self.config.get_dependencies():
            dep = self.config.get_dependency_config(name)
            for path in (self.source_dir(dep, platform), self.install_dir(dep, platform)):
                if _remove(path):
                    removed.append(path)
        return removed


def _remove(path: Path) -> bool:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
        return True
    if path.exists() or path.is_symlink():
        path.unlink()
        return True
    return False


__all__ = ["ArtifactStore"]
