"""
Base builder class that all builders inherit from
"""

import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Any, Sequence

from ..config import ConfigLoader
from ..models import DependencyConfig, PlatformConfig, TaskOutput
from ..platform import PlatformRegistry
from ..store import ArtifactStore
from ..utils import Logger, run_command


class BaseBuilder(ABC):
    """Abstract base class for all builders.

    A builder drives one wrapped library's own build system for one
    platform. Creating a builder does no I/O, the environment and the SDK
    path are resolved when the first command runs.
    """

    def __init__(self,
                 dep: DependencyConfig,
                 platform: PlatformConfig,
                 store: ArtifactStore,
                 registry: PlatformRegistry,
                 config: ConfigLoader,
                 logger: Logger):
        """
        Initialize base builder

        Args:
            dep: Dependency record
            platform: Target platform record
            store: Path layout
            registry: Platform registry, resolves SDK paths and host arch
            config: Configuration loader
            logger: Logger instance
        """
        self.dep = dep
        self.name = dep.name
        self.platform = platform
        self.store = store
        self.registry = registry
        self.config = config
        self.logger = logger

        self.source_dir = store.source_dir(dep, platform.name)
        self.install_dir = store.install_dir(dep, platform.name)
        self._env: Optional[Dict[str, str]] = None

    @property
    def arch(self) -> str:
        return self.registry.arch(self.platform)

    @property
    def build_dir(self) -> Path:
        """Directory the compiled archives end up in"""
        return self.source_dir

    @property
    def env(self) -> Dict[str, str]:
        if self._env is None:
            self._env = self._setup_environment()
        return self._env

    def _setup_environment(self) -> Dict[str, str]:
        """Setup build environment variables"""
        env = os.environ.copy()

        # Let pkg-config find the libraries this one depends on
        pkgconfig_dirs = []
        for required in self.dep.dependencies:
            required_dep = self.config.get_dependency_config(required)
            pkgconfig_dirs.append(str(self.store.install_dir(required_dep, self.platform.name)
                                      / "lib" / "pkgconfig"))
        if pkgconfig_dirs:
            env["PKG_CONFIG_PATH"] = os.pathsep.join(pkgconfig_dirs)

        return env

    def replace_variables(self, text: str) -> str:
        """Replace variables in configuration strings"""
        replacements = {
            "{install_dir}": str(self.install_dir),
            "{source_dir}": str(self.source_dir),
            "{platform}": self.platform.name,
            "{arch}": self.arch,
            "{deployment_target}": self.config.options.deployment_target,
            "{cpu_count}": str(os.cpu_count() or 1),
        }
        for name in self.config.get_dependencies():
            other = self.config.get_dependency_config(name)
            replacements[f"{{{name}_prefix}}"] = str(self.store.install_dir(other, self.platform.name))

        # Only ask xcodebuild when the value is actually needed
        if "{sdk_path}" in text:
            replacements["{sdk_path}"] = self.registry.sdk_path(self.platform)

        for key, value in replacements.items():
            text = text.replace(key, value)
        return text

    def replace_all(self, values: Sequence[str]) -> List[str]:
        return [self.replace_variables(v) for v in values]

    def run_command(self,
                    cmd: List[Any],
                    output: TaskOutput,
                    cwd: Optional[Path] = None,
                    env: Optional[Dict[str, str]] = None,
                    check: bool = True):
        """Run a command in the source tree with the builder's environment"""
        return run_command(
            cmd,
            output,
            cwd=cwd or self.source_dir,
            env=env if env is not None else self.env,
            logger=self.logger,
            check=check
        )

    @abstractmethod
    def configure(self, output: TaskOutput) -> bool:
        """Configure the build"""
        pass

    @abstractmethod
    def build(self, output: TaskOutput) -> bool:
        """Build the dependency"""
        pass

    @abstractmethod
    def install(self, output: TaskOutput) -> bool:
        """Install the dependency"""
        pass

    def compile(self, output: TaskOutput) -> bool:
        """Configure and build, the 'build' stage of the task graph"""
        output.write(f"Configuring {self.name} {self.dep.version} for {self.platform.name} ({self.arch})")
        if not self.configure(output):
            output.write(f"Configuration failed for {self.name}")
            return False

        output.write(f"Building {self.name} for {self.platform.name}")
        if not self.build(output):
            output.write(f"Build failed for {self.name}")
            return False
        return True

    def install_and_verify(self, output: TaskOutput) -> bool:
        """Install and check the result, the 'install' stage of the task graph"""
        output.write(f"Installing {self.name} into {self.install_dir}")
        (self.install_dir / "lib").mkdir(parents=True, exist_ok=True)
        (self.install_dir / "include").mkdir(parents=True, exist_ok=True)
        if not self.install(output):
            output.write(f"Installation failed for {self.name}")
            return False
        return self.verify(output)

    def verify(self, output: TaskOutput) -> bool:
        """Verify the installation"""
        ok = True
        for lib in self.dep.outputs.libraries:
            lib_path = self.install_dir / "lib" / lib
            if not lib_path.exists():
                output.write(f"Library not found: {lib_path}")
                ok = False

        for header in self.dep.outputs.headers:
            header_path = self.install_dir / "include" / header
            if not header_path.exists():
                output.write(f"Header not found: {header_path}")
                ok = False

        return ok

    def install_from_build_tree(self, output: TaskOutput) -> bool:
        """Copy raw archives and headers out of the build tree"""
        return install_from_build_tree(
            build_dir=self.build_dir,
            include_dir=self.source_dir / "include",
            install_dir=self.install_dir,
            libraries=self.dep.outputs.libraries,
            output=output
        )


def install_from_build_tree(build_dir: Path,
                            include_dir: Path,
                            install_dir: Path,
                            libraries: Sequence[str],
                            output: TaskOutput) -> bool:
    """
    Place compiled archives and the raw header tree into an install prefix

    Used when the wrapped build system skipped or misplaced its install.

    Args:
        build_dir: Directory the archives were compiled into
        include_dir: Public header tree of the source
        install_dir: Install prefix to populate
        libraries: Archive file names to look for
        output: Task output buffer

    Returns:
        True if every archive was found and copied
    """
    lib_dir = install_dir / "lib"
    lib_dir.mkdir(parents=True, exist_ok=True)

    ok = True
    for lib in libraries:
        candidates = []
        if build_dir.exists():
            candidates = [build_dir / lib] + sorted(build_dir.rglob(lib))
        found = next((c for c in candidates if c.is_file()), None)
        if found is None:
            output.write(f"{lib} not found under {build_dir}")
            ok = False
            continue
        output.write(f"Copying {found} to {lib_dir}")
        shutil.copy2(found, lib_dir / lib)

    if include_dir.is_dir():
        output.write(f"Copying headers from {include_dir}")
        shutil.copytree(include_dir, install_dir / "include", dirs_exist_ok=True)

    return ok
