"""
CMake builder implementation
"""

import os
import shutil
from pathlib import Path

from ..exceptions import CommandError
from ..models import TaskOutput
from .base_builder import BaseBuilder


class CMakeBuilder(BaseBuilder):
    """Builder for CMake-based projects (libssh2, libgit2)"""

    COMMON_ARGS = (
        "-DBUILD_SHARED_LIBS=NO",
        "-DCMAKE_BUILD_TYPE=Release",
        "-DCMAKE_C_COMPILER_WORKS=ON",
        "-DCMAKE_CXX_COMPILER_WORKS=ON",
        "-DCMAKE_OSX_DEPLOYMENT_TARGET={deployment_target}",
        "-DCMAKE_INSTALL_PREFIX={install_dir}",
    )

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.cmake = "cmake"

    @property
    def build_dir(self) -> Path:
        return self.source_dir / "build"

    def configure(self, output: TaskOutput) -> bool:
        """Configure using CMake"""

        # Remove entire build directory if it exists to avoid stale cache
        if self.build_dir.exists():
            output.write(f"Removing stale build directory: {self.build_dir}")
            shutil.rmtree(self.build_dir, ignore_errors=True)

        # Create fresh build directory
        self.build_dir.mkdir(parents=True, exist_ok=True)

        cmd = [self.cmake, "-S", str(self.source_dir), "-B", str(self.build_dir)]
        cmd.extend(self.replace_all(self.COMMON_ARGS))
        cmd.extend(self.replace_all(self.platform.cmake_args))
        cmd.extend(self.replace_all(self.dep.cmake_args))

        self.run_command(cmd, output, cwd=self.build_dir)
        return True

    def build(self, output: TaskOutput) -> bool:
        """Build using CMake"""
        cmd = [
            self.cmake,
            "--build", str(self.build_dir),
            "--config", "Release",
        ]
        if self.dep.build_target:
            cmd.extend(["--target", self.dep.build_target])
        cmd.extend(["--parallel", str(os.cpu_count() or 1)])

        self.run_command(cmd, output, cwd=self.build_dir)
        return True

    def install(self, output: TaskOutput) -> bool:
        """Install using CMake.

        Some upstream versions skip or misplace the install of a component,
        so a failed component install falls back to a full install and then
        to copying the archives out of the build tree.
        """
        base_cmd = [self.cmake, "--install", str(self.build_dir), "--config", "Release"]

        if self.dep.install_component:
            try:
                self.run_command(base_cmd + ["--component", self.dep.install_component],
                                 output, cwd=self.build_dir)
                return True
            except CommandError:
                output.write(f"Component install of '{self.dep.install_component}' failed, "
                             "trying a full install...")

            try:
                self.run_command(base_cmd, output, cwd=self.build_dir)
                return True
            except CommandError:
                output.write(f"CMake install failed, using fallback: manually installing {self.name}...")
                self.logger.warning(f"{self.name} ({self.platform.name}): cmake install failed, "
                                    "copying from the build tree")
                return self.install_from_build_tree(output)

        self.run_command(base_cmd, output, cwd=self.build_dir)
        return True
