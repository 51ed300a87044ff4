"""Assembles the multi-platform XCFramework."""

import filecmp
import shutil
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .config import ConfigLoader
from .exceptions import BuildSystemError, MissingArtifactError
from .models import TaskOutput
from .store import ArtifactStore
from .utils import Logger, run_command

DEFAULT_MODULEMAP = Path(__file__).resolve().parent / "resources" / "module.modulemap"


class Packager:
    """Builds the XCFramework from one library and header tree per slice,
    then places the shared module map into every slice."""

    def __init__(self, store: ArtifactStore, config: ConfigLoader, logger: Logger,
                 modulemap: Optional[Path] = None,
                 runner: Callable[..., object] = run_command):
        self.store = store
        self.config = config
        self.logger = logger
        self.modulemap = Path(modulemap) if modulemap else DEFAULT_MODULEMAP
        self.runner = runner

    def slice_inputs(self) -> List[Tuple[Path, Path]]:
        """(library, headers) for every slice, in configuration order"""
        return [(self.store.slice_library(s), self.store.headers_dir(s.headers_from))
                for s in self.config.get_slices()]

    def package(self, output: TaskOutput) -> Path:
        """Create the framework, MissingArtifactError if any slice input is absent"""
        pairs = self.slice_inputs()
        for library, headers in pairs:
            if not library.is_file():
                raise MissingArtifactError(library, "slice library")
            if not headers.is_dir():
                raise MissingArtifactError(headers, "slice headers")
        if not self.modulemap.is_file():
            raise MissingArtifactError(self.modulemap, "module map")

        framework = self.store.framework_dir
        if framework.exists():
            output.write(f"Removing previous {framework.name}")
            shutil.rmtree(framework)

        cmd = ["xcodebuild", "-create-xcframework"]
        for library, headers in pairs:
            cmd.extend(["-library", str(library), "-headers", str(headers)])
        cmd.extend(["-output", str(framework)])
        self.runner(cmd, output, cwd=self.store.root_dir, logger=self.logger)

        self.copy_modulemap(output)
        return framework

    def slice_dirs(self) -> List[Path]:
        framework = self.store.framework_dir
        if not framework.is_dir():
            return []
        return sorted(d for d in framework.iterdir() if d.is_dir())

    def copy_modulemap(self, output: TaskOutput) -> List[Path]:
        """Copy the module map into the Headers directory of every slice"""
        output.write("Copying module.modulemap...")
        slices = self.slice_dirs()
        expected = len(self.config.get_slices())
        if len(slices) != expected:
            raise BuildSystemError(f"{self.store.framework_dir.name} has {len(slices)} slices, "
                                   f"expected {expected}")

        copies = []
        for slice_dir in slices:
            headers = slice_dir / "Headers"
            headers.mkdir(exist_ok=True)
            target = headers / self.config.options.modulemap
            shutil.copyfile(self.modulemap, target)
            copies.append(target)

        for copy in copies:
            if not filecmp.cmp(self.modulemap, copy, shallow=False):
                raise BuildSystemError(f"Module map copy differs: {copy}")
        return copies


__all__ = ["Packager", "DEFAULT_MODULEMAP"]
