"""Contains models used by the build system"""

from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class PlatformConfig(BaseModel):
    """Holds the build settings for one target platform"""
    model_config = ConfigDict(frozen=True)

    name: str
    """Platform identifier, also used in every per-platform path"""
    sdk: str
    """SDK selector passed to xcodebuild"""
    arch: str
    """arm64, x86_64, or host for the build machine's architecture"""
    slice: str
    """Name of the framework slice this platform ends up in"""
    openssl_target: str
    """OpenSSL Configure target"""
    openssl_cflags: Tuple[str, ...] = ()
    """CFLAGS for OpenSSL, may contain placeholders"""
    cmake_args: Tuple[str, ...] = ()
    """Platform specific CMake arguments, may contain placeholders"""


class SliceConfig(BaseModel):
    """Holds one slice of the packaged framework"""
    model_config = ConfigDict(frozen=True)

    name: str
    platforms: Tuple[str, ...]
    """One platform, or two when the slice ships a universal library"""
    headers_from: str
    """Platform whose installed headers are packaged with the slice"""

    @property
    def is_universal(self) -> bool:
        """True if the slice merges more than one architecture"""
        return len(self.platforms) > 1


class DependencyOutputs(BaseModel):
    """Files an install step must leave behind"""
    model_config = ConfigDict(frozen=True)

    libraries: Tuple[str, ...] = ()
    headers: Tuple[str, ...] = ()


class DependencyConfig(BaseModel):
    """Holds one wrapped third-party library"""
    model_config = ConfigDict(frozen=True)

    name: str
    role: Literal["crypto", "ssh", "source-control"]
    version: str
    url: str
    archive: str
    """File name of the downloaded archive"""
    source_dir: str
    """Top level directory inside the archive"""
    install_prefix: str
    build_system: Literal["configure", "cmake"]
    dependencies: Tuple[str, ...] = ()
    configure_args: Tuple[str, ...] = ()
    cmake_args: Tuple[str, ...] = ()
    build_target: Optional[str] = None
    install_targets: Tuple[str, ...] = ()
    optional_install_targets: Tuple[str, ...] = ()
    install_component: Optional[str] = None
    outputs: DependencyOutputs = DependencyOutputs()


class BuildOptions(BaseModel):
    """Global options from the build_options section"""
    model_config = ConfigDict(frozen=True)

    framework_name: str = "Clibgit2"
    combined_library: str = "libgit2_all.a"
    log_file: str = "build.log"
    dependencies_dir: str = "dependencies"
    cache_dir: str = ".cache"
    deployment_target: str = "12.4"
    modulemap: str = "module.modulemap"
    download_timeout: float = 300.0


class Stage(str, Enum):
    """Kind of work a task performs"""
    DOWNLOAD = "download"
    FETCH = "fetch"
    BUILD = "build"
    INSTALL = "install"
    LINK = "link"
    MERGE = "merge"
    PACKAGE = "package"


class TaskOutput:
    """Collects the output of one task so it can be logged as a single block"""

    def __init__(self, name: str):
        self.name = name
        self.lines: List[str] = []

    def write(self, text: str) -> None:
        """Append text, split into lines"""
        if not text:
            return
        self.lines.extend(text.rstrip("\n").split("\n"))

    def render(self) -> str:
        """Return the block as it goes into the log"""
        header = f"----- {self.name} -----"
        return "\n".join([header] + self.lines)


TaskAction = Callable[[TaskOutput], Optional[bool]]


class BuildTask(BaseModel):
    """One node of the task graph.

    A task is identified by its output path. Inputs that are the output of
    another task become edges of the graph.
    """
    model_config = ConfigDict(frozen=True)

    stage: Stage
    dependency: Optional[str] = None
    platform: Optional[str] = None
    inputs: Tuple[Path, ...] = ()
    output: Path
    lock: Optional[str] = None
    """Working directory key, two tasks with the same lock never run at once"""
    description: str = ""
    action: TaskAction = Field(repr=False, exclude=True)

    @property
    def key(self) -> str:
        return str(self.output)

    @property
    def name(self) -> str:
        parts = [self.stage.value]
        if self.dependency:
            parts.append(self.dependency)
        if self.platform:
            parts.append(self.platform)
        return ":".join(parts)


class TaskStatus(str, Enum):
    """Outcome of one task in a scheduler run"""
    SUCCEEDED = "succeeded"
    UP_TO_DATE = "up-to-date"
    FAILED = "failed"
    BLOCKED = "blocked"
    STALE = "stale"
    """Would run, only reported by dry runs"""


class TaskResult(BaseModel):
    """Holds the result of a task"""
    name: str
    status: TaskStatus
    duration: float = 0.0
    error: Optional[str] = None


class BuildReport(BaseModel):
    """Summary of a scheduler run"""
    results: Dict[str, TaskResult] = {}

    def _with_status(self, status: TaskStatus) -> List[str]:
        return [r.name for r in self.results.values() if r.status == status]

    @property
    def succeeded(self) -> List[str]:
        return self._with_status(TaskStatus.SUCCEEDED)

    @property
    def up_to_date(self) -> List[str]:
        return self._with_status(TaskStatus.UP_TO_DATE)

    @property
    def failed(self) -> List[str]:
        return self._with_status(TaskStatus.FAILED)

    @property
    def blocked(self) -> List[str]:
        return self._with_status(TaskStatus.BLOCKED)

    @property
    def stale(self) -> List[str]:
        return self._with_status(TaskStatus.STALE)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.blocked
