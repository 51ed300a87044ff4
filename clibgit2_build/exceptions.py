"""Holds exceptions used by the Clibgit2 build system"""

from pathlib import Path
from typing import List, Optional


class BuildSystemError(Exception):
    """Base class for all build system failures"""


class UnknownPlatformError(BuildSystemError):
    """Raised when a platform name has no configuration record"""
    def __init__(self, name: str, available: List[str]):
        self.name = name
        self.available = list(available)
        super().__init__(f"Unknown platform: {name}. "
                         f"Available: {', '.join(self.available)}")


class GraphError(BuildSystemError):
    """Raised when the task graph is malformed (duplicate outputs, cycles, dangling edges)"""


class FetchError(BuildSystemError):
    """Raised when a source archive cannot be downloaded or extracted"""
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch {url}: {reason}")


class CommandError(BuildSystemError):
    """Raised when an external command exits with a non-zero status"""
    def __init__(self, cmd: List[str], returncode: int, cwd: Optional[Path] = None):
        self.cmd = [str(c) for c in cmd]
        self.returncode = returncode
        self.cwd = cwd
        super().__init__(f"Command failed with exit code {returncode}: {' '.join(self.cmd)}")


class MissingArtifactError(BuildSystemError):
    """Raised when a merge or packaging step cannot find a prerequisite artifact"""
    def __init__(self, path: Path, what: str = "artifact"):
        self.path = Path(path)
        self.what = what
        super().__init__(f"Missing {what}: {self.path}")
