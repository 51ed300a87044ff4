"""
Platform records and host detection
"""

import platform
import shutil
import subprocess
import sys
import threading
from typing import Callable, Dict, List, Optional

from ..config import ConfigLoader
from ..exceptions import BuildSystemError
from ..models import PlatformConfig


def xcodebuild_sdk_path(sdk: str) -> str:
    """Ask xcodebuild where an SDK lives"""
    try:
        result = subprocess.run(
            ["xcodebuild", "-version", "-sdk", sdk, "Path"],
            capture_output=True,
            text=True,
            check=True
        )
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        raise BuildSystemError(f"Could not resolve SDK path for {sdk}: {e}") from e
    return result.stdout.strip()


class PlatformRegistry:
    """Looks up platform records and resolves their host dependent values"""

    def __init__(self,
                 config: ConfigLoader,
                 sdk_resolver: Optional[Callable[[str], str]] = None,
                 host_arch: Optional[str] = None):
        """
        Initialize the registry

        Args:
            config: Configuration loader
            sdk_resolver: Maps an SDK selector to its path, xcodebuild by default
            host_arch: Architecture used for platforms configured as 'host'
        """
        self.config = config
        self._sdk_resolver = sdk_resolver or xcodebuild_sdk_path
        self._host_arch = host_arch
        self._sdk_paths: Dict[str, str] = {}
        self._lock = threading.Lock()

    def names(self) -> List[str]:
        return self.config.get_platforms()

    def get(self, name: str) -> PlatformConfig:
        """Return the record for a platform, UnknownPlatformError if there is none"""
        return self.config.get_platform_config(name)

    def resolve(self, names: Optional[List[str]] = None) -> List[PlatformConfig]:
        """Return records for the given names (all platforms when empty)"""
        if not names:
            return [self.get(name) for name in self.names()]
        records = []
        for name in names:
            record = self.get(name)
            if record not in records:
                records.append(record)
        return records

    def sdk_path(self, record: PlatformConfig) -> str:
        """Return the SDK path of a platform, resolved once per SDK"""
        with self._lock:
            if record.sdk not in self._sdk_paths:
                self._sdk_paths[record.sdk] = self._sdk_resolver(record.sdk)
            return self._sdk_paths[record.sdk]

    def arch(self, record: PlatformConfig) -> str:
        """Return the architecture a platform compiles for"""
        if record.arch != "host":
            return record.arch
        if self._host_arch is None:
            self._host_arch = HostDetector().arch()
        return self._host_arch


class HostDetector:
    """Detects and provides information about the build machine"""

    REQUIRED_TOOLS = {
        "xcodebuild": "Xcode",
        "cmake": "CMake",
        "make": "Xcode command line tools",
        "perl": "Perl (needed by OpenSSL's Configure)",
        "libtool": "Xcode command line tools",
        "lipo": "Xcode command line tools",
    }

    def arch(self) -> str:
        """Get the normalized architecture of the build machine"""
        machine = platform.machine().lower()
        if machine in ["arm64", "aarch64"]:
            return "arm64"
        return "x86_64"

    def is_macos(self) -> bool:
        return sys.platform == "darwin"

    def missing_tools(self) -> Dict[str, str]:
        """Return the required tools that are not on PATH, with install hints"""
        return {tool: hint for tool, hint in self.REQUIRED_TOOLS.items()
                if not shutil.which(tool)}


__all__ = ["PlatformRegistry", "HostDetector", "xcodebuild_sdk_path"]
