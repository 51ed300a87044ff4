"""
Configuration management for the build system
"""

import yaml
from pathlib import Path
from typing import Dict, List, Any, Optional

from ..exceptions import UnknownPlatformError
from ..models import BuildOptions, DependencyConfig, PlatformConfig, SliceConfig

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent


class ConfigLoader:
    """Loads and manages build system configuration"""

    def __init__(self, config_dir: Optional[Path] = None):
        """
        Initialize configuration loader

        Args:
            config_dir: Directory containing dependencies.yaml and platforms.yaml
        """
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR

        self.deps_config = self._load_yaml("dependencies.yaml", "Dependencies")
        self.platforms_config = self._load_yaml("platforms.yaml", "Platforms")

        # Validate once, the records are immutable afterwards
        self._dependencies: Dict[str, DependencyConfig] = {
            name: DependencyConfig(name=name, **(values or {}))
            for name, values in self.deps_config.get("dependencies", {}).items()
        }
        self._platforms: Dict[str, PlatformConfig] = {
            name: PlatformConfig(name=name, **(values or {}))
            for name, values in self.platforms_config.get("platforms", {}).items()
        }
        self._slices: Dict[str, SliceConfig] = {
            name: SliceConfig(name=name, **(values or {}))
            for name, values in self.platforms_config.get("slices", {}).items()
        }
        self.options = BuildOptions(**(self.deps_config.get("build_options") or {}))
        self._check_references()

    def _load_yaml(self, filename: str, label: str) -> Dict[str, Any]:
        path = self.config_dir / filename
        if not path.exists():
            raise FileNotFoundError(f"{label} config not found: {path}")

        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _check_references(self) -> None:
        """Make sure every name used in the config points at something"""
        for dep in self._dependencies.values():
            for required in dep.dependencies:
                if required not in self._dependencies:
                    raise ValueError(f"{dep.name} depends on unknown dependency: {required}")

        for name in self.get_build_order():
            if name not in self._dependencies:
                raise ValueError(f"Unknown dependency in build_order: {name}")

        for slice_config in self._slices.values():
            for platform in slice_config.platforms:
                if platform not in self._platforms:
                    raise UnknownPlatformError(platform, self.get_platforms())
            if slice_config.headers_from not in slice_config.platforms:
                raise ValueError(f"Slice {slice_config.name} takes headers from "
                                 f"{slice_config.headers_from}, which it does not contain")

    def get_dependencies(self) -> List[str]:
        """Get list of all dependencies"""
        return list(self._dependencies.keys())

    def get_dependency_config(self, name: str) -> DependencyConfig:
        """
        Get configuration for a specific dependency

        Args:
            name: Dependency name

        Returns:
            Dependency record
        """
        if name not in self._dependencies:
            raise ValueError(f"Unknown dependency: {name}")
        return self._dependencies[name]

    def get_dependency_by_role(self, role: str) -> DependencyConfig:
        """Get the dependency playing a role (crypto, ssh, source-control)"""
        for dep in self._dependencies.values():
            if dep.role == role:
                return dep
        raise ValueError(f"No dependency configured for role: {role}")

    def get_build_order(self) -> List[str]:
        """Get build order for dependencies"""
        return list(self.deps_config.get("build_order", self.get_dependencies()))

    def get_platforms(self) -> List[str]:
        """Get all configured platform names, in file order"""
        return list(self._platforms.keys())

    def get_platform_config(self, platform: str) -> PlatformConfig:
        """
        Get configuration for a specific platform

        Args:
            platform: Platform name (iphoneos, macosx-arm64, ...)

        Returns:
            Platform record
        """
        if platform not in self._platforms:
            raise UnknownPlatformError(platform, self.get_platforms())
        return self._platforms[platform]

    def get_slices(self) -> List[SliceConfig]:
        """Get the framework slices"""
        return list(self._slices.values())


__all__ = ["ConfigLoader", "DEFAULT_CONFIG_DIR"]
