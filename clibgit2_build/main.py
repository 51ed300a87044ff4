#!/usr/bin/env python3
"""
Main entry point for the Clibgit2 build system
Builds OpenSSL, libssh2 and libgit2 for every Apple platform and packages
them as one XCFramework
"""

import argparse
import os
import sys
import traceback
from pathlib import Path
from typing import Callable, List, Optional

from .config import ConfigLoader
from .exceptions import BuildSystemError
from .fetch import SourceFetcher
from .graph import TaskGraph, TaskGraphBuilder
from .models import BuildReport
from .platform import HostDetector, PlatformRegistry
from .scheduler import Scheduler
from .store import ArtifactStore
from .utils import Cache, Logger

JOBS_ENV = "CLIBGIT2_BUILD_JOBS"


class BuildSystem:
    """Main build system class"""

    def __init__(self,
                 root_dir: Optional[Path] = None,
                 config_dir: Optional[Path] = None,
                 platforms: Optional[List[str]] = None,
                 jobs: int = 1,
                 verbose: bool = False,
                 dry_run: bool = False,
                 force: bool = False,
                 sdk_resolver: Optional[Callable[[str], str]] = None,
                 host_arch: Optional[str] = None,
                 fetcher: Optional[SourceFetcher] = None):
        """
        Initialize the build system

        Args:
            root_dir: Project root directory, everything is built below it
            config_dir: Directory with dependencies.yaml and platforms.yaml
            platforms: Platforms to build (all when empty)
            jobs: Number of tasks allowed to run at once
            verbose: Enable verbose output
            dry_run: Report stale tasks without running them
            force: Rebuild everything
            sdk_resolver: Override of the xcodebuild SDK lookup
            host_arch: Override of the build machine architecture
            fetcher: Override of the source downloader
        """
        self.root_dir = Path(root_dir or Path.cwd()).resolve()
        self.platforms = list(platforms or [])
        self.jobs = jobs
        self.verbose = verbose
        self.dry_run = dry_run
        self.force = force

        self.config = ConfigLoader(config_dir)
        self.store = ArtifactStore(self.root_dir, self.config)

        # Setup logging, everything is appended to the shared build log
        self.logger = Logger(verbose=verbose, log_file=self.store.log_file)

        self.registry = PlatformRegistry(self.config, sdk_resolver=sdk_resolver, host_arch=host_arch)
        self.cache = Cache(self.store.cache_dir)
        self.graph_builder = TaskGraphBuilder(
            config=self.config,
            store=self.store,
            registry=self.registry,
            logger=self.logger,
            fetcher=fetcher
        )

    def check_prerequisites(self) -> bool:
        """
        Check if all required tools are installed

        Returns:
            True if all prerequisites are met
        """
        self.logger.info("Checking prerequisites...")
        detector = HostDetector()

        if not detector.is_macos():
            self.logger.warning("Apple SDKs are only available on macOS, the build will likely fail")

        missing = detector.missing_tools()
        for tool, hint in missing.items():
            self.logger.warning(f"Missing tool: {tool} ({hint})")
        return not missing

    def task_graph(self) -> TaskGraph:
        """Build the task graph for the selected platforms"""
        return self.graph_builder.build(self.platforms)

    def build(self) -> BuildReport:
        """
        Build everything that is out of date

        Returns:
            Report of the scheduler run
        """
        # Fails fast on unknown platform names
        graph = self.task_graph()
        platforms = self.platforms or self.config.get_platforms()
        self.logger.info(f"Platforms: {', '.join(platforms)}")
        self.logger.info(f"Build order: {' -> '.join(self.config.get_build_order())}")

        scheduler = Scheduler(graph, self.logger, jobs=self.jobs, cache=self.cache, force=self.force)
        if self.dry_run:
            return scheduler.dry_run()

        if not self.check_prerequisites():
            self.logger.error("Prerequisites check failed, building anyway")

        report = scheduler.run()
        if report.ok:
            self.logger.success("Build completed successfully!")
        else:
            self.logger.error("Some tasks failed, see the log for details: "
                              f"{self.store.log_file}")
        return report

    def clean(self, platforms: Optional[List[str]] = None) -> List[Path]:
        """
        Clean build artifacts

        Args:
            platforms: Only clean these platforms (None for everything)

        Returns:
            Removed paths
        """
        if platforms:
            removed = []
            for platform in platforms:
                self.logger.info(f"Cleaning {platform}...")
                removed.extend(self.store.clean_platform(platform))
        else:
            self.logger.info("Cleaning build artifacts...")
            # The log itself goes away too
            self.logger.close()
            self.logger = Logger(verbose=self.verbose)
            removed = self.store.clean()
            self.cache.cache_data = {}

        for path in removed:
            self.logger.debug(f"Removed {path}")
        self.logger.info(f"Removed {len(removed)} path{'s' if len(removed) != 1 else ''}")
        return removed

    def clean_deps(self) -> List[Path]:
        """Remove downloaded archives and extracted sources only"""
        self.logger.info("Cleaning dependencies...")
        return self.store.clean_deps()

    def status(self) -> List[str]:
        """
        Describe every task of the graph

        Returns:
            One line per task
        """
        scheduler = Scheduler(self.task_graph(), self.logger, force=self.force)
        lines = []
        for task, stale, reason in scheduler.plan():
            state = "stale" if stale else "up to date"
            line = f"{task.name:40} {state:10}"
            if stale:
                line += f" ({reason})"
            info = self.cache.get_info(task.name)
            if info:
                line += f"  last: {info['status']} at {info['timestamp']}"
            lines.append(line)
        return lines

    def close(self):
        self.logger.close()


def build_order_help(config: ConfigLoader) -> str:
    """Describe what a build does, for the help command"""
    lines = ["Build order per platform:"]
    for index, name in enumerate(config.get_build_order(), start=1):
        dep = config.get_dependency_config(name)
        requires = f" (requires {', '.join(dep.dependencies)})" if dep.dependencies else ""
        lines.append(f"  {index}. {dep.name} {dep.version}{requires}")
    lines.append(f"  {len(config.get_build_order()) + 1}. Merge all libraries into "
                 f"{config.options.combined_library}")
    lines.append("")
    lines.append(f"Platforms: {', '.join(config.get_platforms())}")
    for slice_config in config.get_slices():
        if slice_config.is_universal:
            lines.append(f"  {slice_config.name}: fat binary of {' + '.join(slice_config.platforms)}")
    lines.append("")
    lines.append("Each platform builds in its own directories, so platforms can build in "
                 "parallel with -j N.")
    lines.append("Only tasks whose outputs are missing or older than their inputs are run.")
    return "\n".join(lines)


def default_jobs() -> int:
    """Job count from the environment, 1 (sequential) when unset or invalid"""
    env_value = os.environ.get(JOBS_ENV)
    if not env_value:
        return 1
    try:
        jobs = int(env_value)
    except ValueError:
        print(f"WARNING: Ignoring invalid {JOBS_ENV}='{env_value}'", file=sys.stderr)
        return 1
    if jobs < 1:
        print(f"WARNING: Ignoring invalid {JOBS_ENV}='{env_value}'", file=sys.stderr)
        return 1
    return jobs


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clibgit2-build",
        description="Builds Clibgit2.xcframework from OpenSSL, libssh2 and libgit2",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                          # Build everything
  %(prog)s build -j 6               # Build up to 6 tasks at once
  %(prog)s build --platform iphoneos
  %(prog)s clean                    # Remove all build outputs and downloads
  %(prog)s clean-deps               # Remove only downloaded sources
  %(prog)s status                   # Show which tasks are out of date
        """
    )

    parser.add_argument(
        "command",
        nargs="?",
        default="build",
        choices=["build", "clean", "clean-deps", "status", "help"],
        help="Command to execute (default: build)"
    )

    parser.add_argument(
        "-j", "--jobs",
        type=int,
        default=None,
        help=f"Number of tasks to run at once (default: ${JOBS_ENV} or 1)"
    )

    parser.add_argument(
        "--platform",
        action="append",
        help="Platform to build or clean (can be used multiple times)"
    )

    parser.add_argument(
        "--root",
        type=Path,
        default=None,
        help="Directory to build in (default: current directory)"
    )

    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory with dependencies.yaml and platforms.yaml"
    )

    parser.add_argument(
        "--force",
        action="store_true",
        help="Rebuild every task even if up to date"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be built without building"
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Command-line interface"""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command == "help":
        parser.print_help()
        print()
        try:
            print(build_order_help(ConfigLoader(args.config_dir)))
        except (OSError, ValueError, BuildSystemError) as e:
            print(f"Error loading configuration: {e}", file=sys.stderr)
            return 1
        return 0

    jobs = args.jobs if args.jobs is not None else default_jobs()
    if jobs < 1:
        parser.error("--jobs must be at least 1")

    # Initialize build system
    try:
        bs = BuildSystem(
            root_dir=args.root,
            config_dir=args.config_dir,
            platforms=args.platform,
            jobs=jobs,
            verbose=args.verbose,
            dry_run=args.dry_run,
            force=args.force
        )
    except (OSError, ValueError, BuildSystemError) as e:
        print(f"Error initializing build system: {e}", file=sys.stderr)
        return 1

    # Execute command
    try:
        if args.command == "build":
            report = bs.build()
            return 0 if report.ok else 1

        elif args.command == "clean":
            bs.clean(platforms=args.platform)

        elif args.command == "clean-deps":
            bs.clean_deps()

        elif args.command == "status":
            for line in bs.status():
                print(line)

        return 0

    except KeyboardInterrupt:
        print("\nBuild interrupted by user", file=sys.stderr)
        return 130
    except BuildSystemError as e:
        bs.logger.error(str(e))
        return 1
    except Exception as e:
        bs.logger.error(f"Build system error: {e}")
        if args.verbose:
            traceback.print_exc()
        return 1
    finally:
        bs.close()


if __name__ == "__main__":
    sys.exit(main())
