"""
Utility modules for the build system
"""

import copy
import sys
import json
import logging
import subprocess
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, List, Mapping

from ..exceptions import CommandError
from ..models import TaskOutput, TaskResult


class ColoredFormatter(logging.Formatter):
    """Colored log formatter for terminal output"""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
        'SUCCESS': '\033[92m',  # Bright Green
        'RESET': '\033[0m'
    }

    def __init__(self, *args, use_color: Optional[bool] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = sys.stdout.isatty() if use_color is None else use_color

    def format(self, record):
        if getattr(record, 'raw', False):
            return record.getMessage()

        if self.use_color:
            # Other handlers share the record, color a copy
            record = copy.copy(record)
            color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
            reset = self.COLORS['RESET']

            record.levelname = f"{color}{record.levelname}{reset}"
            record.msg = f"{color}{record.msg}{reset}"

        return super().format(record)


class Logger:
    """Build system logger.

    Everything goes to the terminal and, when a log file is given, is
    appended to it as well. Task output is emitted as one raw record per
    task so concurrent tasks never interleave inside a block.
    """

    SUCCESS = 25  # Between INFO and WARNING

    def __init__(self, verbose: bool = False, log_file: Optional[Path] = None,
                 name: str = "clibgit2_build"):
        """
        Initialize logger

        Args:
            verbose: Enable verbose output
            log_file: Optional shared, append-only log file
            name: Name of the underlying logging.Logger
        """
        self.verbose = verbose
        self.log_file = Path(log_file) if log_file else None

        # Add SUCCESS level
        logging.addLevelName(self.SUCCESS, "SUCCESS")

        # Create logger
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG if verbose else logging.INFO)
        self.logger.propagate = False

        # Remove existing handlers
        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()

        # Console handler
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)

        # Format
        if verbose:
            fmt = "%(asctime)s [%(levelname)s] %(message)s"
        else:
            fmt = "[%(levelname)s] %(message)s"

        console_formatter = ColoredFormatter(fmt, datefmt="%H:%M:%S")
        console_handler.setFormatter(console_formatter)
        self.logger.addHandler(console_handler)

        # File handler
        if self.log_file:
            self._start_log_file()
            file_handler = logging.FileHandler(self.log_file, mode="a", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_formatter = ColoredFormatter(
                "[%(asctime)s] [%(levelname)s] %(message)s",
                datefmt="%H:%M:%S",
                use_color=False
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def _start_log_file(self):
        """Write the header of a fresh log file"""
        if self.log_file.exists():
            return
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_file, "w", encoding="utf-8") as f:
            f.write(f"Build started at {datetime.now().strftime('%a %b %d %H:%M:%S %Y')}\n")
            f.write("=" * 40 + "\n")
            f.write("Each platform builds independently in separate directories\n")

    def close(self):
        """Detach and close all handlers"""
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)

    def debug(self, msg: str):
        """Log debug message"""
        self.logger.debug(msg)

    def info(self, msg: str):
        """Log info message"""
        self.logger.info(msg)

    def warning(self, msg: str):
        """Log warning message"""
        self.logger.warning(msg)

    def error(self, msg: str):
        """Log error message"""
        self.logger.error(msg)

    def critical(self, msg: str):
        """Log critical message"""
        self.logger.critical(msg)

    def success(self, msg: str):
        """Log success message"""
        self.logger.log(self.SUCCESS, msg)

    def raw(self, msg: str):
        """Log raw message without formatting"""
        record = self.logger.makeRecord(
            self.logger.name, logging.INFO, "", 0, msg, (), None
        )
        record.raw = True
        self.logger.handle(record)

    def task_block(self, output: TaskOutput):
        """Log everything a task printed as one block"""
        if output.lines:
            self.raw(output.render())


def run_command(cmd: List[Any],
                output: TaskOutput,
                cwd: Optional[Path] = None,
                env: Optional[Mapping[str, str]] = None,
                logger: Optional[Logger] = None,
                check: bool = True) -> subprocess.CompletedProcess:
    """
    Run a command, collecting stdout and stderr into the task output

    Args:
        cmd: Command and arguments
        output: Buffer of the task running the command
        cwd: Working directory
        env: Environment variables
        logger: Logger for debug output
        check: Raise CommandError on non-zero exit

    Returns:
        CompletedProcess instance
    """
    cmd = [str(c) for c in cmd]
    cmd_str = " ".join(cmd)
    output.write(f"$ {cmd_str}")
    if logger:
        logger.debug(f"Running: {cmd_str}")
        logger.debug(f"  in: {cwd}")

    try:
        result = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            check=False
        )
    except FileNotFoundError as e:
        output.write(f"{cmd[0]}: command not found")
        raise CommandError(cmd, 127, cwd) from e

    output.write(result.stdout)
    if check and result.returncode != 0:
        raise CommandError(cmd, result.returncode, cwd)
    return result


class Cache:
    """Records the last result of every task"""

    def __init__(self, cache_dir: Path):
        """
        Initialize cache

        Args:
            cache_dir: Directory to store cache files
        """
        self.cache_dir = Path(cache_dir)
        self.cache_file = self.cache_dir / "build_cache.json"
        self._lock = threading.RLock()
        self.cache_data = self._load_cache()

    def _load_cache(self) -> Dict[str, Any]:
        """Load cache from file"""
        if self.cache_file.exists():
            try:
                with open(self.cache_file, 'r') as f:
                    return json.load(f)
            except (OSError, ValueError):
                return {}
        return {}

    def _save_cache(self):
        """Save cache to file"""
        with self._lock:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            with open(self.cache_file, 'w') as f:
                json.dump(self.cache_data, f, indent=2, sort_keys=True)

    def record(self, result: TaskResult):
        """
        Store the result of a task

        Args:
            result: Result reported by the scheduler
        """
        with self._lock:
            self.cache_data[result.name] = {
                "status": result.status.value,
                "duration": round(result.duration, 3),
                "timestamp": datetime.now().isoformat(),
                "error": result.error,
            }
            self._save_cache()

    def get_info(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Get cache info for a task

        Args:
            name: Task name

        Returns:
            Cache info or None
        """
        with self._lock:
            return self.cache_data.get(name)


__all__ = ["ColoredFormatter", "Logger", "Cache", "run_command"]
