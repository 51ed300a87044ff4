"""
Incremental, concurrent execution of a task graph
"""

import os
import shutil
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, List, Optional, Set, Tuple

from .exceptions import GraphError
from .graph import TaskGraph
from .models import BuildReport, BuildTask, TaskOutput, TaskResult, TaskStatus
from .utils import Cache, Logger

DONE = (TaskStatus.SUCCEEDED, TaskStatus.UP_TO_DATE)
BROKEN = (TaskStatus.FAILED, TaskStatus.BLOCKED)


class Scheduler:
    """Runs the stale tasks of a graph in dependency order.

    Up to ``jobs`` tasks run at once, each in a worker thread that drives
    its own subprocesses. Two tasks with the same lock never overlap. A
    failing task blocks everything downstream of it, other chains go on.
    """

    def __init__(self,
                 graph: TaskGraph,
                 logger: Logger,
                 jobs: int = 1,
                 cache: Optional[Cache] = None,
                 force: bool = False):
        """
        Initialize the scheduler

        Args:
            graph: Tasks to run
            logger: Logger instance, task output is written through it
            jobs: Maximum number of concurrent tasks
            cache: Optional record of task results
            force: Treat every task as stale
        """
        self.graph = graph
        self.logger = logger
        self.jobs = max(1, int(jobs or 1))
        self.cache = cache
        self.force = force

    def staleness(self, task: BuildTask, rebuilt: Set[str]) -> Tuple[bool, str]:
        """
        Decide whether a task must run

        Args:
            task: Task to check, its prerequisites must be finished
            rebuilt: Keys of tasks that ran (or would run) in this build

        Returns:
            (stale, reason)
        """
        if self.force:
            return True, "forced"
        if not task.output.exists():
            return True, "output missing"
        for key in self.graph.requires(task.key):
            if key in rebuilt:
                return True, f"{self.graph.get(key).name} was rebuilt"

        output_mtime = task.output.stat().st_mtime_ns
        for path in task.inputs:
            if not path.exists():
                return True, f"input missing: {path}"
            if path.stat().st_mtime_ns > output_mtime:
                return True, f"input newer: {path}"
        return False, "up to date"

    def plan(self) -> List[Tuple[BuildTask, bool, str]]:
        """Staleness of every task without running anything"""
        rebuilt: Set[str] = set()
        plan = []
        for task in self.graph.order():
            stale, reason = self.staleness(task, rebuilt)
            if stale:
                rebuilt.add(task.key)
            plan.append((task, stale, reason))
        return plan

    def dry_run(self) -> BuildReport:
        """Report what a build would do"""
        report = BuildReport()
        for task, stale, reason in self.plan():
            status = TaskStatus.STALE if stale else TaskStatus.UP_TO_DATE
            if stale:
                self.logger.info(f"[DRY RUN] Would run {task.name} ({reason})")
            report.results[task.key] = TaskResult(name=task.name, status=status)
        return report

    def run(self) -> BuildReport:
        """Execute all stale tasks and return the report"""
        report = BuildReport()
        pending: List[BuildTask] = self.graph.order()
        running: Dict[Future, BuildTask] = {}
        locks: Set[str] = set()
        rebuilt: Set[str] = set()
        total = len(pending)

        self.logger.info(f"Running {total} tasks with {self.jobs} job{'s' if self.jobs != 1 else ''}")

        with ThreadPoolExecutor(max_workers=self.jobs) as executor:
            while pending or running:
                for task in list(pending):
                    states = [report.results[k].status if k in report.results else None
                              for k in self.graph.requires(task.key)]

                    if any(state in BROKEN for state in states):
                        pending.remove(task)
                        self._finish(report, TaskResult(
                            name=task.name, status=TaskStatus.BLOCKED,
                            error="a prerequisite failed"), task)
                        continue

                    if not all(state in DONE for state in states):
                        continue

                    stale, reason = self.staleness(task, rebuilt)
                    if not stale:
                        pending.remove(task)
                        self._finish(report, TaskResult(
                            name=task.name, status=TaskStatus.UP_TO_DATE), task)
                        continue

                    if len(running) >= self.jobs or (task.lock and task.lock in locks):
                        continue

                    pending.remove(task)
                    done_count = total - len(pending)
                    self.logger.info(f"[{done_count}/{total}] {task.description or task.name} ({reason})")
                    if task.lock:
                        locks.add(task.lock)
                    running[executor.submit(self._execute, task)] = task

                if not running:
                    if pending:
                        names = ", ".join(t.name for t in pending)
                        raise GraphError(f"No runnable task left, stuck on: {names}")
                    break

                finished, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in finished:
                    task = running.pop(future)
                    if task.lock:
                        locks.discard(task.lock)
                    result = future.result()
                    if result.status == TaskStatus.SUCCEEDED:
                        rebuilt.add(task.key)
                    self._finish(report, result, task)

        self._summarize(report)
        return report

    def _execute(self, task: BuildTask) -> TaskResult:
        """Run one task in a worker thread"""
        output = TaskOutput(task.name)
        start = time.monotonic()
        error = None
        try:
            if task.action(output) is False:
                error = "task reported failure"
            elif not task.output.exists():
                error = f"task did not produce {task.output}"
            else:
                # Some tools keep source timestamps, the output must be newer than its inputs
                os.utime(task.output, None)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            output.write(f"ERROR: {error}")
        finally:
            if error:
                self._discard_output(task, output)
            self.logger.task_block(output)

        return TaskResult(
            name=task.name,
            status=TaskStatus.FAILED if error else TaskStatus.SUCCEEDED,
            duration=time.monotonic() - start,
            error=error,
        )

    @staticmethod
    def _discard_output(task: BuildTask, output: TaskOutput):
        """Remove what a failed task left behind so the next run redoes it"""
        path = task.output
        try:
            if path.is_symlink() or path.is_file():
                path.unlink()
            elif path.is_dir():
                shutil.rmtree(path)
            else:
                return
        except OSError as e:
            output.write(f"Could not remove {path}: {e}")
            return
        output.write(f"Removed incomplete output {path}")

    def _finish(self, report: BuildReport, result: TaskResult, task: BuildTask):
        report.results[task.key] = result
        if result.status == TaskStatus.SUCCEEDED:
            self.logger.success(f"{task.name} done in {result.duration:.1f}s")
        elif result.status == TaskStatus.FAILED:
            self.logger.error(f"{task.name} failed: {result.error}")
        elif result.status == TaskStatus.BLOCKED:
            self.logger.warning(f"{task.name} skipped, a prerequisite failed")
        else:
            self.logger.debug(f"{task.name} is up to date")

        if self.cache is not None and result.status != TaskStatus.UP_TO_DATE:
            self.cache.record(result)

    def _summarize(self, report: BuildReport):
        self.logger.info(f"Succeeded: {len(report.succeeded)}, up to date: {len(report.up_to_date)}, "
                         f"failed: {len(report.failed)}, blocked: {len(report.blocked)}")
        for name in report.failed:
            self.logger.error(f"  failed: {name}")
        for name in report.blocked:
            self.logger.warning(f"  blocked: {name}")


__all__ = ["Scheduler"]
