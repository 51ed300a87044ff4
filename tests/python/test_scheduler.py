import os
import threading
import time
from pathlib import Path

import pytest

from clibgit2_build.exceptions import CommandError
from clibgit2_build.graph import TaskGraph
from clibgit2_build.models import BuildTask, Stage, TaskStatus
from clibgit2_build.scheduler import Scheduler
from clibgit2_build.utils import Cache


def _touching_task(output, inputs=(), lock=None, name=None, action=None):
    output = Path(output)

    def touch(task_output):
        output.parent.mkdir(parents=True, exist_ok=True)
        output.touch()

    return BuildTask(stage=Stage.BUILD, dependency=name or output.name,
                     inputs=tuple(Path(p) for p in inputs), output=output,
                     lock=lock, action=action or touch)


def test_full_build_runs_every_task(graph_builder, fake_actions, logger):
    graph = fake_actions.apply(graph_builder.build())
    report = Scheduler(graph, logger).run()

    assert report.ok
    assert len(report.succeeded) == len(graph)
    assert sorted(fake_actions.calls) == sorted(task.name for task in graph)


def test_second_build_is_a_no_op(graph_builder, fake_actions, logger):
    graph = fake_actions.apply(graph_builder.build())
    Scheduler(graph, logger).run()
    fake_actions.calls.clear()

    report = Scheduler(graph, logger).run()

    assert fake_actions.calls == []
    assert report.ok
    assert len(report.up_to_date) == len(graph)


def test_deleting_one_platform_library_rebuilds_only_that_platform(graph_builder, fake_actions, logger, store):
    graph = fake_actions.apply(graph_builder.build())
    Scheduler(graph, logger).run()
    fake_actions.calls.clear()

    store.combined_library("iphoneos").unlink()
    report = Scheduler(graph, logger).run()

    assert fake_actions.calls == ["link:iphoneos", "package"]
    assert report.ok


def test_newer_input_makes_downstream_stale(graph_builder, fake_actions, logger, store, config):
    graph = fake_actions.apply(graph_builder.build(["iphoneos"]))
    Scheduler(graph, logger).run()
    fake_actions.calls.clear()

    libssh2 = config.get_dependency_config("libssh2")
    stamp = store.fetch_stamp(libssh2, "iphoneos")
    future = time.time() + 60
    os.utime(stamp, (future, future))

    Scheduler(graph, logger).run()
    assert fake_actions.calls == [
        "build:libssh2:iphoneos", "install:libssh2:iphoneos",
        "build:libgit2:iphoneos", "install:libgit2:iphoneos", "link:iphoneos",
    ]


def test_force_reruns_everything(graph_builder, fake_actions, logger):
    graph = fake_actions.apply(graph_builder.build(["iphonesimulator"]))
    Scheduler(graph, logger).run()
    fake_actions.calls.clear()

    report = Scheduler(graph, logger, force=True).run()
    assert len(fake_actions.calls) == len(graph)
    assert len(report.succeeded) == len(graph)


def test_failure_blocks_only_the_affected_chain(graph_builder, fake_actions, logger):
    fake_actions.failing.add("build:libssh2:iphoneos")
    graph = fake_actions.apply(graph_builder.build())

    report = Scheduler(graph, logger).run()

    assert not report.ok
    assert report.failed == ["build:libssh2:iphoneos"]
    assert set(report.blocked) == {
        "install:libssh2:iphoneos", "build:libgit2:iphoneos",
        "install:libgit2:iphoneos", "link:iphoneos", "package",
    }
    # Everything else, including the other platforms, still built
    assert "merge:macosx" in report.succeeded
    assert "link:iphonesimulator" in report.succeeded
    assert "install:openssl:iphoneos" in report.succeeded
    for name in report.blocked:
        assert name not in fake_actions.calls


def test_parallel_build_matches_sequential_build(graph_builder, fake_actions, logger):
    graph = fake_actions.apply(graph_builder.build())
    report = Scheduler(graph, logger, jobs=6).run()

    assert report.ok
    assert len(report.succeeded) == len(graph)
    position = {name: index for index, name in enumerate(fake_actions.calls)}
    for task in graph:
        for key in graph.requires(task.key):
            assert position[graph.get(key).name] < position[task.name]


def test_parallel_failure_still_blocks_dependents(graph_builder, fake_actions, logger):
    fake_actions.failing.add("install:openssl:macosx-arm64")
    graph = fake_actions.apply(graph_builder.build())

    report = Scheduler(graph, logger, jobs=4).run()

    assert report.failed == ["install:openssl:macosx-arm64"]
    assert "merge:macosx" in report.blocked
    assert "package" in report.blocked
    assert "merge:maccatalyst" in report.succeeded


def test_tasks_with_the_same_lock_never_overlap(tmp_path, logger):
    active = []
    overlaps = []
    guard = threading.Lock()

    def make_action(output):
        def action(task_output):
            with guard:
                active.append(output)
                if len(active) > 1:
                    overlaps.append(list(active))
            time.sleep(0.02)
            output.touch()
            with guard:
                active.remove(output)
        return action

    tasks = []
    for index in range(4):
        output = tmp_path / f"out{index}"
        tasks.append(_touching_task(output, lock="shared-tree", action=make_action(output)))

    report = Scheduler(TaskGraph(tasks), logger, jobs=4).run()

    assert report.ok
    assert overlaps == []


def test_independent_tasks_run_concurrently(tmp_path, logger):
    barrier = threading.Barrier(2, timeout=5)

    def make_action(output):
        def action(task_output):
            barrier.wait()
            output.touch()
        return action

    tasks = [_touching_task(tmp_path / name, lock=name, action=make_action(tmp_path / name))
             for name in ("left", "right")]

    report = Scheduler(TaskGraph(tasks), logger, jobs=2).run()
    assert report.ok


def test_exception_in_action_fails_the_task(tmp_path, logger):
    def action(task_output):
        raise CommandError(["cmake", "--build", "."], 2)

    failing = _touching_task(tmp_path / "a", action=action)
    dependent = _touching_task(tmp_path / "b", inputs=[tmp_path / "a"])

    report = Scheduler(TaskGraph([failing, dependent]), logger).run()

    assert report.failed == [failing.name]
    assert report.blocked == [dependent.name]
    assert "exit code 2" in report.results[failing.key].error


def test_action_that_produces_nothing_fails(tmp_path, logger):
    task = _touching_task(tmp_path / "never", action=lambda task_output: None)
    report = Scheduler(TaskGraph([task]), logger).run()
    assert report.failed == [task.name]
    assert "did not produce" in report.results[task.key].error


@pytest.mark.parametrize("outcome", ["returns-false", "raises"])
def test_failed_task_is_redone_on_next_run(tmp_path, logger, outcome):
    install_output = tmp_path / "install" / "lib" / "libssl.a"
    attempts = []

    def half_install(task_output):
        attempts.append(len(attempts))
        install_output.parent.mkdir(parents=True, exist_ok=True)
        install_output.write_bytes(b"partial")
        if len(attempts) == 1:
            if outcome == "raises":
                raise CommandError(["make", "install_sw"], 2)
            return False
        return True

    install = _touching_task(install_output, name="openssl", action=half_install)
    link = _touching_task(tmp_path / "libgit2_all.a", inputs=[install_output], name="link")
    graph = TaskGraph([install, link])

    first = Scheduler(graph, logger).run()
    assert first.failed == [install.name]
    assert first.blocked == [link.name]
    assert not install_output.exists()

    second = Scheduler(graph, logger).run()
    assert attempts == [0, 1]
    assert second.succeeded == [install.name, link.name]
    assert second.up_to_date == []


def test_output_is_touched_after_success(tmp_path, logger):
    source = tmp_path / "source"
    source.touch()
    output = tmp_path / "copy"

    def keep_old_timestamp(task_output):
        output.touch()
        os.utime(output, (0, 0))

    task = _touching_task(output, inputs=[source], action=keep_old_timestamp)
    Scheduler(TaskGraph([task]), logger).run()

    assert output.stat().st_mtime_ns >= source.stat().st_mtime_ns
    stale, _ = Scheduler(TaskGraph([task]), logger).staleness(task, set())
    assert not stale


def test_task_output_is_logged_as_contiguous_blocks(graph_builder, logger, log_file, config, store):
    def chatty(task):
        def action(output):
            for index in range(5):
                output.write(f"{task.name} line {index}")
                time.sleep(0.001)
            targets = [task.output]
            if task.stage == Stage.INSTALL:
                dep = config.get_dependency_config(task.dependency)
                targets = store.installed_libraries(dep, task.platform)
            for path in targets:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.touch()
        return action

    graph = graph_builder.build()
    graph = TaskGraph(task.model_copy(update={"action": chatty(task)}) for task in graph)
    Scheduler(graph, logger, jobs=6).run()

    lines = log_file.read_text().splitlines()
    for task in graph:
        header = lines.index(f"----- {task.name} -----")
        assert lines[header + 1:header + 6] == [f"{task.name} line {i}" for i in range(5)]


def test_log_file_starts_with_header(logger, log_file):
    logger.info("hello")
    text = log_file.read_text()
    assert text.startswith("Build started at ")
    assert "Each platform builds independently" in text


def test_dry_run_reports_without_running(graph_builder, fake_actions, logger, store):
    graph = fake_actions.apply(graph_builder.build(["iphoneos"]))
    report = Scheduler(graph, logger).dry_run()

    assert fake_actions.calls == []
    assert len(report.stale) == len(graph)
    assert report.ok
    assert not store.dependencies_dir.exists()


def test_results_are_recorded_in_cache(tmp_path, logger):
    cache = Cache(tmp_path / "cache")
    task = _touching_task(tmp_path / "out")

    Scheduler(TaskGraph([task]), logger, cache=cache).run()

    info = Cache(tmp_path / "cache").get_info(task.name)
    assert info["status"] == TaskStatus.SUCCEEDED.value
    assert info["error"] is None


def test_jobs_is_at_least_one(tmp_path, logger):
    assert Scheduler(TaskGraph([]), logger, jobs=0).jobs == 1


@pytest.mark.parametrize("jobs", [1, 3])
def test_empty_graph(logger, jobs):
    report = Scheduler(TaskGraph([]), logger, jobs=jobs).run()
    assert report.ok
    assert report.results == {}
