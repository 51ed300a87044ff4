import filecmp
from pathlib import Path

import pytest

from clibgit2_build.exceptions import BuildSystemError, MissingArtifactError
from clibgit2_build.linker import FatBinaryMerger, PlatformLinker
from clibgit2_build.models import TaskOutput
from clibgit2_build.packager import DEFAULT_MODULEMAP, Packager


class RecordingRunner:
    """Stands in for run_command and creates the file a tool would write."""

    def __init__(self, produce=None):
        self.commands = []
        self.produce = produce

    def __call__(self, cmd, output, cwd=None, logger=None, **kwargs):
        self.commands.append([str(c) for c in cmd])
        if self.produce:
            self.produce(cmd)


def _write(path, content=b"!<arch>\n"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def _install_all(config, store, platform):
    for name in config.get_build_order():
        dep = config.get_dependency_config(name)
        for lib in store.installed_libraries(dep, platform):
            _write(lib)


def test_link_merges_exactly_the_installed_archives(config, store, logger):
    _install_all(config, store, "iphoneos")
    runner = RecordingRunner(produce=lambda cmd: _write(Path(cmd[3])))
    linker = PlatformLinker(store, config, logger, runner=runner)

    target = linker.link("iphoneos", TaskOutput("link"))

    assert target == store.combined_library("iphoneos")
    assert target.is_file()
    assert not target.with_name(target.name + ".partial").exists()

    (cmd,) = runner.commands
    assert cmd[:3] == ["libtool", "-static", "-o"]
    names = [Path(p).name for p in cmd[4:]]
    assert names == ["libssl.a", "libcrypto.a", "libssh2.a", "libgit2.a"]
    assert all("iphoneos" in p for p in cmd[4:])


def test_link_with_missing_archive_raises(config, store, logger):
    _install_all(config, store, "macosx")
    libssh2 = config.get_dependency_config("libssh2")
    store.installed_library(libssh2, "macosx", "libssh2.a").unlink()
    runner = RecordingRunner()

    with pytest.raises(MissingArtifactError) as excinfo:
        PlatformLinker(store, config, logger, runner=runner).link("macosx", TaskOutput("link"))

    assert excinfo.value.path.name == "libssh2.a"
    assert runner.commands == []
    assert not store.combined_library("macosx").exists()


def test_link_without_tool_output_raises(config, store, logger):
    _install_all(config, store, "macosx")
    linker = PlatformLinker(store, config, logger, runner=RecordingRunner())
    with pytest.raises(MissingArtifactError):
        linker.link("macosx", TaskOutput("link"))


def test_recover_install_copies_from_build_tree(config, store, logger):
    libgit2 = config.get_dependency_config("libgit2")
    source = store.source_dir(libgit2, "iphonesimulator")
    _write(source / "build" / "libgit2.a", b"compiled")
    _write(source / "include" / "git2.h", b"#include <git2/common.h>\n")
    _write(source / "include" / "git2" / "common.h", b"")

    output = TaskOutput("install")
    PlatformLinker(store, config, logger).recover_install("iphonesimulator", output)

    install = store.install_dir(libgit2, "iphonesimulator")
    assert (install / "lib" / "libgit2.a").read_bytes() == b"compiled"
    assert (install / "include" / "git2.h").is_file()
    assert (install / "include" / "git2" / "common.h").is_file()
    assert any("copying from build directory" in line for line in output.lines)


def test_recover_install_leaves_complete_install_alone(config, store, logger):
    libgit2 = config.get_dependency_config("libgit2")
    installed = _write(store.install_output(libgit2, "iphoneos"), b"installed")
    _write(store.source_dir(libgit2, "iphoneos") / "build" / "libgit2.a", b"compiled")

    PlatformLinker(store, config, logger).recover_install("iphoneos", TaskOutput("install"))
    assert installed.read_bytes() == b"installed"


def _slice(config, name):
    return next(s for s in config.get_slices() if s.name == name)


def test_merge_runs_lipo_on_both_architectures(config, store, logger):
    macosx = _slice(config, "macosx")
    for platform in macosx.platforms:
        _write(store.combined_library(platform))
    runner = RecordingRunner(produce=lambda cmd: _write(Path(cmd[-1])))

    target = FatBinaryMerger(store, logger, runner=runner).merge(macosx, TaskOutput("merge"))

    assert target == store.fat_library(macosx)
    assert target.is_file()
    (cmd,) = runner.commands
    assert cmd[0] == "lipo"
    assert cmd[1:3] == [str(store.combined_library("macosx")), str(store.combined_library("macosx-arm64"))]
    assert cmd[3:5] == ["-create", "-output"]


def test_merge_with_missing_architecture_raises(config, store, logger):
    catalyst = _slice(config, "maccatalyst")
    _write(store.combined_library("maccatalyst"))
    runner = RecordingRunner()

    with pytest.raises(MissingArtifactError) as excinfo:
        FatBinaryMerger(store, logger, runner=runner).merge(catalyst, TaskOutput("merge"))

    assert excinfo.value.path == store.combined_library("maccatalyst-arm64")
    assert runner.commands == []


def _prepare_slices(config, store):
    for slice_config in config.get_slices():
        _write(store.slice_library(slice_config))
        _write(store.headers_dir(slice_config.headers_from) / "git2.h", b"")


def _fake_xcodebuild(store, slice_names):
    def produce(cmd):
        framework = Path(cmd[cmd.index("-output") + 1])
        for name in slice_names:
            (framework / name / "Headers").mkdir(parents=True)
            _write(framework / name / "libgit2_all.a")
        _write(framework / "Info.plist", b"<plist/>")
    return produce


SLICE_DIRS = ["ios-arm64", "ios-arm64_x86_64-maccatalyst", "ios-arm64_x86_64-simulator", "macos-arm64_x86_64"]


def test_package_places_identical_modulemap_in_every_slice(config, store, logger):
    _prepare_slices(config, store)
    runner = RecordingRunner(produce=_fake_xcodebuild(store, SLICE_DIRS))
    packager = Packager(store, config, logger, runner=runner)

    framework = packager.package(TaskOutput("package"))

    assert framework == store.framework_dir
    (cmd,) = runner.commands
    assert cmd[:2] == ["xcodebuild", "-create-xcframework"]
    assert cmd.count("-library") == 4
    assert cmd.count("-headers") == 4
    assert str(store.fat_library(_slice(config, "macosx"))) in cmd
    assert str(store.combined_library("iphoneos")) in cmd

    for name in SLICE_DIRS:
        copy = framework / name / "Headers" / "module.modulemap"
        assert filecmp.cmp(DEFAULT_MODULEMAP, copy, shallow=False)


def test_modulemap_declares_the_module(config):
    text = DEFAULT_MODULEMAP.read_text()
    assert "module Clibgit2" in text
    assert 'umbrella header "git2.h"' in text
    assert 'link "z"' in text
    assert 'link "iconv"' in text


def test_package_replaces_previous_framework(config, store, logger):
    _prepare_slices(config, store)
    _write(store.framework_dir / "stale-slice" / "old.a")
    runner = RecordingRunner(produce=_fake_xcodebuild(store, SLICE_DIRS))

    Packager(store, config, logger, runner=runner).package(TaskOutput("package"))

    assert not (store.framework_dir / "stale-slice").exists()


def test_package_with_missing_slice_library_raises(config, store, logger):
    _prepare_slices(config, store)
    store.fat_library(_slice(config, "maccatalyst")).unlink()
    runner = RecordingRunner()

    with pytest.raises(MissingArtifactError):
        Packager(store, config, logger, runner=runner).package(TaskOutput("package"))
    assert runner.commands == []


def test_package_with_missing_headers_raises(config, store, logger):
    _prepare_slices(config, store)
    (store.headers_dir("iphonesimulator") / "git2.h").unlink()
    store.headers_dir("iphonesimulator").rmdir()

    with pytest.raises(MissingArtifactError, match="slice headers"):
        Packager(store, config, logger, runner=RecordingRunner()).package(TaskOutput("package"))


def test_package_with_unexpected_slice_count_raises(config, store, logger):
    _prepare_slices(config, store)
    runner = RecordingRunner(produce=_fake_xcodebuild(store, SLICE_DIRS[:3]))

    with pytest.raises(BuildSystemError, match="expected 4"):
        Packager(store, config, logger, runner=runner).package(TaskOutput("package"))


def test_failed_packaging_is_not_up_to_date_next_run(config, store, logger):
    from clibgit2_build.graph import TaskGraph
    from clibgit2_build.models import BuildTask, Stage
    from clibgit2_build.scheduler import Scheduler

    _prepare_slices(config, store)
    runner = RecordingRunner(produce=_fake_xcodebuild(store, SLICE_DIRS[:3]))
    packager = Packager(store, config, logger, runner=runner)
    task = BuildTask(
        stage=Stage.PACKAGE,
        inputs=tuple(library for library, _ in packager.slice_inputs()),
        output=store.framework_marker(),
        action=packager.package,
    )
    graph = TaskGraph([task])

    first = Scheduler(graph, logger).run()
    assert first.failed == ["package"]
    assert not store.framework_marker().exists()

    runner.produce = _fake_xcodebuild(store, SLICE_DIRS)
    second = Scheduler(graph, logger).run()
    assert second.succeeded == ["package"]
    for name in SLICE_DIRS:
        assert (store.framework_dir / name / "Headers" / "module.modulemap").is_file()
