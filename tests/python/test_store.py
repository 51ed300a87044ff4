from clibgit2_build.exceptions import UnknownPlatformError

import pytest


def test_per_platform_paths_never_collide(config, store):
    seen = set()
    for platform in config.get_platforms():
        for name in config.get_dependencies():
            dep = config.get_dependency_config(name)
            paths = (store.source_dir(dep, platform), store.install_dir(dep, platform))
            for path in paths:
                assert platform in path.name
                assert path not in seen
                seen.add(path)


def test_archive_is_shared_between_platforms(config, store):
    dep = config.get_dependency_config("openssl")
    assert store.archive_path(dep) == store.dependencies_dir / "openssl-3.6.0.tar.gz"


def test_combined_and_fat_library_locations(config, store):
    assert store.combined_library("iphoneos") == store.root_dir / "install" / "iphoneos" / "lib" / "libgit2_all.a"
    macosx = next(s for s in config.get_slices() if s.name == "macosx")
    iphoneos = next(s for s in config.get_slices() if s.name == "iphoneos")
    assert store.fat_library(macosx) == store.root_dir / "install" / "macosx-fat" / "lib" / "libgit2_all.a"
    assert store.slice_library(macosx) == store.fat_library(macosx)
    assert store.slice_library(iphoneos) == store.combined_library("iphoneos")


def _populate(config, store):
    for platform in ("iphoneos", "macosx"):
        for name in config.get_dependencies():
            dep = config.get_dependency_config(name)
            store.fetch_stamp(dep, platform).parent.mkdir(parents=True, exist_ok=True)
            store.fetch_stamp(dep, platform).touch()
            for lib in store.installed_libraries(dep, platform):
                lib.parent.mkdir(parents=True, exist_ok=True)
                lib.touch()
    store.framework_marker().parent.mkdir(parents=True)
    store.framework_marker().touch()
    store.log_file.touch()


def test_clean_removes_everything(config, store):
    _populate(config, store)
    removed = store.clean()

    assert store.dependencies_dir in removed
    assert not store.dependencies_dir.exists()
    assert not store.framework_dir.exists()
    assert not store.log_file.exists()
    for root in store.install_roots():
        assert not root.exists()


def test_clean_deps_keeps_install_trees(config, store):
    _populate(config, store)
    assert store.clean_deps() == [store.dependencies_dir]
    assert not store.dependencies_dir.exists()
    assert store.combined_library("iphoneos").parent.exists()
    assert store.clean_deps() == []


def test_clean_platform_leaves_other_platforms(config, store):
    _populate(config, store)
    dep = config.get_dependency_config("libgit2")

    store.clean_platform("iphoneos")

    assert not store.source_dir(dep, "iphoneos").exists()
    assert not store.install_dir(dep, "iphoneos").exists()
    assert store.source_dir(dep, "macosx").exists()
    assert store.install_output(dep, "macosx").exists()


def test_clean_platform_rejects_unknown_names(store):
    with pytest.raises(UnknownPlatformError):
        store.clean_platform("tvos")
