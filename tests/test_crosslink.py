from __future__ import annotations

import os
from pathlib import Path

from gomod_linker.crosslink import (
    link_dependencies,
    link_project,
    relative_module_path,
    replace_links_to_modules,
)
from gomod_linker.discovery import read_descriptor
from gomod_linker.gomod import GoMod, ModuleIdentity
from gomod_linker.models import DescriptorLocation


def _location(path: str, text: str) -> DescriptorLocation:
    return DescriptorLocation(descriptor=GoMod.parse(text), path=Path(path))


def _write_mod(folder: Path, text: str) -> Path:
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / "go.mod"
    path.write_text(text, encoding="utf-8")
    return path


def test_replace_target_is_relative_path_between_module_folders() -> None:
    source = _location("/proj/go.mod", "module example.org/app\n\nrequire foo.org/bar v1.0.0\n")
    candidate = _location("/deps/bar/go.mod", "module foo.org/bar\n")

    assert replace_links_to_modules(source, [candidate]) is True

    (replace,) = source.descriptor.replaces
    assert replace.source == ModuleIdentity("foo.org/bar")
    assert replace.target.path == os.path.relpath("/deps/bar", "/proj")
    assert replace.target.path == os.path.join("..", "deps", "bar")


def test_second_run_reports_no_change() -> None:
    source = _location("/proj/go.mod", "module app\nrequire foo.org/bar v1.0.0\n")
    candidate = _location("/deps/bar/go.mod", "module foo.org/bar\n")

    assert replace_links_to_modules(source, [candidate]) is True
    assert replace_links_to_modules(source, [candidate]) is False
    assert len(source.descriptor.replaces) == 1


def test_existing_replace_is_respected() -> None:
    text = "module app\nrequire foo.org/bar v1.0.0\nreplace foo.org/bar => ../elsewhere\n"
    source = _location("/proj/go.mod", text)
    candidate = _location("/deps/bar/go.mod", "module foo.org/bar\n")

    assert replace_links_to_modules(source, [candidate]) is False
    assert source.descriptor.serialize() == text


def test_unrequired_candidates_and_empty_candidates_are_ignored() -> None:
    source = _location("/proj/go.mod", "module app\nrequire foo.org/bar v1.0.0\n")
    unrelated = _location("/deps/baz/go.mod", "module foo.org/baz\n")
    anonymous = _location("/deps/anon/go.mod", "// no module line\n")

    assert replace_links_to_modules(source, []) is False
    assert replace_links_to_modules(source, [unrelated, anonymous]) is False
    assert source.descriptor.replaces == []


def test_source_is_skipped_even_when_listed_as_candidate() -> None:
    source = _location("/proj/go.mod", "module foo.org/bar\nrequire foo.org/bar v1.0.0\n")
    assert replace_links_to_modules(source, [source]) is False


def test_first_candidate_for_a_module_wins() -> None:
    source = _location("/proj/go.mod", "module app\nrequire foo.org/bar v1.0.0\n")
    first = _location("/deps/first/go.mod", "module foo.org/bar\n")
    second = _location("/deps/second/go.mod", "module foo.org/bar\n")

    assert replace_links_to_modules(source, [first, second]) is True
    (replace,) = source.descriptor.replaces
    assert replace.target.path == os.path.join("..", "deps", "first")


def test_relative_path_into_subfolder_gets_dot_prefix() -> None:
    assert relative_module_path(Path("/proj"), Path("/proj/vendor/lib")) == os.path.join(".", "vendor", "lib")
    assert relative_module_path(Path("/proj/a"), Path("/proj")) == ".."


def test_link_dependencies_links_all_pairs_and_writes_changes(tmp_path: Path) -> None:
    a_path = _write_mod(tmp_path / "a", "module ex.org/a\n\nrequire ex.org/b v1.0.0\n")
    b_path = _write_mod(tmp_path / "b", "module ex.org/b\n\nrequire ex.org/a v1.0.0\n")
    c_path = _write_mod(tmp_path / "c", "module ex.org/c\n")
    descriptors = [read_descriptor(a_path), read_descriptor(b_path), read_descriptor(c_path)]

    assert link_dependencies(descriptors) == 2

    assert a_path.read_text(encoding="utf-8").endswith(f"replace ex.org/b => {os.path.join('..', 'b')}\n")
    assert b_path.read_text(encoding="utf-8").endswith(f"replace ex.org/a => {os.path.join('..', 'a')}\n")
    assert c_path.read_text(encoding="utf-8") == "module ex.org/c\n"
    assert link_dependencies(descriptors) == 0


def test_link_project_persists_only_when_changed(tmp_path: Path) -> None:
    project_path = _write_mod(tmp_path / "proj", "module ex.org/app\n\nrequire ex.org/lib v1.0.0\n")
    lib_path = _write_mod(tmp_path / "deps" / "lib", "module ex.org/lib\n")
    project = read_descriptor(project_path)
    lib = read_descriptor(lib_path)

    assert link_project(project, [lib]) is True
    rewritten = project_path.read_text(encoding="utf-8")
    assert f"replace ex.org/lib => {os.path.join('..', 'deps', 'lib')}" in rewritten
    assert GoMod.parse(rewritten).has_replace_for(ModuleIdentity("ex.org/lib"))

    assert link_project(read_descriptor(project_path), [lib]) is False
    assert project_path.read_text(encoding="utf-8") == rewritten
