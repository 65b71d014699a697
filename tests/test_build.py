import json
import os

import pytest

from cratejam import descriptor
from cratejam.descriptor import OPTIONS_FILE, STAMP_FILE

from helpers import FAKE_RUSTC, make_crate, touch, write

def simple(build, **kwargs):
    make_crate(build.root, "lcc", binaries={ "lc-digest": "// bin\n" }, **kwargs)

def test_first_build_compiles_library_then_binary(build):
    simple(build)
    assert build.run() == 0
    assert build.compiled() == [("lcc", "rlib"), ("lc_digest", "bin")]
    assert os.path.exists(build.path("liblcc.rlib"))
    assert os.path.exists(build.path("liblcc.rlib.d"))
    assert os.access(build.path("lc_digest"), os.X_OK)
    assert os.path.exists(build.path(OPTIONS_FILE))
    assert os.path.exists(build.path(STAMP_FILE))

def test_compiler_invocation(build):
    simple(build, edition="2018", flags=["-C", "opt-level=2"], features=["std"])
    assert build.run() == 0
    build.compiled()
    lib, binary = build.entries
    assert lib["features"] == ["std"]
    assert lib["edition"] == "2018"
    assert lib["flags"] == ["-Copt-level=2"]
    assert lib["cwd"] == build.root
    assert lib["manifest_dir"] == build.root
    assert lib["version"] == "1.2.3"
    assert lib["externs"] == []
    # binaries link against their own directory's library
    assert binary["externs"] == ["lcc=%s" % build.path("liblcc.rlib")]

def test_second_build_is_a_noop(build):
    simple(build, tests={ "digest": "// test\n" })
    assert build.run() == 0
    assert build.run("check") == 0
    build.compiled()

    assert build.run() == 0
    assert build.run("check") == 0
    assert build.compiled() == []

def test_library_change_rebuilds_dependents(build):
    simple(build, tests={ "digest": "// test\n" })
    assert build.run("all", "check") == 0
    build.compiled()
    build.settle()

    touch(build.path("src", "lib.rs"))
    assert build.run("all", "check") == 0
    assert sorted(build.compiled()) == sorted([
        ("lcc", "rlib"), ("lc_digest", "bin"), ("lcc", "test"), ("digest", "test")])

def test_binary_change_rebuilds_only_the_binary(build):
    simple(build)
    assert build.run() == 0
    build.compiled()
    build.settle()

    touch(build.path("src", "bin", "lc-digest.rs"))
    assert build.run() == 0
    assert build.compiled() == [("lc_digest", "bin")]

def test_undeclared_source_is_discovered(build):
    simple(build, lib="// include: digest.rs\n")
    write(build.path("src", "digest.rs"), "// sha2\n")
    assert build.run() == 0
    build.compiled()
    build.settle()

    touch(build.path("src", "digest.rs"))
    assert build.run() == 0
    assert build.compiled() == [("lcc", "rlib"), ("lc_digest", "bin")]

def test_removed_undeclared_source_triggers_rebuild(build):
    simple(build, lib="// include: digest.rs\n")
    write(build.path("src", "digest.rs"), "// sha2\n")
    assert build.run() == 0
    build.compiled()

    write(build.path("src", "lib.rs"), "// lib\n")
    os.remove(build.path("src", "digest.rs"))
    build.settle()
    assert build.run() == 0
    assert ("lcc", "rlib") in build.compiled()

def test_missing_or_malformed_record_forces_rebuild(build):
    simple(build)
    assert build.run() == 0
    build.compiled()

    os.remove(build.path("lc_digest.d"))
    write(build.path("liblcc.rlib.d"), "this is not a dependency record\n")
    assert build.run() == 0
    assert build.compiled() == [("lcc", "rlib"), ("lc_digest", "bin")]

def test_expanded_feature_set_recompiles_everything(build):
    simple(build, features=["a"], tests={ "digest": "// test\n" })
    assert build.run("all", "check") == 0
    build.compiled()

    config = descriptor.load(build.root)._replace(features=["a", "b"])
    descriptor.save(build.root, config)
    assert build.run("all", "check") == 0
    compiled = build.compiled()
    assert len(compiled) == 4
    assert all(entry["features"] == ["a", "b"] for entry in build.entries)

    # the options only change once
    assert build.run("all", "check") == 0
    assert build.compiled() == []

def test_environment_overrides_apply_to_every_artifact(build):
    simple(build)
    assert build.run() == 0
    build.compiled()

    assert build.run(env={ "EXTRA_RUSTFLAGS": "-C debuginfo=2" }) == 0
    build.compiled()
    assert [e["flags"] for e in build.entries] == [["-Cdebuginfo=2"], ["-Cdebuginfo=2"]]

    assert build.run(env={ "RUSTC": FAKE_RUSTC + " --verbose" }) == 0
    assert len(build.compiled()) == 2

def test_rebuild_all(build):
    simple(build)
    assert build.run() == 0
    build.compiled()
    assert build.run(rebuild_all=True) == 0
    assert build.compiled() == [("lcc", "rlib"), ("lc_digest", "bin")]

def test_compile_failure_skips_dependents(build, capsys):
    simple(build, lib="// fail\n")
    assert build.run() == 1
    assert build.compiled() == [("lcc", "rlib")]
    assert not os.path.exists(build.path("liblcc.rlib"))
    assert not os.path.exists(build.path("liblcc.rlib.tmp"))
    assert not os.path.exists(build.path(STAMP_FILE))

    out = capsys.readouterr().out
    # the compiler's own diagnostics, verbatim
    assert "error: forced failure in src/lib.rs" in out
    assert "...skipped lc_digest for lack of liblcc.rlib..." in out

def test_failure_does_not_stop_independent_branches(build):
    make_crate(build.root, "lcc", binaries={ "a": "// fail\n", "b": "// ok\n" })
    assert build.run() == 1
    assert sorted(build.compiled()) == [("a", "bin"), ("b", "bin"), ("lcc", "rlib")]
    assert os.path.exists(build.path("b"))
    assert not os.path.exists(build.path(STAMP_FILE))

def test_quit_on_first_error(build):
    make_crate(build.root, "lcc", lib="// fail\n", binaries={ "a": "// ok\n" })
    assert build.run(quit=True) == 1
    assert build.compiled() == [("lcc", "rlib")]

def test_failed_directory_recovers(build):
    simple(build, lib="// fail\n")
    assert build.run() == 1
    build.compiled()

    write(build.path("src", "lib.rs"), "// fixed\n")
    assert build.run() == 0
    assert build.compiled() == [("lcc", "rlib"), ("lc_digest", "bin")]
    assert os.path.exists(build.path(STAMP_FILE))

def test_missing_dependency_mapping_fails_before_compiling(build, capsys):
    simple(build, dependencies=[("bytemuck", None)])
    assert build.run() == 1
    assert build.compiled() == []
    assert "bytemuck" in capsys.readouterr().out

def test_missing_configuration(build, capsys):
    assert build.run() == 1
    assert "cratejam-configure" in capsys.readouterr().out

def test_unknown_target(build, capsys):
    simple(build)
    assert build.run("nope") == 1
    assert build.compiled() == []
    assert "nope" in capsys.readouterr().out

def test_single_artifact_target(build):
    simple(build)
    assert build.run("liblcc.rlib") == 0
    assert build.compiled() == [("lcc", "rlib")]

def test_parallel_build(build):
    make_crate(build.root, "lcc", binaries=dict(("b%d" % i, "// bin\n") for i in range(6)),
               tests={ "digest": "// test\n" }, subdirs=["vendor"])
    make_crate(build.path("vendor"), "vendored")
    assert build.run("all", "check", jobs=4) == 0
    compiled = build.compiled()
    assert len(compiled) == 11
    assert compiled.index(("vendored", "rlib")) < compiled.index(("lcc", "rlib"))
    assert build.run(jobs=4) == 0
    assert build.compiled() == []

def test_options_record_contents(build):
    simple(build, features=["std"])
    assert build.run() == 0
    with open(build.path(OPTIONS_FILE)) as f:
        options = json.load(f)
    assert options["features"] == ["std"]

@pytest.mark.parametrize("jobs", [1, 2])
def test_damaged_options_record_counts_as_changed(build, jobs):
    simple(build)
    assert build.run() == 0
    build.compiled()

    with open(build.path(OPTIONS_FILE), "wb") as f:
        f.write(b"\xff\xfe garbage")
    assert build.run(jobs=jobs) == 0
    assert build.compiled() == [("lcc", "rlib"), ("lc_digest", "bin")]
    with open(build.path(OPTIONS_FILE)) as f:
        assert json.load(f)["features"] == []

@pytest.mark.parametrize("jobs", [1, 2])
def test_unexpected_error_fails_only_its_target(build, jobs, monkeypatch, capsys):
    make_crate(build.root, "lcc", binaries={ "a": "// ok\n" })

    def broken(s, target):
        raise RuntimeError("stamp exploded")
    monkeypatch.setattr("cratejam.lifecycle.Stamp.build", broken)

    assert build.run(jobs=jobs) == 1
    assert sorted(build.compiled()) == [("a", "bin"), ("lcc", "rlib")]
    out = capsys.readouterr().out
    assert "unexpected RuntimeError" in out
    assert "...skipped all for lack of build-stamp..." in out

def test_invalid_configuration_is_reported(build, capsys):
    simple(build)
    with open(build.path(descriptor.CONFIG_FILE)) as f:
        config = json.load(f)
    config["install"] = "/usr"
    with open(build.path(descriptor.CONFIG_FILE), "w") as f:
        json.dump(config, f)

    assert build.run() == 1
    assert build.compiled() == []
    assert "configuration error" in capsys.readouterr().out

@pytest.mark.parametrize("recorded", ["check", "run-lcc-test", "vendor/all"])
def test_recorded_input_named_like_a_phony_target(build, capsys, recorded):
    make_crate(build.root, "lcc", subdirs=["vendor"])
    make_crate(build.path("vendor"), "vendored")
    assert build.run() == 0
    build.compiled()

    write(build.path("liblcc.rlib.d"), "liblcc.rlib.d: src/lib.rs %s\n" % recorded)
    assert build.run() == 1
    assert build.compiled() == []
    assert "file \"%s\" clashes with the phony target" % recorded in capsys.readouterr().out
