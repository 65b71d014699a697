import json
import os

import pytest

from cratejam import descriptor
from cratejam.errors import ConfigurationError

def minimal(**extra):
    d = { "name": "lc_crypto", "source": "src/lib.rs" }
    d.update(extra)
    return d

def test_crate_name_normalization():
    assert descriptor.crate_name("lc-crypto") == "lc_crypto"
    assert descriptor.crate_name("sha3.x") == "sha3_x"
    assert descriptor.crate_name("3des") == "_3des"
    assert descriptor.unit_name("src/bin/lc-digest.rs") == "lc_digest"
    assert descriptor.unit_name("tests/digest.rs") == "digest"

def test_defaults():
    d = descriptor.from_dict(minimal())
    assert d.output == "liblc_crypto.rlib"
    assert d.harness == "lc_crypto-test"
    assert d.compiler == "rustc"
    assert d.version == "0.0.0"
    assert d.install.bindir == "/usr/local/bin"
    assert d.install.libdir == "/usr/local/lib"
    assert d.artifacts() == ["liblc_crypto.rlib", "lc_crypto-test"]

def test_units_and_features():
    d = descriptor.from_dict(minimal(
        binaries=["src/bin/lc-digest.rs", { "source": "src/main.rs", "name": "lcsum" }],
        tests=["tests/digest.rs"],
        features=["std", "hardware-rand", "std"],
        dependencies=[{ "name": "bytemuck", "path": "vendor/bytemuck/libbytemuck.rlib" }],
    ))
    assert [b.name for b in d.binaries] == ["lc_digest", "lcsum"]
    assert d.tests[0] == descriptor.Unit("digest", "tests/digest.rs")
    assert d.features == ["hardware-rand", "std"]
    assert d.dependencies[0].path == "vendor/bytemuck/libbytemuck.rlib"
    assert d.artifacts() == ["liblc_crypto.rlib", "lc_digest", "lcsum", "lc_crypto-test", "digest"]

def test_binary_and_test_name_collision_is_rejected():
    with pytest.raises(ConfigurationError) as e:
        descriptor.from_dict(minimal(binaries=["src/bin/digest.rs"], tests=["tests/digest.rs"]))
    assert "collides" in str(e.value)

def test_reserved_names_are_rejected():
    with pytest.raises(ConfigurationError):
        descriptor.from_dict(minimal(binaries=["src/bin/check.rs"]))

def test_duplicate_dependency_is_rejected():
    with pytest.raises(ConfigurationError):
        descriptor.from_dict(minimal(dependencies=[{ "name": "a", "path": "x" }],
                                     plugins=[{ "name": "a", "path": "y" }]))

@pytest.mark.parametrize("broken", [
    { "source": "src/lib.rs" },
    { "name": "lc-crypto", "source": "src/lib.rs" },
    minimal(flags="-O"),
    minimal(dependencies=["bytemuck"]),
    minimal(subdirs=["../outside"]),
    minimal(install="/usr"),
    minimal(install={ "prefix": 5 }),
    minimal(install={ "prefix": "/usr", "libdir": ["lib"] }),
    minimal(output=5),
    minimal(version=1.2),
    minimal(edition=2018),
    minimal(compiler=["rustc"]),
    minimal(binaries="src/bin/lc-digest.rs"),
    minimal(tests={ "source": "tests/digest.rs" }),
    minimal(binaries=[{ "source": "src/main.rs", "name": 7 }]),
    minimal(dependencies="bytemuck"),
])
def test_invalid_descriptors(broken):
    with pytest.raises(ConfigurationError):
        descriptor.from_dict(broken)

def test_load_missing(tmp_path):
    with pytest.raises(ConfigurationError) as e:
        descriptor.load(str(tmp_path))
    assert "cratejam-configure" in str(e.value)

def test_load_invalid_json(tmp_path):
    (tmp_path / descriptor.CONFIG_FILE).write_text("{ not json")
    with pytest.raises(ConfigurationError):
        descriptor.load(str(tmp_path))

def test_save_and_load(tmp_path):
    d = descriptor.from_dict(minimal(tests=["tests/digest.rs"], edition="2018"), str(tmp_path))
    filename = descriptor.save(str(tmp_path), d)
    assert os.path.basename(filename) == descriptor.CONFIG_FILE
    with open(filename) as f:
        assert json.load(f)["name"] == "lc_crypto"
    assert descriptor.load(str(tmp_path)) == d
