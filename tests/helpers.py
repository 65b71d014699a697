import json
import os
import shlex
import sys
import time

from cratejam import descriptor
from cratejam.main import run

TESTS = os.path.dirname(os.path.abspath(__file__))

def script(name):
    return "%s %s" % (shlex.quote(sys.executable), shlex.quote(os.path.join(TESTS, name)))

FAKE_RUSTC = script("fake_rustc.py")
FAKE_STRIP = script("fake_strip.py")

def write(path, text):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write(text)

def touch(path):
    now = time.time()
    os.utime(path, (now, now))

def make_crate(directory, name, lib="// lib\n", binaries=None, tests=None, subdirs=(),
               dependencies=(), features=(), **extra):
    """Write sources and a resolved config.json for one directory."""
    write(os.path.join(directory, "src", "lib.rs"), lib)
    for bin_name, text in (binaries or {}).items():
        write(os.path.join(directory, "src", "bin", bin_name + ".rs"), text)
    for test_name, text in (tests or {}).items():
        write(os.path.join(directory, "tests", test_name + ".rs"), text)

    d = {
        "name": name,
        "version": "1.2.3",
        "source": "src/lib.rs",
        "compiler": FAKE_RUSTC,
        "features": list(features),
        "subdirs": list(subdirs),
        "dependencies": [{ "name": n, "path": p } for n, p in dependencies],
        "binaries": ["src/bin/%s.rs" % b for b in (binaries or {})],
        "tests": ["tests/%s.rs" % t for t in (tests or {})],
    }
    d.update(extra)
    os.makedirs(directory, exist_ok=True)
    descriptor.save(directory, descriptor.from_dict(d, directory))
    return d

class Build(object):
    def __init__(self, root):
        self.root = str(root)
        self.log = os.path.join(os.path.dirname(self.root), "rustc.log")

    def path(self, *parts):
        return os.path.join(self.root, *parts)

    def run(self, *targets, **kwargs):
        environ = dict(os.environ)
        for name in ("RUSTC", "RUSTFLAGS", "EXTRA_RUSTFLAGS", "STRIP", "DESTDIR"):
            environ.pop(name, None)
        environ["FAKE_RUSTC_LOG"] = self.log
        environ.update(kwargs.pop("env", {}))
        return run(self.root, list(targets) or None, environ=environ, **kwargs)

    def compiled(self):
        """(crate, kind) of every compiler invocation since the last call."""
        try:
            with open(self.log) as f:
                entries = [json.loads(line) for line in f]
        except FileNotFoundError:
            entries = []
        if os.path.exists(self.log):
            os.remove(self.log)
        self.entries = entries
        return [(e["crate"], e["kind"]) for e in entries]

    def settle(self):
        """Move every file into the past, so touched files are newer."""
        past = time.time() - 100
        for dirpath, dirnames, filenames in os.walk(self.root):
            for filename in filenames:
                os.utime(os.path.join(dirpath, filename), (past, past))
